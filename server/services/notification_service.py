"""Outbound enrollment/payment events and their delivery.

Services never talk to notification channels directly: they build one of the
event objects below and hand it to a dispatcher. :class:`NotificationDispatcher`
stores an in-app :class:`Notification` and mirrors it to Telegram when the
user has a chat linked. Delivery problems are logged, never raised.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from server.models.notification import Notification
from server.models.user import User
from telegram_bot.notify import send_telegram_message


@dataclass
class CourseSummary:
    id: int
    title: str
    thumbnail: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "thumbnail": self.thumbnail}


def _format_amount(amount: Decimal, currency: str) -> str:
    symbol = "₹" if currency == "INR" else f"{currency} "
    return f"{symbol}{amount}"


@dataclass
class PaymentSucceeded:
    student_id: int
    order_id: str
    payment_id: str
    amount: Decimal
    currency: str
    courses: List[CourseSummary] = field(default_factory=list)

    def to_notification(self) -> Notification:
        names = ", ".join(course.title for course in self.courses)
        return Notification(
            user_id=self.student_id,
            type="payment_success",
            title="Payment Successful",
            message=(
                f"Your payment of {_format_amount(self.amount, self.currency)} "
                f"for {names} has been processed successfully."
            ),
            data={
                "orderId": self.order_id,
                "paymentId": self.payment_id,
                "amount": str(self.amount),
                "currency": self.currency,
                "courses": [course.as_dict() for course in self.courses],
            },
            priority="high",
            action_url="/my-learning",
            action_text="View Courses",
        )


@dataclass
class PaymentFailed:
    student_id: int
    order_id: str
    amount: Decimal
    currency: str
    reason: str

    def to_notification(self) -> Notification:
        return Notification(
            user_id=self.student_id,
            type="payment_failed",
            title="Payment Failed",
            message=(
                f"Your payment of {_format_amount(self.amount, self.currency)} "
                f"could not be processed. Reason: {self.reason}"
            ),
            data={
                "orderId": self.order_id,
                "amount": str(self.amount),
                "currency": self.currency,
                "reason": self.reason,
            },
            priority="high",
            action_url="/cart",
            action_text="Try Again",
        )


@dataclass
class EnrollmentCreated:
    student_id: int
    course: CourseSummary
    enrollment_type: str = "paid"

    def to_notification(self) -> Notification:
        return Notification(
            user_id=self.student_id,
            type="enrollment",
            title="Successfully Enrolled!",
            message=f'You have been enrolled in "{self.course.title}". Start learning now!',
            data={
                "courseId": self.course.id,
                "courseTitle": self.course.title,
                "courseThumbnail": self.course.thumbnail,
                "enrollmentType": self.enrollment_type,
            },
            priority="high",
            action_url=f"/learn/{self.course.id}",
            action_text="Start Learning",
        )


class NotificationDispatcher:
    def __init__(
        self,
        session_factory,
        send_message: Callable[[int, str], Awaitable[Any]] = send_telegram_message,
    ):
        self.session_factory = session_factory
        self.send_message = send_message

    async def dispatch(self, event) -> Optional[int]:
        """Deliver ``event``; returns the stored notification id or None on failure."""
        try:
            notification = event.to_notification()
            async with self.session_factory() as db:
                db.add(notification)
                await db.commit()
                user = await db.get(User, event.student_id)
                chat_id = user.telegram_id if user else None

            if chat_id:
                await self.send_message(chat_id, f"{notification.title}\n{notification.message}")
            return notification.id
        except Exception:
            logging.exception(
                "Failed to deliver %s notification for user %s",
                type(event).__name__,
                getattr(event, "student_id", None),
            )
            return None
