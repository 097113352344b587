"""Order creation: validate the basket, then either enroll for free or open a gateway order.

The gateway order is always created before any payment rows, and all rows of
one order are written in a single transaction, so a failed gateway call or a
failed insert never leaves half an order behind.
"""

import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from server.config import CURRENCY, INSTRUCTOR_SHARE_PERCENTAGE
from server.models.course import Course, COURSE_PUBLISHED
from server.models.payment import Payment, PAYMENT_PENDING
from server.models.user import User
from server.payment_log import payment_log
from server.services import cart_service, enrollment_service, reconciliation
from server.services.currency import from_minor_units, to_minor_units
from server.services.errors import (
    AlreadyEnrolledError,
    BadRequestError,
    GatewayError,
    GatewayProviderError,
    InternalError,
    NotFoundError,
)
from server.services.notification_service import CourseSummary, EnrollmentCreated

# Razorpay rejects receipts longer than this
RECEIPT_MAX_LENGTH = 40
CENT = Decimal("0.01")


@dataclass
class CourseLine:
    id: int
    title: str
    price: Decimal
    instructor_id: int
    thumbnail: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "courseId": self.id,
            "title": self.title,
            "price": float(self.price),
            "instructor": self.instructor_id,
        }


def build_receipt(student_id, now_ms: Optional[int] = None) -> str:
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    receipt = f"rcpt_{str(student_id)[-8:]}_{str(now_ms)[-10:]}"
    return receipt[:RECEIPT_MAX_LENGTH]


def revenue_split(price: Decimal, instructor_percentage: int = INSTRUCTOR_SHARE_PERCENTAGE):
    """Split one course price into (instructor_share, platform_share)."""
    instructor_share = (price * instructor_percentage / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    return instructor_share, price - instructor_share


def normalize_course_ids(course_id=None, course_ids: Optional[Sequence] = None) -> List[int]:
    requested = [course_id] if course_id is not None else list(course_ids or [])
    if not requested:
        raise BadRequestError("Please provide courseId or courseIds")
    # Drop duplicates, keep the client's order
    return list(dict.fromkeys(requested))


async def load_course_lines(db: AsyncSession, course_ids: List[int]) -> List[CourseLine]:
    result = await db.execute(select(Course).filter(Course.id.in_(course_ids)))
    courses = {course.id: course for course in result.scalars().all()}

    missing = [course_id for course_id in course_ids if course_id not in courses]
    if missing:
        logging.warning("Requested courses not found: %s", missing)
        raise NotFoundError(
            f"Courses not found: {', '.join(str(course_id) for course_id in missing)}",
            missingCourses=missing,
        )

    lines = []
    for course_id in course_ids:
        course = courses[course_id]
        if course.instructor_id is None:
            logging.error("Course %s (%s) has no instructor", course.id, course.title)
            raise BadRequestError(
                f'Course "{course.title}" is missing instructor data. Please contact support.',
                code="COURSE_DATA_ERROR",
            )
        if course.status != COURSE_PUBLISHED:
            raise BadRequestError(
                f'Course "{course.title}" is not available for enrollment.',
                code="COURSE_UNAVAILABLE",
            )
        lines.append(
            CourseLine(
                id=course.id,
                title=course.title,
                price=Decimal(course.price or 0),
                instructor_id=course.instructor_id,
                thumbnail=course.thumbnail,
            )
        )
    return lines


async def create_order(db: AsyncSession, gateway, notifier, student: User, course_ids: List[int]) -> dict:
    student_id = student.id
    lines = await load_course_lines(db, course_ids)

    existing = await reconciliation.find_live_enrollments(db, student_id, course_ids)
    if existing:
        enrolled = sorted({enrollment.course_id for enrollment in existing})
        raise AlreadyEnrolledError(
            "You are already enrolled in one or more of these courses",
            enrolledCourses=enrolled,
        )

    payment_log("create-order-initiated", student_id=student_id, course_ids=course_ids)

    total = sum((line.price for line in lines), Decimal("0"))
    if total == 0:
        return await _enroll_free_basket(db, notifier, student_id, lines)
    return await _open_gateway_order(db, gateway, student_id, lines, total)


async def _enroll_free_basket(db: AsyncSession, notifier, student_id: int, lines: List[CourseLine]) -> dict:
    enrollment_ids = []
    for line in lines:
        enrollment_id, created = await enrollment_service.enroll_free(db, student_id, line.id, line.instructor_id)
        enrollment_ids.append(enrollment_id)
        if created:
            await notifier.dispatch(
                EnrollmentCreated(student_id, CourseSummary(line.id, line.title, line.thumbnail), "free")
            )

    await cart_service.remove_courses(db, student_id, [line.id for line in lines])
    enrollments = await enrollment_service.load_enrollments(db, enrollment_ids)
    payment_log("free-enrollment-completed", student_id=student_id, course_ids=[line.id for line in lines])

    return {
        "success": True,
        "message": "Successfully enrolled in free course(s)",
        "isFree": True,
        "enrollments": [enrollment_service.serialize_enrollment(e) for e in enrollments],
        "totalAmount": 0,
    }


async def _open_gateway_order(db: AsyncSession, gateway, student_id: int, lines: List[CourseLine], total: Decimal) -> dict:
    amount_minor = to_minor_units(total, CURRENCY)
    receipt = build_receipt(student_id)
    course_ids = [line.id for line in lines]

    try:
        order = await gateway.create_order(
            amount_minor,
            CURRENCY,
            receipt,
            notes={
                "studentId": student_id,
                "courseIds": json.dumps(course_ids),
                "courseCount": len(course_ids),
            },
        )
    except GatewayError as exc:
        payment_log(
            "gateway-order-creation-failed",
            level=logging.ERROR,
            student_id=student_id,
            amount_minor=amount_minor,
            receipt=receipt,
            error=exc.message,
        )
        raise

    order_total = from_minor_units(order.amount, order.currency)
    if order.currency != CURRENCY or order_total != total:
        payment_log(
            "gateway-order-amount-mismatch",
            level=logging.ERROR,
            order_id=order.id,
            expected=total,
            received=order_total,
            currency=order.currency,
        )
        raise GatewayProviderError("Payment gateway created an order for a different amount")

    payment_log("gateway-order-created", order_id=order.id, amount=total, student_id=student_id, receipt=receipt)

    for line in lines:
        instructor_share, platform_share = revenue_split(line.price)
        db.add(
            Payment(
                student_id=student_id,
                course_id=line.id,
                instructor_id=line.instructor_id,
                amount=line.price,
                currency=CURRENCY,
                status=PAYMENT_PENDING,
                payment_method=gateway.provider,
                payment_provider=gateway.provider,
                transaction_id=order.id,
                receipt=receipt,
                subtotal=line.price,
                platform_fee=platform_share,
                final_amount=line.price,
                instructor_share=instructor_share,
                platform_share=platform_share,
                instructor_share_percentage=INSTRUCTOR_SHARE_PERCENTAGE,
            )
        )
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logging.exception("Could not store payments for order %s", order.id)
        raise InternalError(f"Payment creation failed: {exc}") from exc

    return {
        "success": True,
        "message": "Order created successfully",
        "order": {
            "orderId": order.id,
            "amount": amount_minor,
            "currency": CURRENCY,
            "receipt": receipt,
        },
        "keyId": gateway.key_id,
        "courseDetails": [line.as_dict() for line in lines],
        "totalAmount": float(total),
        "totalAmountMinor": amount_minor,
    }
