"""Read-only payment history and revenue reports.

Only completed gateway sales count as revenue. Free enrollments create zero
payment rows for bookkeeping and are left out of every total.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from server.models.course import Course
from server.models.payment import Payment, PAYMENT_COMPLETED

FREE_PROVIDER = "free"


def _money(value) -> float:
    return float(Decimal(str(value or 0)))


def _completed_sales():
    return (Payment.status == PAYMENT_COMPLETED, Payment.payment_provider != FREE_PROVIDER)


async def list_student_payments(db: AsyncSession, student_id: int, status: Optional[str] = None) -> List[Payment]:
    query = (
        select(Payment)
        .options(selectinload(Payment.course))
        .filter(Payment.student_id == student_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    if status is not None:
        query = query.filter(Payment.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


def serialize_payment(payment: Payment) -> dict:
    course = payment.course
    return {
        "id": payment.id,
        "orderId": payment.transaction_id,
        "paymentId": payment.provider_payment_id,
        "course": {"id": course.id, "title": course.title} if course is not None else None,
        "amount": _money(payment.amount),
        "currency": payment.currency,
        "status": payment.status,
        "paymentMethod": payment.payment_method,
        "card": {"brand": payment.card_brand, "last4": payment.card_last4} if payment.card_last4 else None,
        "receipt": payment.receipt,
        "failureReason": payment.failure_reason,
        "createdAt": payment.created_at.isoformat() if payment.created_at else None,
        "completedAt": payment.completed_at.isoformat() if payment.completed_at else None,
    }


async def instructor_revenue(db: AsyncSession, instructor_id: int) -> dict:
    """The instructor's share of completed sales, in total and per course."""
    result = await db.execute(
        select(
            Payment.course_id,
            Course.title,
            func.count(Payment.id),
            func.coalesce(func.sum(Payment.amount), 0),
            func.coalesce(func.sum(Payment.instructor_share), 0),
        )
        .join(Course, Course.id == Payment.course_id)
        .where(Payment.instructor_id == instructor_id, *_completed_sales())
        .group_by(Payment.course_id, Course.title)
        .order_by(Payment.course_id)
    )
    courses = []
    total = Decimal("0")
    for course_id, title, sales, gross, earnings in result.all():
        total += Decimal(str(earnings))
        courses.append(
            {
                "courseId": course_id,
                "title": title,
                "sales": sales,
                "grossRevenue": _money(gross),
                "earnings": _money(earnings),
            }
        )
    return {
        "totalEarnings": float(total),
        "totalSales": sum(c["sales"] for c in courses),
        "courses": courses,
    }


async def platform_revenue(db: AsyncSession) -> dict:
    """Platform-wide totals over completed sales."""
    result = await db.execute(
        select(
            func.count(Payment.id),
            func.coalesce(func.sum(Payment.amount), 0),
            func.coalesce(func.sum(Payment.platform_share), 0),
            func.coalesce(func.sum(Payment.instructor_share), 0),
        ).where(*_completed_sales())
    )
    sales, gross, platform, instructors = result.one()
    return {
        "totalSales": sales,
        "grossRevenue": _money(gross),
        "platformRevenue": _money(platform),
        "instructorPayouts": _money(instructors),
    }
