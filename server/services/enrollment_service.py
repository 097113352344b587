"""Enrollment lookups and free (no-gateway) enrollment."""

import time
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from server.config import CURRENCY, INSTRUCTOR_SHARE_PERCENTAGE
from server.models.course import Course, COURSE_PUBLISHED
from server.models.enrollment import Enrollment, LIVE_ENROLLMENT_STATUSES
from server.models.payment import Payment, PAYMENT_COMPLETED
from server.services import reconciliation
from server.services.errors import AlreadyEnrolledError, BadRequestError, NotFoundError
from server.services.notification_service import CourseSummary, EnrollmentCreated


def free_transaction_id(student_id: int, course_id: int) -> str:
    return f"free_{student_id}_{course_id}_{int(time.time() * 1000)}"


async def enroll_free(db: AsyncSession, student_id: int, course_id: int, instructor_id: Optional[int]):
    """Record a zero-amount completed payment and grant the enrollment.

    Returns ``(enrollment_id, created)`` from :func:`reconciliation.grant_enrollment`.
    """
    payment = Payment(
        student_id=student_id,
        course_id=course_id,
        instructor_id=instructor_id,
        amount=Decimal("0"),
        currency=CURRENCY,
        status=PAYMENT_COMPLETED,
        payment_method="free",
        payment_provider="free",
        transaction_id=free_transaction_id(student_id, course_id),
        subtotal=Decimal("0"),
        platform_fee=Decimal("0"),
        final_amount=Decimal("0"),
        instructor_share=Decimal("0"),
        platform_share=Decimal("0"),
        instructor_share_percentage=INSTRUCTOR_SHARE_PERCENTAGE,
        completed_at=datetime.utcnow(),
    )
    db.add(payment)
    await db.commit()
    return await reconciliation.grant_enrollment(db, student_id, course_id, instructor_id, payment.id)


async def enroll_direct(db: AsyncSession, notifier, student_id: int, course_id: int) -> Enrollment:
    """Enroll in a single free course without going through an order."""
    course = await db.get(Course, course_id)
    if course is None:
        raise NotFoundError("Course not found")
    if course.status != COURSE_PUBLISHED or course.instructor_id is None:
        raise BadRequestError(f'Course "{course.title}" is not available for enrollment.')
    if Decimal(course.price or 0) > 0:
        raise BadRequestError(
            "Payment required: use /api/enroll/create-order for paid courses",
            code="PAYMENT_REQUIRED",
        )
    if await reconciliation.find_live_enrollment(db, student_id, course_id) is not None:
        raise AlreadyEnrolledError("Already enrolled in this course", enrolledCourses=[course_id])

    summary = CourseSummary(course.id, course.title, course.thumbnail)
    enrollment_id, created = await enroll_free(db, student_id, course.id, course.instructor_id)
    if created:
        await notifier.dispatch(EnrollmentCreated(student_id, summary, enrollment_type="free"))
    return (await load_enrollments(db, [enrollment_id]))[0]


async def load_enrollments(db: AsyncSession, enrollment_ids: Sequence[int]) -> List[Enrollment]:
    if not enrollment_ids:
        return []
    result = await db.execute(
        select(Enrollment)
        .options(selectinload(Enrollment.course))
        .filter(Enrollment.id.in_(list(enrollment_ids)))
        .order_by(Enrollment.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_enrollments(db: AsyncSession, student_id: int) -> List[Enrollment]:
    result = await db.execute(
        select(Enrollment)
        .options(selectinload(Enrollment.course))
        .filter(
            Enrollment.student_id == student_id,
            Enrollment.status.in_(LIVE_ENROLLMENT_STATUSES),
        )
        .order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def serialize_enrollment(enrollment: Enrollment) -> dict:
    course = enrollment.course
    return {
        "id": enrollment.id,
        "student": enrollment.student_id,
        "course": {
            "id": course.id,
            "title": course.title,
            "thumbnail": course.thumbnail,
        } if course is not None else enrollment.course_id,
        "instructor": enrollment.instructor_id,
        "payment": enrollment.payment_id,
        "status": enrollment.status,
        "enrolledAt": enrollment.enrolled_at.isoformat() if enrollment.enrolled_at else None,
    }
