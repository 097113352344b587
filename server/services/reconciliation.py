"""Payment state transitions and idempotent enrollment grants.

Both confirmation paths (the client's ``/enroll/verify`` call and the gateway
webhook) complete payments through :func:`complete_order`, so there is exactly
one place where a pending payment turns into an enrollment.

Every status change is a conditional ``UPDATE ... WHERE status = 'pending'``:
whichever path flips a row first wins, the other sees ``rowcount == 0`` and
leaves it alone. Enrollment inserts are protected by the partial unique index
on live (student, course) pairs; losing that race is treated as "already
enrolled". A completed payment and its enrollment are committed together.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from server.models.course import Course
from server.models.enrollment import Enrollment, ENROLLMENT_ACTIVE, LIVE_ENROLLMENT_STATUSES
from server.models.payment import Payment, PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED
from server.payment_log import payment_log

EXPIRED_REASON = "Payment expired"


@dataclass
class PaymentConfirmation:
    order_id: str
    payment_id: str
    signature: Optional[str] = None
    method: Optional[str] = None
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None


@dataclass
class CompletedLeg:
    payment_id: int
    student_id: Optional[int]
    course_id: int
    amount: Decimal
    currency: str
    enrollment_id: Optional[int] = None
    enrollment_created: bool = False


@dataclass
class CompletionResult:
    order_id: str
    pending_found: int = 0
    pending_course_ids: List[int] = field(default_factory=list)
    legs: List[CompletedLeg] = field(default_factory=list)

    @property
    def enrollment_ids(self) -> List[int]:
        return [leg.enrollment_id for leg in self.legs if leg.enrollment_id is not None]

    @property
    def course_ids(self) -> List[int]:
        return [leg.course_id for leg in self.legs]

    @property
    def total_amount(self) -> Decimal:
        return sum((leg.amount for leg in self.legs), Decimal("0"))


@dataclass
class FailedLeg:
    payment_id: int
    student_id: Optional[int]
    amount: Decimal
    currency: str


async def transition_payment(db: AsyncSession, payment_id: int, new_status: str, **values) -> bool:
    """Move a payment out of ``pending``. False means it was already terminal."""
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PAYMENT_PENDING)
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def find_live_enrollment(db: AsyncSession, student_id: int, course_id: int) -> Optional[Enrollment]:
    result = await db.execute(
        select(Enrollment).filter(
            Enrollment.student_id == student_id,
            Enrollment.course_id == course_id,
            Enrollment.status.in_(LIVE_ENROLLMENT_STATUSES),
        )
    )
    return result.scalars().first()


async def find_live_enrollments(db: AsyncSession, student_id: int, course_ids: Iterable[int]) -> List[Enrollment]:
    result = await db.execute(
        select(Enrollment).filter(
            Enrollment.student_id == student_id,
            Enrollment.course_id.in_(list(course_ids)),
            Enrollment.status.in_(LIVE_ENROLLMENT_STATUSES),
        )
    )
    return list(result.scalars().all())


def _new_enrollment(student_id, course_id, instructor_id, payment_id) -> Enrollment:
    return Enrollment(
        student_id=student_id,
        course_id=course_id,
        instructor_id=instructor_id,
        payment_id=payment_id,
        enrolled_at=datetime.utcnow(),
        status=ENROLLMENT_ACTIVE,
        progress={},
    )


async def _count_student(db: AsyncSession, course_id: int) -> None:
    await db.execute(
        update(Course)
        .where(Course.id == course_id)
        .values(student_count=Course.student_count + 1)
        .execution_options(synchronize_session=False)
    )


async def add_enrollment(
    db: AsyncSession,
    student_id: int,
    course_id: int,
    instructor_id: Optional[int],
    payment_id: Optional[int],
) -> Tuple[int, bool]:
    """Insert the live enrollment inside the caller's transaction. Does not commit.

    The insert runs in a savepoint: a unique index violation only undoes the
    savepoint and counts as "already enrolled", the rest of the caller's
    transaction stays intact.
    """
    existing = await find_live_enrollment(db, student_id, course_id)
    if existing is not None:
        logging.info("Student %s already enrolled in course %s; skipping", student_id, course_id)
        return existing.id, False

    enrollment = _new_enrollment(student_id, course_id, instructor_id, payment_id)
    try:
        async with db.begin_nested():
            db.add(enrollment)
    except IntegrityError:
        existing = await find_live_enrollment(db, student_id, course_id)
        if existing is None:
            raise
        logging.info(
            "Concurrent enrollment for student %s course %s detected; keeping enrollment %s",
            student_id,
            course_id,
            existing.id,
        )
        return existing.id, False

    await _count_student(db, course_id)
    return enrollment.id, True


async def grant_enrollment(
    db: AsyncSession,
    student_id: int,
    course_id: int,
    instructor_id: Optional[int],
    payment_id: Optional[int],
) -> Tuple[int, bool]:
    """Create the live enrollment for (student, course) unless one exists.

    Commits the session. Returns ``(enrollment_id, created)``. The course's
    ``student_count`` is incremented in the same transaction as the insert.
    """
    existing = await find_live_enrollment(db, student_id, course_id)
    if existing is not None:
        logging.info("Student %s already enrolled in course %s; skipping", student_id, course_id)
        return existing.id, False

    enrollment = _new_enrollment(student_id, course_id, instructor_id, payment_id)
    db.add(enrollment)
    try:
        await db.flush()
        await _count_student(db, course_id)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await find_live_enrollment(db, student_id, course_id)
        if existing is None:
            raise
        logging.info(
            "Concurrent enrollment for student %s course %s detected; keeping enrollment %s",
            student_id,
            course_id,
            existing.id,
        )
        return existing.id, False

    payment_log("enrollment-created", student_id=student_id, course_id=course_id, payment_id=payment_id)
    return enrollment.id, True


async def complete_order(
    db: AsyncSession, confirmation: PaymentConfirmation, student_id: Optional[int] = None
) -> CompletionResult:
    """Complete every pending leg of ``confirmation.order_id`` and enroll its student.

    ``student_id`` narrows the legs to one purchaser (the verify path knows
    who is calling; the webhook does not). Legs that another path finalized
    in the meantime are skipped.

    Each leg is one transaction: the status change, the enrollment and the
    course counter commit together. If anything fails the leg is rolled back
    and stays ``pending``, so the next confirmation of the order retries it.
    """
    query = select(
        Payment.id,
        Payment.student_id,
        Payment.course_id,
        Payment.instructor_id,
        Payment.amount,
        Payment.currency,
    ).where(Payment.transaction_id == confirmation.order_id, Payment.status == PAYMENT_PENDING)
    if student_id is not None:
        query = query.where(Payment.student_id == student_id)
    rows = (await db.execute(query.order_by(Payment.id))).all()

    result = CompletionResult(
        order_id=confirmation.order_id,
        pending_found=len(rows),
        pending_course_ids=[row.course_id for row in rows],
    )
    if not rows:
        return result

    for row in rows:
        leg = CompletedLeg(
            payment_id=row.id,
            student_id=row.student_id,
            course_id=row.course_id,
            amount=row.amount,
            currency=row.currency,
        )
        try:
            claimed = await transition_payment(
                db,
                row.id,
                PAYMENT_COMPLETED,
                provider_payment_id=confirmation.payment_id,
                provider_signature=confirmation.signature,
                payment_method=confirmation.method or "razorpay",
                card_brand=confirmation.card_brand,
                card_last4=confirmation.card_last4,
                completed_at=datetime.utcnow(),
            )
            if not claimed:
                await db.rollback()
                logging.info("Payment %s was finalized concurrently; skipping", row.id)
                continue
            if row.student_id is not None:
                leg.enrollment_id, leg.enrollment_created = await add_enrollment(
                    db, row.student_id, row.course_id, row.instructor_id, row.id
                )
            await db.commit()
        except Exception:
            await db.rollback()
            logging.exception(
                "Completing payment %s of order %s failed; it stays pending", row.id, confirmation.order_id
            )
            raise

        if row.student_id is None:
            logging.warning("Payment %s completed for a deleted user; no enrollment created", row.id)
        elif leg.enrollment_created:
            payment_log("enrollment-created", student_id=row.student_id, course_id=row.course_id, payment_id=row.id)
        result.legs.append(leg)

    payment_log(
        "order-completed",
        order_id=confirmation.order_id,
        payment_id=confirmation.payment_id,
        completed=len(result.legs),
        enrollments_created=sum(1 for leg in result.legs if leg.enrollment_created),
    )
    return result


async def fail_order(
    db: AsyncSession, order_id: str, reason: str, student_id: Optional[int] = None
) -> List[FailedLeg]:
    """Mark the still-pending legs of ``order_id`` as failed. Terminal legs are untouched."""
    query = select(Payment.id, Payment.student_id, Payment.amount, Payment.currency).where(
        Payment.transaction_id == order_id, Payment.status == PAYMENT_PENDING
    )
    if student_id is not None:
        query = query.where(Payment.student_id == student_id)
    rows = (await db.execute(query.order_by(Payment.id))).all()

    failed = []
    now = datetime.utcnow()
    for row in rows:
        if await transition_payment(db, row.id, PAYMENT_FAILED, failure_reason=reason, failed_at=now):
            failed.append(FailedLeg(row.id, row.student_id, row.amount, row.currency))
    await db.commit()

    if failed:
        payment_log("order-failed", level=logging.WARNING, order_id=order_id, reason=reason, failed=len(failed))
    return failed


async def expire_stale_payments(db: AsyncSession, older_than: datetime) -> int:
    """Fail pending payments created before ``older_than``. Returns the count."""
    result = await db.execute(
        update(Payment)
        .where(Payment.status == PAYMENT_PENDING, Payment.created_at < older_than)
        .values(status=PAYMENT_FAILED, failure_reason=EXPIRED_REASON, failed_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount:
        payment_log("pending-payments-expired", count=result.rowcount, cutoff=older_than.isoformat())
    return result.rowcount
