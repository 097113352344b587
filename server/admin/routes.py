from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from server.api.deps import get_db, require_admin
from server.models.payment import Payment, PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED

admin_router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@admin_router.get("/payments/stats")
async def payment_stats(db: AsyncSession = Depends(get_db)):
    """Counts per status and completed revenue, in a single query."""
    result = await db.execute(
        select(
            Payment.status,
            func.count(Payment.id),
            func.coalesce(func.sum(Payment.amount), 0),
        )
        # Free enrollments are bookkeeping, not sales
        .where(Payment.payment_provider != "free")
        .group_by(Payment.status)
    )
    counts = {PAYMENT_PENDING: 0, PAYMENT_COMPLETED: 0, PAYMENT_FAILED: 0}
    revenue = Decimal("0")
    for status, count, total in result.all():
        counts[status] = count
        if status == PAYMENT_COMPLETED:
            revenue = Decimal(str(total))

    finished = counts[PAYMENT_COMPLETED] + counts[PAYMENT_FAILED]
    success_rate = round(counts[PAYMENT_COMPLETED] * 100 / finished, 2) if finished else None
    return {
        "success": True,
        "stats": {
            "total": sum(counts.values()),
            "byStatus": counts,
            "completedRevenue": float(revenue),
            "successRate": success_rate,
        },
    }


@admin_router.get("/payments/failures")
async def recent_failures(
    limit: int = Query(default=20, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Payment)
        .where(Payment.status == PAYMENT_FAILED)
        .order_by(Payment.failed_at.desc(), Payment.id.desc())
        .limit(limit)
    )
    failures = [
        {
            "id": payment.id,
            "orderId": payment.transaction_id,
            "student": payment.student_id,
            "course": payment.course_id,
            "amount": float(payment.amount),
            "currency": payment.currency,
            "reason": payment.failure_reason,
            "failedAt": payment.failed_at.isoformat() if payment.failed_at else None,
        }
        for payment in result.scalars().all()
    ]
    return {"success": True, "count": len(failures), "failures": failures}
