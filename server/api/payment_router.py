from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from server.api.deps import get_current_user, get_db, require_admin, require_instructor
from server.models.payment import PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED
from server.models.user import User
from server.services import payment_reports

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/my-payments")
async def my_payments(
    status: Optional[str] = Query(default=None, pattern=f"^({PAYMENT_PENDING}|{PAYMENT_COMPLETED}|{PAYMENT_FAILED})$"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Payment history of the caller, newest first."""
    payments = await payment_reports.list_student_payments(db, user.id, status)
    return {
        "success": True,
        "count": len(payments),
        "payments": [payment_reports.serialize_payment(p) for p in payments],
    }


@router.get("/instructor/revenue")
async def instructor_revenue(user: User = Depends(require_instructor), db: AsyncSession = Depends(get_db)):
    revenue = await payment_reports.instructor_revenue(db, user.id)
    return {"success": True, "revenue": revenue}


@router.get("/admin/platform-revenue", dependencies=[Depends(require_admin)])
async def platform_revenue(db: AsyncSession = Depends(get_db)):
    revenue = await payment_reports.platform_revenue(db)
    return {"success": True, "revenue": revenue}
