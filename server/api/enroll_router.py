from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from server.api.deps import (
    get_current_user,
    get_db,
    get_gateway,
    get_notifier,
    get_webhook_completes_payments,
    get_webhook_secret,
)
from server.models.user import User
from server.services import enrollment_service, order_service, reconciliation, verification_service, webhook_service

router = APIRouter(prefix="/enroll", tags=["enroll"])


class CreateOrderRequest(BaseModel):
    courseId: Optional[int] = None
    courseIds: Optional[List[int]] = None


class VerifyPaymentRequest(BaseModel):
    orderId: Optional[str] = Field(default=None, validation_alias=AliasChoices("orderId", "razorpay_order_id"))
    paymentId: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("paymentId", "razorpay_payment_id")
    )
    signature: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("signature", "razorpay_signature")
    )
    courseIds: Optional[List[int]] = None


@router.post("/create-order")
async def create_order(
    body: CreateOrderRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    """Validate the basket and open a gateway order (or enroll directly if it is free)."""
    course_ids = order_service.normalize_course_ids(body.courseId, body.courseIds)
    return await order_service.create_order(db, gateway, notifier, user, course_ids)


@router.post("/verify")
async def verify_payment(
    body: VerifyPaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_gateway),
    notifier=Depends(get_notifier),
):
    return await verification_service.verify_payment(
        db,
        gateway,
        notifier,
        user,
        body.orderId,
        body.paymentId,
        body.signature,
        course_ids=body.courseIds,
    )


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    x_signature: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
    secret: str = Depends(get_webhook_secret),
    completes_payments: bool = Depends(get_webhook_completes_payments),
):
    """Gateway callback. The signature is computed over the exact bytes received."""
    raw_body = await request.body()
    return await webhook_service.handle_webhook(
        db,
        notifier,
        raw_body,
        x_razorpay_signature or x_signature,
        secret,
        completes_payments=completes_payments,
    )


@router.get("/check/{course_id}")
async def check_enrollment(
    course_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    enrollment = await reconciliation.find_live_enrollment(db, user.id, course_id)
    if enrollment is None:
        return {"success": True, "enrolled": False, "enrollment": None}
    loaded = await enrollment_service.load_enrollments(db, [enrollment.id])
    return {
        "success": True,
        "enrolled": True,
        "enrollment": enrollment_service.serialize_enrollment(loaded[0]),
    }
