"""Synchronous payment confirmation submitted by the client after checkout."""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from server.models.user import User
from server.payment_log import payment_log
from server.services import cart_service, enrollment_service, reconciliation
from server.services.errors import BadRequestError, GatewayError, NotFoundError, SignatureMismatchError
from server.services.notification_service import CourseSummary, PaymentSucceeded
from server.services.signatures import redact, signatures_match

INVALID_SIGNATURE_REASON = "Invalid payment signature"


async def verify_payment(
    db: AsyncSession,
    gateway,
    notifier,
    student: User,
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    course_ids: Optional[List[int]] = None,
) -> dict:
    if not order_id or not payment_id or not signature:
        raise BadRequestError("Missing payment verification details")

    student_id = student.id
    payment_log("payment-verification-initiated", student_id=student_id, order_id=order_id, payment_id=payment_id)

    expected = gateway.payment_signature(order_id, payment_id)
    if not signatures_match(expected, signature):
        failed = await reconciliation.fail_order(db, order_id, INVALID_SIGNATURE_REASON, student_id=student_id)
        payment_log(
            "payment-signature-verification-failed",
            level=logging.ERROR,
            student_id=student_id,
            order_id=order_id,
            payment_id=payment_id,
            received_signature=redact(signature),
            failed_payments=len(failed),
        )
        raise SignatureMismatchError("Payment verification failed - Invalid signature")

    confirmation = reconciliation.PaymentConfirmation(order_id=order_id, payment_id=payment_id, signature=signature)
    try:
        details = await gateway.fetch_payment(payment_id)
        confirmation.method = details.method
        confirmation.card_brand = details.card_brand
        confirmation.card_last4 = details.card_last4
    except GatewayError as exc:
        logging.warning("Could not fetch payment %s details from the gateway: %s", payment_id, exc.message)

    result = await reconciliation.complete_order(db, confirmation, student_id=student_id)
    if not result.pending_found:
        raise NotFoundError("No pending payments found for this order")

    purchased = set(result.pending_course_ids)
    if course_ids:
        await cart_service.remove_courses(db, student_id, [cid for cid in course_ids if cid in purchased])

    # Legs completed concurrently by the webhook still count as this order's enrollments
    live = await reconciliation.find_live_enrollments(db, student_id, result.pending_course_ids)
    enrollments = await enrollment_service.load_enrollments(db, [e.id for e in live])

    if result.legs:
        paid_courses = set(result.course_ids)
        courses = [
            CourseSummary(e.course.id, e.course.title, e.course.thumbnail)
            for e in enrollments
            if e.course_id in paid_courses
        ]
        currency = result.legs[0].currency
        await notifier.dispatch(
            PaymentSucceeded(student_id, order_id, payment_id, result.total_amount, currency, courses)
        )

    payment_log(
        "payment-verified",
        student_id=student_id,
        order_id=order_id,
        payment_id=payment_id,
        enrollment_count=len(enrollments),
    )
    return {
        "success": True,
        "message": "Payment verified and enrollment(s) created successfully",
        "verified": True,
        "enrollments": [enrollment_service.serialize_enrollment(e) for e in enrollments],
        "paymentId": payment_id,
        "orderId": order_id,
    }
