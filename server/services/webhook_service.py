"""Razorpay webhook processing.

The gateway retries any delivery that is not answered with 2xx, so once the
signature has been checked the handler acknowledges every event, even when
processing it failed (the failure is logged). Only signature problems are
answered with 400.
"""

import json
import logging
from collections import defaultdict
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from server.payment_log import payment_log
from server.services import enrollment_service, reconciliation
from server.services.errors import BadRequestError, WebhookSignatureError
from server.services.notification_service import CourseSummary, PaymentFailed, PaymentSucceeded
from server.services.signatures import hmac_sha256_hex, redact, signatures_match

CAPTURE_EVENTS = ("payment.captured", "order.paid")
FAILURE_EVENT = "payment.failed"
DEFAULT_FAILURE_REASON = "Payment failed"

ACKNOWLEDGED = {"success": True, "received": True}


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    if not signature:
        raise BadRequestError("No signature provided", code="MISSING_SIGNATURE")
    if not secret:
        logging.warning(
            "RAZORPAY_WEBHOOK_SECRET is not set: webhook signature verification DISABLED, "
            "processing unverified delivery"
        )
        return
    expected = hmac_sha256_hex(secret, raw_body)
    if not signatures_match(expected, signature):
        payment_log("webhook-signature-invalid", level=logging.WARNING, received_signature=redact(signature))
        raise WebhookSignatureError("Invalid webhook signature")


def _entities(event: Dict[str, Any]):
    payload = event.get("payload") or {}
    payment = (payload.get("payment") or {}).get("entity") or {}
    order = (payload.get("order") or {}).get("entity") or {}
    return payment, order


async def handle_webhook(
    db: AsyncSession,
    notifier,
    raw_body: bytes,
    signature: Optional[str],
    secret: str,
    completes_payments: bool = True,
) -> dict:
    verify_webhook_signature(raw_body, signature, secret)

    try:
        event = json.loads(raw_body)
        await _dispatch(db, notifier, event, completes_payments)
    except Exception:
        logging.exception("Webhook processing failed; acknowledging to stop gateway retries")
        await db.rollback()
    return dict(ACKNOWLEDGED)


async def _dispatch(db: AsyncSession, notifier, event: Dict[str, Any], completes_payments: bool) -> None:
    name = event.get("event")
    payment, order = _entities(event)
    order_id = payment.get("order_id") or order.get("id")
    payment_id = payment.get("id")

    payment_log("webhook-received", event=name, order_id=order_id, payment_id=payment_id)

    if name in CAPTURE_EVENTS:
        if not completes_payments:
            logging.info("Webhook %s for order %s: completion left to /enroll/verify", name, order_id)
            return
        if not order_id or not payment_id:
            logging.warning("Webhook %s without order/payment ids; ignoring", name)
            return
        card = payment.get("card") or {}
        confirmation = reconciliation.PaymentConfirmation(
            order_id=order_id,
            payment_id=payment_id,
            method=payment.get("method"),
            card_brand=card.get("network"),
            card_last4=card.get("last4"),
        )
        result = await reconciliation.complete_order(db, confirmation)
        if not result.pending_found:
            logging.info("Webhook %s: order %s has no pending payments (already finalized)", name, order_id)
        await _notify_completed(db, notifier, result, payment_id)

    elif name == FAILURE_EVENT:
        if not order_id:
            logging.warning("Webhook %s without order id; ignoring", name)
            return
        reason = payment.get("error_description") or DEFAULT_FAILURE_REASON
        failed = await reconciliation.fail_order(db, order_id, reason)
        for leg in failed:
            if leg.student_id is not None:
                await notifier.dispatch(PaymentFailed(leg.student_id, order_id, leg.amount, leg.currency, reason))

    else:
        logging.info("Unhandled webhook event %s; ignoring", name)
        payment_log("webhook-unhandled-event", event=name)


async def _notify_completed(db: AsyncSession, notifier, result, payment_id: str) -> None:
    if not result.legs:
        return
    enrollments = await enrollment_service.load_enrollments(db, result.enrollment_ids)
    titles = {e.course_id: CourseSummary(e.course.id, e.course.title, e.course.thumbnail) for e in enrollments}

    legs_by_student = defaultdict(list)
    for leg in result.legs:
        if leg.student_id is not None:
            legs_by_student[leg.student_id].append(leg)

    for student_id, legs in legs_by_student.items():
        amount = sum(leg.amount for leg in legs)
        courses = [titles[leg.course_id] for leg in legs if leg.course_id in titles]
        await notifier.dispatch(
            PaymentSucceeded(student_id, result.order_id, payment_id, amount, legs[0].currency, courses)
        )
