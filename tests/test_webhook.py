import asyncio
import json
import logging

from sqlalchemy import select

from conftest import WEBHOOK_SECRET, auth, count_rows, query_all, run, webhook_headers
from server.api import deps
from server.models.course import Course
from server.models.enrollment import Enrollment
from server.models.payment import Payment
from server.models.user import User
from server.services import reconciliation, verification_service, webhook_service
from server.services.errors import NotFoundError
from server.services.notification_service import PaymentFailed, PaymentSucceeded


def open_order(client, world, course_ids=None):
    response = client.post(
        "/api/enroll/create-order",
        json={"courseIds": course_ids or [world.course_a_id, world.course_b_id]},
        headers=auth(world.student_token),
    )
    assert response.status_code == 200
    return response.json()["order"]["orderId"]


def event_body(event, order_id, payment_id="pay_wh_1", **entity):
    payment = {"id": payment_id, "order_id": order_id, "method": "card", "card": {"network": "Visa", "last4": "4242"}}
    payment.update(entity)
    return json.dumps({"event": event, "payload": {"payment": {"entity": payment}}}).encode()


def post_webhook(client, body, headers=None):
    return client.post("/api/enroll/webhook", content=body, headers=headers or webhook_headers(body))


def test_captured_completes_pending_payments(client, world, notifier, session_factory):
    order_id = open_order(client, world)

    response = post_webhook(client, event_body("payment.captured", order_id))

    assert response.status_code == 200
    assert response.json() == {"success": True, "received": True}
    payments = query_all(session_factory, select(Payment))
    assert {p.status for p in payments} == {"completed"}
    assert {p.card_brand for p in payments} == {"Visa"}
    assert count_rows(session_factory, Enrollment, Enrollment.student_id == world.student_id) == 2
    [event] = notifier.of_type(PaymentSucceeded)
    assert event.student_id == world.student_id
    assert sorted(course.id for course in event.courses) == [world.course_a_id, world.course_b_id]


def test_webhook_then_verify_enrolls_once(client, world, gateway, session_factory):
    order_id = open_order(client, world, [world.course_a_id])
    post_webhook(client, event_body("payment.captured", order_id, payment_id="pay_1"))

    response = client.post(
        "/api/enroll/verify",
        json={"orderId": order_id, "paymentId": "pay_1", "signature": gateway.payment_signature(order_id, "pay_1")},
        headers=auth(world.student_token),
    )

    assert response.status_code == 404
    assert count_rows(session_factory, Enrollment) == 1
    check = client.get(f"/api/enroll/check/{world.course_a_id}", headers=auth(world.student_token))
    assert check.json()["enrolled"] is True


def test_verify_then_webhook_enrolls_once(client, world, gateway, notifier, session_factory):
    order_id = open_order(client, world, [world.course_a_id])
    verified = client.post(
        "/api/enroll/verify",
        json={"orderId": order_id, "paymentId": "pay_1", "signature": gateway.payment_signature(order_id, "pay_1")},
        headers=auth(world.student_token),
    )
    assert verified.status_code == 200

    response = post_webhook(client, event_body("payment.captured", order_id, payment_id="pay_1"))

    assert response.status_code == 200
    assert count_rows(session_factory, Enrollment) == 1
    course = query_all(session_factory, select(Course).filter_by(id=world.course_a_id))[0]
    assert course.student_count == 1
    assert len(notifier.of_type(PaymentSucceeded)) == 1


def test_order_paid_is_a_capture_too(client, world, session_factory):
    order_id = open_order(client, world, [world.course_a_id])
    body = json.dumps(
        {
            "event": "order.paid",
            "payload": {
                "order": {"entity": {"id": order_id, "status": "paid"}},
                "payment": {"entity": {"id": "pay_7", "order_id": order_id, "method": "upi"}},
            },
        }
    ).encode()

    assert post_webhook(client, body).status_code == 200
    payment = query_all(session_factory, select(Payment))[0]
    assert payment.status == "completed"
    assert payment.payment_method == "upi"


def test_invalid_signature_is_rejected_without_changes(client, world, session_factory):
    order_id = open_order(client, world)
    body = event_body("payment.captured", order_id)

    response = post_webhook(client, body, headers=webhook_headers(body, secret="wrong"))

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_WEBHOOK_SIGNATURE"
    assert {p.status for p in query_all(session_factory, select(Payment))} == {"pending"}
    assert count_rows(session_factory, Enrollment) == 0


def test_signature_covers_raw_body(client, world, session_factory):
    order_id = open_order(client, world)
    body = event_body("payment.captured", order_id)
    reformatted = json.dumps(json.loads(body), indent=2).encode()

    response = post_webhook(client, reformatted, headers=webhook_headers(body))

    assert response.status_code == 400


def test_missing_signature_header(client, world):
    response = client.post("/api/enroll/webhook", content=b"{}", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["message"] == "No signature provided"


def test_alternate_signature_header(client, world, session_factory):
    order_id = open_order(client, world, [world.course_a_id])
    body = event_body("payment.captured", order_id)
    headers = {"x-signature": webhook_headers(body)["x-razorpay-signature"]}

    assert post_webhook(client, body, headers=headers).status_code == 200
    assert count_rows(session_factory, Enrollment) == 1


def test_without_secret_deliveries_are_processed_with_warning(app, client, world, session_factory, caplog):
    app.dependency_overrides[deps.get_webhook_secret] = lambda: ""
    order_id = open_order(client, world, [world.course_a_id])
    body = event_body("payment.captured", order_id)

    with caplog.at_level(logging.WARNING):
        response = post_webhook(client, body, headers={"x-razorpay-signature": "anything"})

    assert response.status_code == 200
    assert count_rows(session_factory, Enrollment) == 1
    assert "webhook signature verification DISABLED" in caplog.text


def test_capture_is_informational_when_completion_disabled(app, client, world, session_factory):
    app.dependency_overrides[deps.get_webhook_completes_payments] = lambda: False
    order_id = open_order(client, world, [world.course_a_id])

    response = post_webhook(client, event_body("payment.captured", order_id))

    assert response.status_code == 200
    assert {p.status for p in query_all(session_factory, select(Payment))} == {"pending"}
    assert count_rows(session_factory, Enrollment) == 0


def test_payment_failed_marks_pending_rows(client, world, notifier, session_factory):
    order_id = open_order(client, world)
    body = event_body("payment.failed", order_id, error_description="Card declined by bank")

    assert post_webhook(client, body).status_code == 200

    payments = query_all(session_factory, select(Payment))
    assert {p.status for p in payments} == {"failed"}
    assert {p.failure_reason for p in payments} == {"Card declined by bank"}
    assert len(notifier.of_type(PaymentFailed)) == 2


def test_payment_failed_never_overwrites_completed(client, world, gateway, session_factory):
    order_id = open_order(client, world, [world.course_a_id])
    client.post(
        "/api/enroll/verify",
        json={"orderId": order_id, "paymentId": "pay_1", "signature": gateway.payment_signature(order_id, "pay_1")},
        headers=auth(world.student_token),
    )

    assert post_webhook(client, event_body("payment.failed", order_id)).status_code == 200

    payment = query_all(session_factory, select(Payment))[0]
    assert payment.status == "completed"
    assert payment.failure_reason is None


def test_unknown_event_is_acknowledged(client, world):
    body = json.dumps({"event": "refund.processed", "payload": {}}).encode()

    response = post_webhook(client, body)

    assert response.status_code == 200
    assert response.json()["received"] is True


def test_processing_errors_are_acknowledged(client, world, monkeypatch, session_factory):
    order_id = open_order(client, world, [world.course_a_id])

    async def broken(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(reconciliation, "complete_order", broken)

    response = post_webhook(client, event_body("payment.captured", order_id))

    assert response.status_code == 200
    assert {p.status for p in query_all(session_factory, select(Payment))} == {"pending"}


def test_malformed_json_is_acknowledged(client, world):
    body = b"{not json"

    response = post_webhook(client, body)

    assert response.status_code == 200


def test_concurrent_verify_and_webhook_enroll_once(client, world, gateway, notifier, session_factory):
    order_id = open_order(client, world)
    body = event_body("payment.captured", order_id, payment_id="pay_1")
    signature = webhook_headers(body)["x-razorpay-signature"]

    async def verify_in_own_session():
        async with session_factory() as db:
            student = await db.get(User, world.student_id)
            return await verification_service.verify_payment(
                db, gateway, notifier, student, order_id, "pay_1", gateway.payment_signature(order_id, "pay_1")
            )

    async def webhook_in_own_session():
        async with session_factory() as db:
            return await webhook_service.handle_webhook(db, notifier, body, signature, WEBHOOK_SECRET, True)

    async def race():
        return await asyncio.gather(
            verify_in_own_session(),
            webhook_in_own_session(),
            verify_in_own_session(),
            webhook_in_own_session(),
            return_exceptions=True,
        )

    outcomes = run(race())

    for outcome in outcomes:
        if isinstance(outcome, Exception):
            assert isinstance(outcome, NotFoundError)
    assert outcomes[1] == outcomes[3] == {"success": True, "received": True}
    assert count_rows(session_factory, Enrollment) == 2
    assert count_rows(session_factory, Payment, Payment.status == "completed") == 2
    courses = query_all(session_factory, select(Course).where(Course.id.in_([world.course_a_id, world.course_b_id])))
    assert [c.student_count for c in courses] == [1, 1]
