from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import auth, count_rows, query_all
from server.api import deps
from server.models.cart import CartItem
from server.models.course import Course
from server.models.enrollment import Enrollment
from server.models.notification import Notification
from server.models.payment import Payment
from server.services import reconciliation
from server.services.notification_service import NotificationDispatcher, PaymentSucceeded


def open_order(client, world, course_ids=None):
    course_ids = course_ids or [world.course_a_id, world.course_b_id]
    response = client.post(
        "/api/enroll/create-order", json={"courseIds": course_ids}, headers=auth(world.student_token)
    )
    assert response.status_code == 200
    return response.json()["order"]["orderId"]


def verify(client, world, gateway, order_id, payment_id="pay_1", signature=None, **extra):
    body = {
        "orderId": order_id,
        "paymentId": payment_id,
        "signature": signature or gateway.payment_signature(order_id, payment_id),
    }
    body.update(extra)
    return client.post("/api/enroll/verify", json=body, headers=auth(world.student_token))


def test_verify_completes_order_and_enrolls(client, world, gateway, notifier, session_factory):
    order_id = open_order(client, world)

    response = verify(client, world, gateway, order_id, courseIds=[world.course_a_id, world.course_b_id])

    assert response.status_code == 200
    data = response.json()
    assert data["verified"] is True
    assert data["orderId"] == order_id
    assert data["paymentId"] == "pay_1"
    assert sorted(e["course"]["id"] for e in data["enrollments"]) == [world.course_a_id, world.course_b_id]

    payments = query_all(session_factory, select(Payment))
    assert {p.status for p in payments} == {"completed"}
    assert {p.provider_payment_id for p in payments} == {"pay_1"}
    assert {p.card_last4 for p in payments} == {"1111"}
    assert all(p.completed_at is not None for p in payments)

    courses = query_all(session_factory, select(Course).where(Course.id.in_([world.course_a_id, world.course_b_id])))
    assert [c.student_count for c in courses] == [1, 1]
    assert count_rows(session_factory, CartItem, CartItem.user_id == world.student_id) == 0

    [event] = notifier.of_type(PaymentSucceeded)
    assert event.order_id == order_id
    assert len(event.courses) == 2


def test_razorpay_field_names_are_accepted(client, world, gateway):
    order_id = open_order(client, world, [world.course_a_id])

    response = client.post(
        "/api/enroll/verify",
        json={
            "razorpay_order_id": order_id,
            "razorpay_payment_id": "pay_9",
            "razorpay_signature": gateway.payment_signature(order_id, "pay_9"),
        },
        headers=auth(world.student_token),
    )

    assert response.status_code == 200
    assert response.json()["paymentId"] == "pay_9"


def test_second_verify_does_not_enroll_twice(client, world, gateway, session_factory):
    order_id = open_order(client, world)

    first = verify(client, world, gateway, order_id)
    second = verify(client, world, gateway, order_id)

    assert first.status_code == 200
    assert second.status_code == 404
    assert second.json()["message"] == "No pending payments found for this order"
    assert count_rows(session_factory, Enrollment, Enrollment.student_id == world.student_id) == 2
    course = query_all(session_factory, select(Course).filter_by(id=world.course_a_id))[0]
    assert course.student_count == 1


def test_invalid_signature_fails_order_terminally(client, world, gateway, session_factory):
    order_id = open_order(client, world)

    rejected = verify(client, world, gateway, order_id, signature="0" * 64)

    assert rejected.status_code == 400
    assert rejected.json()["code"] == "INVALID_SIGNATURE"
    payments = query_all(session_factory, select(Payment))
    assert {p.status for p in payments} == {"failed"}
    assert {p.failure_reason for p in payments} == {"Invalid payment signature"}
    assert count_rows(session_factory, Enrollment) == 0

    retry = verify(client, world, gateway, order_id)

    assert retry.status_code == 404
    assert count_rows(session_factory, Enrollment) == 0


def test_missing_details(client, world):
    response = client.post(
        "/api/enroll/verify", json={"orderId": "order_x"}, headers=auth(world.student_token)
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Missing payment verification details"


def test_other_students_order_is_not_found(client, world, gateway, session_factory):
    order_id = open_order(client, world)
    body = {
        "orderId": order_id,
        "paymentId": "pay_1",
        "signature": gateway.payment_signature(order_id, "pay_1"),
    }

    response = client.post("/api/enroll/verify", json=body, headers=auth(world.other_token))

    assert response.status_code == 404
    assert {p.status for p in query_all(session_factory, select(Payment))} == {"pending"}


def test_gateway_lookup_failure_is_not_fatal(client, world, gateway, session_factory):
    order_id = open_order(client, world, [world.course_a_id])
    gateway.fail_fetch = True

    response = verify(client, world, gateway, order_id)

    assert response.status_code == 200
    payment = query_all(session_factory, select(Payment))[0]
    assert payment.status == "completed"
    assert payment.payment_method == "razorpay"
    assert payment.card_last4 is None


def test_cart_keeps_courses_outside_the_order(client, world, gateway, session_factory):
    order_id = open_order(client, world, [world.course_a_id])

    response = verify(client, world, gateway, order_id, courseIds=[world.course_a_id, world.course_b_id])

    assert response.status_code == 200
    remaining = query_all(session_factory, select(CartItem.course_id).where(CartItem.user_id == world.student_id))
    assert remaining == [world.course_b_id]


def test_notification_failure_does_not_break_verify(app, client, world, gateway, session_factory):
    sent = []

    async def broken_send(chat_id, text):
        sent.append(chat_id)
        raise RuntimeError("telegram is down")

    app.dependency_overrides[deps.get_notifier] = lambda: NotificationDispatcher(session_factory, broken_send)
    order_id = open_order(client, world, [world.course_a_id])

    response = verify(client, world, gateway, order_id)

    assert response.status_code == 200
    assert sent == [1001]
    notifications = query_all(session_factory, select(Notification))
    assert [n.type for n in notifications] == ["payment_success"]
    assert count_rows(session_factory, Enrollment) == 1


def test_verify_retries_after_enrollment_write_fails(app, client, world, gateway, session_factory, monkeypatch):
    order_id = open_order(client, world, [world.course_a_id])
    real_add = reconciliation.add_enrollment
    calls = []

    async def locked_once(*args):
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError("INSERT INTO enrollments", {}, Exception("database is locked"))
        return await real_add(*args)

    monkeypatch.setattr(reconciliation, "add_enrollment", locked_once)

    with TestClient(app, raise_server_exceptions=False) as quiet_client:
        failed = verify(quiet_client, world, gateway, order_id)

    assert failed.status_code == 500
    assert failed.json() == {"success": False, "message": "Internal server error", "code": "INTERNAL_ERROR"}
    assert [p.status for p in query_all(session_factory, select(Payment))] == ["pending"]
    assert count_rows(session_factory, Enrollment) == 0

    retried = verify(client, world, gateway, order_id)

    assert retried.status_code == 200
    assert [e["course"]["id"] for e in retried.json()["enrollments"]] == [world.course_a_id]
    assert [p.status for p in query_all(session_factory, select(Payment))] == ["completed"]
    assert count_rows(session_factory, Enrollment) == 1
