import asyncio
from dataclasses import dataclass
from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from server.admin.routes import admin_router
from server.api import deps, enroll_router, enrollment_router, payment_router
from server.api.error_handlers import register_exception_handlers
from server.db.session import init_models
from server.models.cart import CartItem
from server.models.course import Course, COURSE_PUBLISHED
from server.models.user import User
from server.services.errors import GatewayProviderError, GatewayTransportError
from server.services.razorpay_gateway import GatewayOrder, GatewayPaymentDetails, MOCK_KEY_SECRET
from server.services.signatures import hmac_sha256_hex, payment_signature

WEBHOOK_SECRET = "whsec_test"


class FakeGateway:
    provider = "razorpay"
    key_id = "rzp_test_key"
    key_secret = MOCK_KEY_SECRET

    def __init__(self):
        self.orders = []
        self.fail_create = False
        self.fail_fetch = False
        self._counter = 0

    def payment_signature(self, order_id, payment_id):
        return payment_signature(self.key_secret, order_id, payment_id)

    async def create_order(self, amount_minor, currency, receipt, notes):
        if self.fail_create:
            raise GatewayProviderError("Payment gateway rejected the request: Authentication failed", http_status=401)
        self._counter += 1
        order = GatewayOrder(id=f"order_test_{self._counter}", amount=amount_minor, currency=currency, receipt=receipt)
        self.orders.append((order, notes))
        return order

    async def fetch_payment(self, payment_id):
        if self.fail_fetch:
            raise GatewayTransportError("Payment gateway unreachable")
        return GatewayPaymentDetails(id=payment_id, method="card", status="captured", card_brand="Visa", card_last4="1111")


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def dispatch(self, event):
        self.events.append(event)
        return len(self.events)

    def of_type(self, cls):
        return [event for event in self.events if isinstance(event, cls)]


@dataclass
class World:
    student_id: int
    student_token: str
    other_id: int
    other_token: str
    admin_token: str
    instructor_id: int
    free_course_id: int
    course_a_id: int  # 499
    course_b_id: int  # 501
    draft_course_id: int
    orphan_course_id: int


def run(coro):
    return asyncio.run(coro)


def query_all(session_factory, stmt):
    async def _q():
        async with session_factory() as db:
            return (await db.execute(stmt)).scalars().all()

    return run(_q())


def count_rows(session_factory, model, *criteria):
    async def _q():
        async with session_factory() as db:
            stmt = select(func.count()).select_from(model)
            if criteria:
                stmt = stmt.where(*criteria)
            return (await db.execute(stmt)).scalar_one()

    return run(_q())


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def webhook_headers(body: bytes, secret: str = WEBHOOK_SECRET):
    return {"x-razorpay-signature": hmac_sha256_hex(secret, body), "content-type": "application/json"}


@pytest.fixture
def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    run(init_models(engine))
    yield factory
    run(engine.dispose())


@pytest.fixture
def world(session_factory):
    async def seed():
        async with session_factory() as db:
            instructor = User(username="carol", role="instructor", api_token="instructor-token")
            student = User(username="alice", api_token="student-token", telegram_id=1001)
            other = User(username="bob", api_token="other-token")
            admin = User(username="root", role="admin", api_token="admin-token")
            db.add_all([instructor, student, other, admin])
            await db.flush()

            def course(title, price, status=COURSE_PUBLISHED, instructor_id=instructor.id):
                return Course(title=title, price=Decimal(price), instructor_id=instructor_id, status=status)

            free = course("Intro", "0")
            course_a = course("Async Python", "499")
            course_b = course("FastAPI in Depth", "501")
            draft = course("Unfinished", "100", status="draft")
            orphan = course("Orphan", "100", instructor_id=None)
            db.add_all([free, course_a, course_b, draft, orphan])
            await db.flush()

            db.add_all(
                [
                    CartItem(user_id=student.id, course_id=course_a.id, price=course_a.price),
                    CartItem(user_id=student.id, course_id=course_b.id, price=course_b.price),
                ]
            )
            await db.commit()
            return World(
                student_id=student.id,
                student_token=student.api_token,
                other_id=other.id,
                other_token=other.api_token,
                admin_token=admin.api_token,
                instructor_id=instructor.id,
                free_course_id=free.id,
                course_a_id=course_a.id,
                course_b_id=course_b.id,
                draft_course_id=draft.id,
                orphan_course_id=orphan.id,
            )

    return run(seed())


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(session_factory, gateway, notifier):
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(admin_router)
    app.include_router(enroll_router.router, prefix="/api")
    app.include_router(enrollment_router.router, prefix="/api")
    app.include_router(payment_router.router, prefix="/api")

    async def override_get_db():
        async with session_factory() as db:
            yield db

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_gateway] = lambda: gateway
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    app.dependency_overrides[deps.get_webhook_secret] = lambda: WEBHOOK_SECRET
    app.dependency_overrides[deps.get_webhook_completes_payments] = lambda: True
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client
