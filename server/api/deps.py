"""Request-scoped dependencies shared by the API routers."""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from server import config
from server.db.session import SessionLocal
from server.models.user import User
from server.services import user_service
from server.services.errors import ForbiddenError, UnauthorizedError
from server.services.notification_service import NotificationDispatcher
from server.services.razorpay_gateway import get_gateway  # noqa: F401  re-exported for overrides


async def get_db():
    async with SessionLocal() as db:
        yield db


def get_notifier() -> NotificationDispatcher:
    return NotificationDispatcher(SessionLocal)


def get_webhook_secret() -> str:
    return config.RAZORPAY_WEBHOOK_SECRET


def get_webhook_completes_payments() -> bool:
    return config.WEBHOOK_COMPLETES_PAYMENTS


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> User:
    token = _bearer_token(authorization)
    if token is None:
        raise UnauthorizedError("Not authorized, no token")
    user = await user_service.get_user_by_token(db, token)
    if user is None:
        raise UnauthorizedError("Not authorized, token invalid")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise ForbiddenError("Admin access required")
    return user


async def require_instructor(user: User = Depends(get_current_user)) -> User:
    if user.role != "instructor":
        raise ForbiddenError("Instructor access required")
    return user
