"""Utility functions for working with :class:`User` via ``AsyncSession``."""

import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from server.models.user import User


async def get_user_by_token(db: AsyncSession, api_token: str):
    result = await db.execute(select(User).filter_by(api_token=api_token))
    return result.scalars().first()


async def create_user(db: AsyncSession, username: str, role: str = "student", email=None, telegram_id=None):
    """Create a user with a fresh API token."""
    user = User(
        username=username,
        email=email,
        role=role,
        telegram_id=telegram_id,
        api_token=secrets.token_hex(24),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user
