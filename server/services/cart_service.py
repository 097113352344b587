"""Cart cleanup after a purchase."""

from typing import Iterable

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from server.models.cart import CartItem


async def remove_courses(db: AsyncSession, user_id: int, course_ids: Iterable[int], commit: bool = True) -> int:
    """Drop ``course_ids`` from the user's cart. Returns how many items were removed."""
    course_ids = list(course_ids)
    if not course_ids:
        return 0
    result = await db.execute(
        delete(CartItem).where(CartItem.user_id == user_id, CartItem.course_id.in_(course_ids))
    )
    if commit:
        await db.commit()
    return result.rowcount
