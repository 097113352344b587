"""Populate the database with demo users and courses asynchronously."""

import asyncio
from decimal import Decimal

from sqlalchemy import delete

from server.db.session import DATABASE_URL, SessionLocal, init_models
from server.models.cart import CartItem
from server.models.course import Course, COURSE_PUBLISHED
from server.models.enrollment import Enrollment
from server.models.notification import Notification
from server.models.payment import Payment
from server.models.user import User
from server.services import user_service

print(f"🗂 Используется база данных: {DATABASE_URL}")


async def main() -> None:
    await init_models()
    async with SessionLocal() as session:
        print("🧹 Очищаю таблицы...")
        for model in (Notification, CartItem, Enrollment, Payment, Course, User):
            await session.execute(delete(model))
        await session.commit()

        print("➕ Добавляю пользователей...")
        admin = await user_service.create_user(session, "admin", role="admin")
        instructor = await user_service.create_user(session, "instructor", role="instructor")
        student = await user_service.create_user(session, "student")

        print("📚 Добавляю курсы...")
        session.add_all(
            [
                Course(title="Python Basics", price=Decimal("0"), instructor_id=instructor.id, status=COURSE_PUBLISHED),
                Course(title="Async Python", price=Decimal("499"), instructor_id=instructor.id, status=COURSE_PUBLISHED),
                Course(title="FastAPI in Depth", price=Decimal("501"), instructor_id=instructor.id, status=COURSE_PUBLISHED),
            ]
        )
        await session.commit()

        print("✅ База данных успешно заполнена.")
        for user in (admin, instructor, student):
            print(f"   {user.role:<10} {user.username:<10} token={user.api_token}")


if __name__ == "__main__":
    asyncio.run(main())
