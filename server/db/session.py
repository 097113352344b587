"""Database session and engine setup using SQLAlchemy's async API."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from server.config import DATABASE_URL

engine = create_async_engine(DATABASE_URL, echo=False)
SessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
    class_=AsyncSession,
)


def import_models():
    """Import every model module so ``Base.metadata`` knows all tables."""
    from server.models import cart as _cart  # noqa: F401
    from server.models import course as _course  # noqa: F401
    from server.models import enrollment as _enrollment  # noqa: F401
    from server.models import notification as _notification  # noqa: F401
    from server.models import payment as _payment  # noqa: F401
    from server.models import user as _user  # noqa: F401


async def init_models(bind=None) -> None:
    """Create all tables directly, bypassing Alembic (local runs and scripts)."""
    from server.db.base_class import Base

    import_models()
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
