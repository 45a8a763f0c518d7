"""
Database connection and session management.

Uses SQLAlchemy with async support (asyncpg driver in production,
aiosqlite for tests and local development).
"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from typing import AsyncGenerator

from floworx.core.config import settings
from floworx.core.errors import ConflictError

# Base class for all models
Base = declarative_base()


def _engine_kwargs() -> dict:
    kwargs = {"echo": settings.DEBUG and not settings.is_sqlite}
    if not settings.is_sqlite:
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return kwargs


# Async engine for main app
async_engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs())

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database sessions.

    Commits on success, rolls back on any error. Unique-key violations
    that escape the services are reported as ConflictError (409).

    Usage:
        @router.get("/categories")
        async def list_categories(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            raise ConflictError("Resource already exists", code="DUPLICATE") from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """
    Initialize database (create tables).

    For production, use Alembic migrations instead.
    This is useful for testing and local development.
    """
    # Import models so they register with Base.metadata
    import floworx.models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections gracefully."""
    await async_engine.dispose()
