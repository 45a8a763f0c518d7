"""
Shared test fixtures.

Environment defaults are set before any floworx import so Settings can be
built without a .env file. Each test gets a fresh in-memory SQLite database.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_floworx.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENCRYPTION_KEY", "dGVzdC1lbmNyeXB0aW9uLWtleS0zMi1ieXRlcy0hISE=")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")

from unittest.mock import Mock

import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from floworx.core.database import Base
from floworx.core.security import create_access_token

from tests.factories import create_user


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with foreign keys enforced."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def user(db_session):
    return await create_user(db_session)


@pytest.fixture
def auth_headers(user):
    token = create_access_token(str(user.id), user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def dispatcher():
    """Stand-in for the Celery dispatch of the onboarding-completed event."""
    return Mock(name="dispatch_onboarding_completed")


@pytest_asyncio.fixture
async def client(session_factory, dispatcher):
    """HTTP client against the app, wired to the test database."""
    from floworx.core.database import get_db
    from floworx.core.errors import ConflictError
    from floworx.main import app
    from floworx.modules.onboarding.routes import get_onboarding_store
    from floworx.modules.onboarding.store import OnboardingStore
    from sqlalchemy.exc import IntegrityError

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError("Resource already exists", code="DUPLICATE") from e
            except Exception:
                await session.rollback()
                raise

    def _get_test_store(db: AsyncSession = Depends(get_db)):
        return OnboardingStore(db, dispatcher=dispatcher)

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_onboarding_store] = _get_test_store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as http_client:
        yield http_client

    app.dependency_overrides.clear()
