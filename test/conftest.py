"""
Pytest configuration and fixtures for second-factor tests
"""

import os
import sys
from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

from twofactor.auth import create_access_token, hash_password  # noqa: E402
from twofactor.database import Base  # noqa: E402
from twofactor.models import User  # noqa: E402
from twofactor.services.activity_auditor import ActivityAuditor  # noqa: E402
from twofactor.services.flow_store import FlowStore  # noqa: E402
from twofactor.services.identity import PasswordIdentityProvider  # noqa: E402

from utils.fakes import FakeClock, FakeNotifier  # noqa: E402

# Bound to a fresh in-memory engine by setup_test_database
TestSessionLocal = async_sessionmaker(class_=AsyncSession, autoflush=False, expire_on_commit=False)

# Patch the package's engine and session maker before the app is imported
import twofactor.database as database_module  # noqa: E402

database_module.AsyncSessionLocal = TestSessionLocal

from twofactor.database import get_db  # noqa: E402
from twofactor.main import app  # noqa: E402
from twofactor.routes.deps import get_auditor, get_clock  # noqa: E402
from twofactor.services.enrollment import enrollment_flows  # noqa: E402
from twofactor.services.login_challenge import login_challenges  # noqa: E402
from twofactor.services.notifier import get_notifier  # noqa: E402

TEST_PASSWORD = "testpassword"


@pytest.fixture(scope="function")
async def setup_test_database():
    """Create a fresh in-memory database for each test function."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestSessionLocal.configure(bind=test_engine)
    database_module.engine = test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture(scope="function")
async def test_db(setup_test_database) -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def identity() -> PasswordIdentityProvider:
    return PasswordIdentityProvider()


@pytest.fixture
def auditor(clock: FakeClock) -> ActivityAuditor:
    return ActivityAuditor(session_factory=TestSessionLocal, clock=clock)


@pytest.fixture
def enrollment_store(clock: FakeClock) -> FlowStore:
    return FlowStore(ttl=timedelta(minutes=30), clock=clock)


@pytest.fixture
def challenge_store(clock: FakeClock) -> FlowStore:
    return FlowStore(ttl=timedelta(minutes=30), clock=clock)


async def _create_user(db: AsyncSession, username: str, email: str) -> User:
    user = User(username=username, email=email, hashed_password=hash_password(TEST_PASSWORD))
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def test_user(test_db: AsyncSession) -> User:
    return await _create_user(test_db, "testuser", "testuser@example.com")


@pytest.fixture
async def other_user(test_db: AsyncSession) -> User:
    return await _create_user(test_db, "otheruser", "other@example.com")


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    access_token = create_access_token(data={"sub": test_user.email}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
async def client(setup_test_database, clock: FakeClock, notifier: FakeNotifier, auditor: ActivityAuditor):
    """HTTP client against the app with the test database and fakes wired in."""

    async def override_get_db():
        async with TestSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_auditor] = lambda: auditor

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    enrollment_flows.clear()
    login_challenges.clear()
