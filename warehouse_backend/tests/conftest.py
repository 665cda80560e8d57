"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from warehouse_backend.app.main import app
from warehouse_backend.app.db.session import get_db, Base
from warehouse_backend.app.db.immutability import register_immutability_listeners
from warehouse_backend.app.core.dependencies import Actor
from warehouse_backend.app.models.enums import UserRole
from warehouse_backend.app.models.user import User
import warehouse_backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.published = []
        self._closed = False

    async def ping(self):
        return not self._closed

    async def publish(self, channel, message):
        if self._closed:
            raise ConnectionError("Redis connection closed")
        self.published.append((channel, message))
        return 1

    async def aclose(self):
        self._closed = True


@pytest.fixture(scope="session", autouse=True)
def immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture(autouse=True)
def mock_redis(monkeypatch):
    """Replace the global redis client used by the notifier."""
    client = MockRedis()
    monkeypatch.setattr(redis_client_module, "redis_client", client)
    return client


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(test_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


# Shared session for fixture data creation and direct service calls
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """Async client for testing."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides = {}


# User factories

async def create_user(
    db: AsyncSession,
    member_code: str,
    role: UserRole = UserRole.USER,
    is_active: bool = True,
    is_deleted: bool = False
) -> User:
    user = User(
        email=f"{member_code.lower()}@example.com",
        full_name=f"Member {member_code}",
        member_code=member_code,
        role=role,
        is_active=is_active,
        is_deleted=is_deleted,
    )
    db.add(user)
    await db.commit()
    return user


def actor_for(user: User) -> Actor:
    return Actor(id=user.id, role=user.role, ip_address="127.0.0.1", user_agent="pytest")


def headers_for(user: User, idempotency_key: str = None) -> dict:
    headers = {"X-Actor-Id": str(user.id), "X-Actor-Role": user.role.value}
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    return headers


# Fixture users are created in their own session so a rollback in db_session
# never expires them

async def _seed_user(session_factory, member_code, role=UserRole.USER):
    async with session_factory() as session:
        return await create_user(session, member_code, role)


@pytest.fixture
async def admin_user(session_factory):
    return await _seed_user(session_factory, "PHW-ADMIN1", UserRole.ADMIN)


@pytest.fixture
async def staff_user(session_factory):
    return await _seed_user(session_factory, "PHW-STAFF1", UserRole.WAREHOUSE_STAFF)


@pytest.fixture
async def member(session_factory):
    return await _seed_user(session_factory, "PHW-ABC123")


@pytest.fixture
async def other_member(session_factory):
    return await _seed_user(session_factory, "PHW-XYZ789")


@pytest.fixture
def admin(admin_user):
    return actor_for(admin_user)


@pytest.fixture
def staff(staff_user):
    return actor_for(staff_user)


@pytest.fixture
def member_actor(member):
    return actor_for(member)
