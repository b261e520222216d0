"""
Test fixtures for the banking core test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory / db_session: Fresh in-memory SQLite
    database for each test
  - file_engine / file_session_factory: File-backed SQLite database with
    independent connections, for tests that run movements concurrently
  - client: Async HTTP test client (unauthenticated)
  - authenticated_client / second_authenticated_client: Clients signed up
    as two different customers, each with its own Authorization header
  - admin_client: Client for a user promoted to ADMIN
  - transfer_engine / concurrent_engine: Transfer Engines bound to the two
    databases, each with its own change feed
  - make_member / make_admin / open_account / fund: Helpers that set up
    users and accounts directly through the services

Key design decisions:
  - Required secrets are set in the environment before bankcore is
    imported, so Settings() can be built without a .env file.
  - Only get_session_factory is overridden: get_db and the Transfer Engine
    both take their sessions from it, so every request and every engine
    step hits the test database.
  - The in-memory database lives on a single shared connection. Tests that
    need real concurrency use the file-backed database instead.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("CARD_ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")
os.environ.setdefault("VERIFICATION_WEBHOOK_SECRET", "provider-secret")

import uuid  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy import update  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402

from bankcore.context import CallerContext  # noqa: E402
from bankcore.database import Base, get_session_factory  # noqa: E402
from bankcore.main import app  # noqa: E402
from bankcore.models.account import Account, AccountKind, AccountStatus  # noqa: E402
from bankcore.models.user import User, UserRole  # noqa: E402
from bankcore.services import account_service, verification_service  # noqa: E402
from bankcore.services.notifications import build_dispatcher  # noqa: E402
from bankcore.services.projection import ChangeFeed  # noqa: E402
from bankcore.services.transfer_engine import TransferEngine  # noqa: E402


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"


def _factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return _factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """
    File-backed SQLite engine: every session gets its own connection, so
    concurrent movements really interleave at the storage layer.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(file_engine):
    return _factory(file_engine)


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def make_client(session_factory):
    """
    Factory for test clients that share the test database.

    Each client has its own headers, so several users can be signed in at
    the same time.
    """
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    clients = []

    async def _make() -> AsyncClient:
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        return ac

    yield _make

    for ac in clients:
        await ac.aclose()
    app.dependency_overrides.clear()


async def _signed_up(make_client, email: str, password: str, first_name: str) -> AsyncClient:
    ac = await make_client()
    response = await ac.post(
        "/auth/signup",
        json={
            "email": email,
            "password": password,
            "first_name": first_name,
            "last_name": "User",
        },
    )
    assert response.status_code == 201, f"Signup failed: {response.text}"
    body = response.json()
    ac.headers["Authorization"] = f"Bearer {body['token']}"
    ac.user_id = uuid.UUID(body["user_id"])
    return ac


@pytest_asyncio.fixture
async def client(make_client):
    """Unauthenticated client."""
    return await make_client()


@pytest_asyncio.fixture
async def authenticated_client(make_client):
    """Client signed up as a customer via the real signup endpoint."""
    return await _signed_up(make_client, "testuser@example.com", "SecurePass123!", "Test")


@pytest_asyncio.fixture
async def second_authenticated_client(make_client):
    """A second customer, for cross-user authorization tests."""
    return await _signed_up(make_client, "seconduser@example.com", "SecurePass456!", "Second")


@pytest_asyncio.fixture
async def admin_client(make_client, session_factory):
    """
    Client for an ADMIN user.

    Signs up normally, then promotes the user directly in the database, the
    way an operator provisions back-office staff.
    """
    ac = await _signed_up(make_client, "admin@example.com", "AdminPass123!", "Admin")
    async with session_factory() as session:
        await session.execute(
            update(User).where(User.id == ac.user_id).values(role=UserRole.ADMIN)
        )
        await session.commit()

    login_response = await ac.post(
        "/auth/login",
        json={"email": "admin@example.com", "password": "AdminPass123!"},
    )
    ac.headers["Authorization"] = f"Bearer {login_response.json()['token']}"
    return ac


# ---------------------------------------------------------------------------
# Service-level helpers
# ---------------------------------------------------------------------------

def _engine_for(factory) -> TransferEngine:
    return TransferEngine(factory, build_dispatcher(factory), feed=ChangeFeed())


@pytest_asyncio.fixture
async def transfer_engine(session_factory):
    return _engine_for(session_factory)


@pytest_asyncio.fixture
async def concurrent_engine(file_session_factory):
    return _engine_for(file_session_factory)


async def _create_user(factory, role: UserRole, email: str | None = None) -> CallerContext:
    async with factory() as session:
        user = User(
            email=email or f"{uuid.uuid4().hex[:12]}@example.com",
            hashed_password="not-a-real-hash",
            role=role,
            first_name="Test",
            last_name="User",
        )
        session.add(user)
        await session.flush()
        await verification_service.get_or_create_case(session, user.id)
        await session.commit()
        return CallerContext(user_id=user.id, role=role)


@pytest_asyncio.fixture
async def make_member(session_factory):
    async def _make(factory=None, email: str | None = None) -> CallerContext:
        return await _create_user(factory or session_factory, UserRole.USER, email)
    return _make


@pytest_asyncio.fixture
async def make_admin(session_factory):
    async def _make(factory=None) -> CallerContext:
        return await _create_user(factory or session_factory, UserRole.ADMIN)
    return _make


@pytest_asyncio.fixture
async def open_account(session_factory):
    """Open an account through account_service; optionally set its status."""
    async def _open(
        ctx: CallerContext,
        kind: AccountKind = AccountKind.CHECKING,
        factory=None,
        status: AccountStatus | None = None,
    ) -> Account:
        async with (factory or session_factory)() as session:
            account, _ = await account_service.open_account(session, ctx, kind)
            if status is not None:
                account.status = status
            await session.commit()
            return account
    return _open


@pytest_asyncio.fixture
async def fund():
    """Deposit money through the engine so stored and ledger balances agree."""
    async def _fund(engine: TransferEngine, ctx: CallerContext, account_id: uuid.UUID, cents: int):
        outcome = await engine.deposit(ctx, account_id, cents, idempotency_key=f"fund-{uuid.uuid4()}")
        assert outcome.movement.state.value == "completed"
        return outcome
    return _fund
