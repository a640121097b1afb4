"""Shared fixtures: in-memory SQLite database, users, stages and an API client."""

import os

# Settings and the module-level engine are built at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["CREATE_TABLES_ON_STARTUP"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SCHEDULER_ENABLED"] = "false"

from decimal import Decimal

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from dealflow.core import create_session_factory, get_session
from dealflow.main import app
from dealflow.models import Base, Stage, StageOutcome, User, UserRole
from dealflow.realtime import EventOutbox, RealtimeGateway
from dealflow.schemas import StageCreate
from dealflow.services import StageService


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy own BEGIN so SAVEPOINTs nest correctly on SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def outbox() -> EventOutbox:
    return EventOutbox()


# =============================================================================
# USERS
# =============================================================================


async def _create_user(session: AsyncSession, name: str, role: UserRole) -> User:
    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        role=role,
        incentive_percentage=Decimal("5.00"),
    )
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def super_admin(session) -> User:
    return await _create_user(session, "Sara Super", UserRole.SUPER_ADMIN)


@pytest.fixture
async def admin(session) -> User:
    return await _create_user(session, "Omar Admin", UserRole.ADMIN)


@pytest.fixture
async def rep(session) -> User:
    return await _create_user(session, "Rina Rep", UserRole.REPRESENTATIVE)


@pytest.fixture
async def other_rep(session) -> User:
    return await _create_user(session, "Tanvir Rep", UserRole.REPRESENTATIVE)


# =============================================================================
# STAGES
# =============================================================================


@pytest.fixture
async def stages(session, admin) -> dict[str, Stage]:
    """New -> Contacted -> Won pipeline."""
    service = StageService(session)
    created = {
        "new": await service.create_stage(StageCreate(title="New"), admin.id),
        "contacted": await service.create_stage(StageCreate(title="Contacted"), admin.id),
        "won": await service.create_stage(
            StageCreate(title="Won", is_terminal=StageOutcome.WON), admin.id
        ),
    }
    await session.commit()
    return created


# =============================================================================
# API
# =============================================================================


@pytest.fixture
async def gateway():
    gateway = RealtimeGateway()
    await gateway.start()
    yield gateway
    await gateway.stop()


@pytest.fixture
async def client(session_factory, gateway):
    """HTTP client against the app, sharing the test database."""

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.state.gateway = gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
