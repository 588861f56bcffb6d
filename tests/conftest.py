"""Shared test fixtures — async DB, client, actor header, seed helpers.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Plain-text logs in test output; must be set before settings are imported
os.environ.setdefault("LOG_JSON", "false")

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_ledger.common.constants import LeaveStatus
from leave_ledger.database import Base, get_db
from leave_ledger.leave.models import LeaveEntitlement, LeaveRequest, LeaveType
from leave_ledger.leave.policy import LedgerPolicy
from leave_ledger.main import create_app

# Registers the audit_trail table on Base.metadata
import leave_ledger.common.audit  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT ────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
    )
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs (begin_nested) work
    dbapi_conn.isolation_level = None


@event.listens_for(engine.sync_engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from leave_ledger.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


@pytest.fixture
def policy() -> LedgerPolicy:
    return LedgerPolicy()


ACTOR_ID = uuid.UUID("00000000-0000-4000-8000-0000000000a1")
ACTOR_HEADERS = {"X-Actor-Id": str(ACTOR_ID)}


# ── Seed helpers ────────────────────────────────────────────────────

async def seed_leave_type(
    db: AsyncSession,
    *,
    code: str = "annual",
    name: str = "Annual Leave",
    default_entitlement: Optional[Decimal] = None,
    is_paid: bool = True,
    allow_negative_balance: bool = False,
    is_active: bool = True,
) -> LeaveType:
    leave_type = LeaveType(
        id=uuid.uuid4(),
        code=code,
        name=name,
        default_entitlement=default_entitlement,
        is_paid=is_paid,
        allow_negative_balance=allow_negative_balance,
        is_active=is_active,
    )
    db.add(leave_type)
    await db.flush()
    return leave_type


async def seed_entitlement(
    db: AsyncSession,
    leave_type: LeaveType,
    *,
    employee_id: Optional[uuid.UUID] = None,
    yearly: Decimal = Decimal("21"),
    accrued: Decimal = Decimal("0"),
    carry_forward: Decimal = Decimal("0"),
    carry_forward_expiry: Optional[date] = None,
    taken: Decimal = Decimal("0"),
    pending: Decimal = Decimal("0"),
) -> LeaveEntitlement:
    entitlement = LeaveEntitlement(
        employee_id=employee_id or uuid.uuid4(),
        leave_type_id=leave_type.id,
        leave_type=leave_type,
        yearly_entitlement=yearly,
        accrued=accrued,
        carry_forward=carry_forward,
        carry_forward_expiry=carry_forward_expiry,
        taken=taken,
        pending=pending,
        period_start=date(2026, 1, 1),
    )
    db.add(entitlement)
    await db.flush()
    return entitlement


async def seed_request(
    db: AsyncSession,
    leave_type: LeaveType,
    *,
    employee_id: uuid.UUID,
    start: date,
    end: Optional[date] = None,
    days: Decimal = Decimal("1"),
    status: LeaveStatus = LeaveStatus.pending,
    employee_name: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> LeaveRequest:
    request = LeaveRequest(
        id=uuid.uuid4(),
        employee_id=employee_id,
        employee_name=employee_name,
        leave_type_id=leave_type.id,
        leave_type=leave_type,
        start_date=start,
        end_date=end or start,
        duration_days=days,
        status=status,
        created_at=created_at or datetime(2025, 12, 1, tzinfo=timezone.utc),
    )
    db.add(request)
    await db.flush()
    return request
