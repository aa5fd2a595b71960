"""Shared test fixtures — async DB, ASGI client, API client, auth helpers, seeders.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test settings before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import uuid
from datetime import date, datetime, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hrflow.auth.service import create_access_token
from hrflow.auth.session import Actor, TokenSession
from hrflow.client.api import ApiClient
from hrflow.common.constants import (
    ApprovalStatus,
    AttendanceStatus,
    CheckMethod,
    LeaveType,
    UserRole,
)
from hrflow.database import Base, get_db
from hrflow.main import create_app

# Import ALL model modules so create_all sees every table
import hrflow.common.audit  # noqa: F401
import hrflow.leave.models  # noqa: F401
import hrflow.attendance.models  # noqa: F401

from hrflow.attendance.models import AttendanceEntry
from hrflow.leave.models import LeaveAllocation, LeaveRequest

# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

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
    from hrflow.common.rate_limit import limiter

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


# ── Actors ──────────────────────────────────────────────────────────

EMPLOYEE = Actor(id="emp-1", role=UserRole.employee, organization_id="org-1")
OTHER_EMPLOYEE = Actor(id="emp-2", role=UserRole.employee, organization_id="org-1")
CONTRACTOR = Actor(id="ctr-1", role=UserRole.contractor, organization_id="org-1")
MANAGER = Actor(id="mgr-1", role=UserRole.client, organization_id="org-1")
ADMIN = Actor(id="adm-1", role=UserRole.admin)


def auth_headers(actor: Actor, expires_minutes: Optional[int] = None) -> dict[str, str]:
    """Bearer auth headers for ``actor``."""
    return {"Authorization": f"Bearer {create_access_token(actor, expires_minutes)}"}


def session_for(actor: Actor) -> TokenSession:
    return TokenSession.from_token(create_access_token(actor))


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


@pytest.fixture
async def api_client_for(app):
    """Factory: an ApiClient talking to the test app as ``actor``."""
    created: list[ApiClient] = []

    def _make(actor: Actor, **kwargs) -> ApiClient:
        api = ApiClient(
            kwargs.pop("session", None) or session_for(actor),
            base_url="http://test/api/v1",
            transport=ASGITransport(app=app),
            **kwargs,
        )
        created.append(api)
        return api

    yield _make
    for api in created:
        await api.aclose()


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Seeders ─────────────────────────────────────────────────────────

async def seed_balance(
    db: AsyncSession,
    employee_ref: str,
    leave_type: Optional[LeaveType],
    *,
    total: int,
    used: int = 0,
) -> LeaveAllocation:
    """Insert a balance row; ``leave_type=None`` is the pooled balance."""
    row = LeaveAllocation(
        id=uuid.uuid4(),
        employee_ref=employee_ref,
        leave_type=leave_type,
        total=total,
        used=used,
    )
    db.add(row)
    await db.commit()
    return row


async def seed_leave(
    db: AsyncSession,
    employee_ref: str = EMPLOYEE.id,
    *,
    leave_type: LeaveType = LeaveType.annual,
    start: date = date(2024, 3, 1),
    end: date = date(2024, 3, 3),
    status: ApprovalStatus = ApprovalStatus.pending,
    reason: str = "Family trip",
) -> LeaveRequest:
    row = LeaveRequest(
        id=uuid.uuid4(),
        employee_ref=employee_ref,
        leave_type=leave_type,
        start_date=start,
        end_date=end,
        days=(end - start).days + 1,
        reason=reason,
        status=status,
    )
    db.add(row)
    await db.commit()
    return row


async def seed_attendance(
    db: AsyncSession,
    employee_ref: str = EMPLOYEE.id,
    *,
    work_date: date = date(2024, 3, 4),
    check_in: datetime = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc),
    check_out: Optional[datetime] = datetime(2024, 3, 4, 18, 30, tzinfo=timezone.utc),
    approval_status: ApprovalStatus = ApprovalStatus.pending,
) -> AttendanceEntry:
    working = (check_out - check_in).total_seconds() / 3600 if check_out else 0.0
    row = AttendanceEntry(
        id=uuid.uuid4(),
        employee_ref=employee_ref,
        work_date=work_date,
        check_in_time=check_in,
        check_in_method=CheckMethod.manual,
        check_out_time=check_out,
        check_out_method=CheckMethod.manual if check_out else None,
        status=AttendanceStatus.present,
        working_hours=round(working, 2),
        overtime_hours=round(max(working - 8, 0), 2),
        approval_status=approval_status,
    )
    db.add(row)
    await db.commit()
    return row
