"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (ledger, workflow, sweeps, API).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hr_leave.common.constants import (
    AccrualMethod,
    EmploymentStatus,
    EmploymentType,
    GenderType,
    RoundingRule,
    RoundingScope,
    UserRole,
)
from hr_leave.config import settings
from hr_leave.database import Base, get_db, get_session_factory
from hr_leave.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import hr_leave.auth.models  # noqa: F401
import hr_leave.common.audit  # noqa: F401
import hr_leave.core_hr.models  # noqa: F401
import hr_leave.leave.models  # noqa: F401
import hr_leave.leave_calendar.models  # noqa: F401
import hr_leave.notifications.models  # noqa: F401

from hr_leave.auth.models import RoleAssignment
from hr_leave.core_hr.models import Employee
from hr_leave.leave.ledger import EntitlementKey, EntitlementLedger
from hr_leave.leave.models import Entitlement, LeavePolicy, LeaveType

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
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
    from hr_leave.common.rate_limit import limiter
    if hasattr(limiter, "_storage"):
        limiter._storage.reset()
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


def _override_get_session_factory() -> async_sessionmaker[AsyncSession]:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
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


# ── Model factories ─────────────────────────────────────────────────

def _make_employee(
    *,
    email: Optional[str] = None,
    first_name: str = "Test",
    last_name: str = "User",
    date_of_joining: date = date(2024, 1, 15),
    reporting_manager_id: Optional[uuid.UUID] = None,
    l2_manager_id: Optional[uuid.UUID] = None,
    gender: Optional[GenderType] = None,
    employment_status: EmploymentStatus = EmploymentStatus.active,
    employment_type: EmploymentType = EmploymentType.full_time,
    is_active: bool = True,
) -> dict:
    code = uuid.uuid4().hex[:6].upper()
    return dict(
        id=uuid.uuid4(),
        employee_code=f"CF-{code}",
        first_name=first_name,
        last_name=last_name,
        email=email or f"{first_name.lower()}.{code.lower()}@creativefuel.io",
        date_of_joining=date_of_joining,
        reporting_manager_id=reporting_manager_id,
        l2_manager_id=l2_manager_id,
        gender=gender,
        employment_status=employment_status,
        employment_type=employment_type,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


async def _seed_employee(db: AsyncSession, **kwargs) -> Employee:
    emp = Employee(**_make_employee(**kwargs))
    db.add(emp)
    await db.flush()
    return emp


async def _seed_role(
    db: AsyncSession,
    employee_id: uuid.UUID,
    role: UserRole = UserRole.hr_admin,
) -> RoleAssignment:
    ra = RoleAssignment(
        id=uuid.uuid4(),
        employee_id=employee_id,
        role=role,
        is_active=True,
        assigned_at=datetime.now(timezone.utc),
    )
    db.add(ra)
    await db.flush()
    return ra


async def _seed_leave_type(
    db: AsyncSession,
    *,
    code: str = "CL",
    name: str = "Casual Leave",
    category: Optional[str] = None,
    is_paid: bool = True,
    is_deductible: bool = True,
    requires_attachment: bool = False,
    attachment_required_after_days: Optional[Decimal] = None,
    min_tenure_months: int = 0,
    max_duration_days: Optional[Decimal] = None,
    eligible_employment_types: Optional[list[str]] = None,
    eligible_employment_statuses: Optional[list[str]] = None,
    applicable_gender: Optional[GenderType] = None,
    is_active: bool = True,
    accrual_method: AccrualMethod = AccrualMethod.monthly,
    monthly_rate: Optional[Decimal] = None,
    yearly_rate: Optional[Decimal] = None,
    rounding_rule: RoundingRule = RoundingRule.round,
    rounding_scope: RoundingScope = RoundingScope.per_period,
    carry_forward_allowed: bool = False,
    max_carry_forward: Optional[Decimal] = None,
    carry_forward_expiry_months: Optional[int] = None,
    min_notice_days: int = 0,
    max_consecutive_days: Optional[int] = None,
    allow_blocked_period_exception: bool = False,
) -> LeaveType:
    """Insert a leave type together with its policy."""
    lt = LeaveType(
        id=uuid.uuid4(),
        code=code,
        name=name,
        category=category,
        is_paid=is_paid,
        is_deductible=is_deductible,
        requires_attachment=requires_attachment,
        attachment_required_after_days=attachment_required_after_days,
        min_tenure_months=min_tenure_months,
        max_duration_days=max_duration_days,
        eligible_employment_types=eligible_employment_types or [],
        eligible_employment_statuses=eligible_employment_statuses or [],
        applicable_gender=applicable_gender,
        is_active=is_active,
    )
    db.add(lt)
    await db.flush()
    db.add(LeavePolicy(
        id=uuid.uuid4(),
        leave_type_id=lt.id,
        accrual_method=accrual_method,
        monthly_rate=monthly_rate,
        yearly_rate=yearly_rate,
        rounding_rule=rounding_rule,
        rounding_scope=rounding_scope,
        carry_forward_allowed=carry_forward_allowed,
        max_carry_forward=max_carry_forward,
        carry_forward_expiry_months=carry_forward_expiry_months,
        min_notice_days=min_notice_days,
        max_consecutive_days=max_consecutive_days,
        allow_blocked_period_exception=allow_blocked_period_exception,
    ))
    await db.flush()
    await db.refresh(lt, attribute_names=["policy"])
    return lt


async def _seed_entitlement(
    db: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    *,
    year: int = 2026,
    yearly_entitlement: Decimal = Decimal("12"),
    opening: Decimal = Decimal("0"),
) -> Entitlement:
    """Open an entitlement; a non-zero *opening* is posted as a manual credit."""
    ent = await EntitlementLedger.open_entitlement(
        db,
        EntitlementKey(employee_id, leave_type_id, year),
        yearly_entitlement=yearly_entitlement,
    )
    if opening:
        ent = await EntitlementLedger.adjust(
            db, ent.id, opening, reason="Opening balance", actor_id=None,
        )
    return ent


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_header(employee_id: uuid.UUID, role: UserRole = UserRole.employee) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id, role)}"}
