"""Tests for common utilities — pagination, problem details, audit, roles."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.auth.identity import SYSTEM_ACTOR, Actor
from hr_leave.common.audit import create_audit_entry
from hr_leave.common.constants import LeaveRequestStatus, UserRole
from hr_leave.common.exceptions import (
    ConflictError,
    PolicyViolation,
    StateTransitionError,
    register_exception_handlers,
)
from hr_leave.common.pagination import PaginationParams, paginate
from hr_leave.core_hr.models import Employee
from tests.conftest import _seed_employee


def _problem_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/conflict")
    async def conflict():
        raise ConflictError("Request was modified.", rule="stale_version")

    @app.get("/transition")
    async def transition():
        raise StateTransitionError(LeaveRequestStatus.hr_approved.value, "cancel")

    @app.get("/policy")
    async def policy():
        raise PolicyViolation(
            "notice",
            "Casual Leave needs 2 days notice.",
            violations=[{"rule": "notice", "detail": "Too late."}],
        )

    @app.get("/typed/{n}")
    async def typed(n: int):
        return {"n": n}

    return app


async def _call(path: str):
    async with AsyncClient(transport=ASGITransport(app=_problem_app()), base_url="http://test") as ac:
        return await ac.get(path)


# ═════════════════════════════════════════════════════════════════════
# PAGINATION
# ═════════════════════════════════════════════════════════════════════


class TestPagination:

    async def test_paginate_with_sort(self, db: AsyncSession):
        for name in ("Chitra", "Anil", "Bela", "Esha", "Dev"):
            await _seed_employee(db, first_name=name)

        params = PaginationParams(page=1, page_size=3, sort="-first_name")
        rows, meta = await paginate(db, select(Employee), params, model=Employee)

        assert [e.first_name for e in rows] == ["Esha", "Dev", "Chitra"]
        assert meta.total == 5
        assert meta.total_pages == 2
        assert meta.has_next is True

    async def test_paginate_page_2(self, db: AsyncSession):
        for i in range(5):
            await _seed_employee(db, first_name=f"P{i}")

        params = PaginationParams(page=2, page_size=3, sort="first_name")
        rows, meta = await paginate(db, select(Employee), params, model=Employee)

        assert [e.first_name for e in rows] == ["P3", "P4"]
        assert meta.has_prev is True
        assert meta.has_next is False

    async def test_unknown_sort_column_ignored(self, db: AsyncSession):
        await _seed_employee(db)
        params = PaginationParams(page=1, page_size=10, sort="password; DROP TABLE employees")
        rows, meta = await paginate(db, select(Employee), params, model=Employee)
        assert len(rows) == 1
        assert meta.total == 1

    async def test_count_respects_where(self, db: AsyncSession):
        await _seed_employee(db, first_name="Kept")
        await _seed_employee(db, first_name="Other")

        query = select(Employee).where(Employee.first_name == "Kept")
        params = PaginationParams(page=1, page_size=10, sort=None)
        rows, meta = await paginate(db, query, params, model=Employee)
        assert meta.total == 1
        assert rows[0].first_name == "Kept"

    async def test_paginate_empty_result(self, db: AsyncSession):
        query = select(Employee).where(Employee.first_name == "ZZZ_NONEXISTENT")
        params = PaginationParams(page=1, page_size=10, sort=None)
        rows, meta = await paginate(db, query, params, model=Employee)
        assert rows == []
        assert meta.total == 0
        assert meta.total_pages == 0


# ═════════════════════════════════════════════════════════════════════
# PROBLEM DETAILS
# ═════════════════════════════════════════════════════════════════════


class TestProblemDetails:

    async def test_conflict_is_retryable(self):
        resp = await _call("/conflict")
        assert resp.status_code == 409
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["rule"] == "stale_version"
        assert body["retryable"] is True
        assert body["instance"] == "/conflict"

    async def test_transition_names_state(self):
        resp = await _call("/transition")
        body = resp.json()
        assert resp.status_code == 409
        assert body["rule"] == "transition"
        assert "hr_approved" in body["detail"]

    async def test_policy_violation(self):
        resp = await _call("/policy")
        body = resp.json()
        assert resp.status_code == 422
        assert body["rule"] == "notice"
        assert body["errors"]["violations"][0]["rule"] == "notice"

    async def test_request_validation_uses_problem_shape(self):
        resp = await _call("/typed/not-a-number")
        body = resp.json()
        assert resp.status_code == 422
        assert body["rule"] == "input"
        assert "n" in body["errors"]


# ═════════════════════════════════════════════════════════════════════
# AUDIT TRAIL
# ═════════════════════════════════════════════════════════════════════


class TestAuditEntry:

    async def test_values_are_json_safe(self, db: AsyncSession):
        entity = uuid.uuid4()
        entry = await create_audit_entry(
            db,
            action="adjust",
            entity_type="entitlement",
            entity_id=entity,
            actor_id=SYSTEM_ACTOR.employee_id,
            old_values={"remaining": Decimal("4.5")},
            new_values={
                "remaining": Decimal("6"),
                "status": LeaveRequestStatus.submitted,
                "on": date(2026, 3, 1),
                "flag": True,
            },
        )
        assert entry.old_values == {"remaining": "4.5"}
        assert entry.new_values == {
            "remaining": "6", "status": "submitted", "on": "2026-03-01", "flag": True,
        }


# ═════════════════════════════════════════════════════════════════════
# ROLE HIERARCHY
# ═════════════════════════════════════════════════════════════════════


class TestActorRoles:

    def test_hr_includes_manager(self):
        hr = Actor(uuid.uuid4(), UserRole.hr_admin)
        assert hr.is_hr
        assert hr.has_any_role([UserRole.manager])

    def test_manager_is_not_hr(self):
        manager = Actor(uuid.uuid4(), UserRole.manager)
        assert not manager.is_hr
        assert not manager.has_any_role([UserRole.hr_admin, UserRole.system_admin])

    def test_system_actor_is_hr(self):
        assert SYSTEM_ACTOR.is_hr
        assert SYSTEM_ACTOR.employee_id == uuid.UUID(int=0)
