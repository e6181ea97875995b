"""Leave API tests — auth, RBAC, RFC 7807 errors and the approval flow over HTTP.

Data is seeded through committed sessions because the test client opens
its own session per request.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

from hr_leave.common.constants import UserRole
from tests.conftest import (
    TestSessionFactory,
    _seed_employee,
    _seed_role,
    auth_header,
    create_access_token,
)

BASE = "/api/v1/leave"


async def _seed_people() -> SimpleNamespace:
    async with TestSessionFactory() as session:
        manager = await _seed_employee(session, first_name="Meera")
        await _seed_role(session, manager.id, UserRole.manager)
        hr = await _seed_employee(session, first_name="Hari")
        await _seed_role(session, hr.id, UserRole.hr_admin)
        emp = await _seed_employee(session, first_name="Esha", reporting_manager_id=manager.id)
        await session.commit()
    return SimpleNamespace(
        emp=emp.id,
        manager=manager.id,
        hr=hr.id,
        emp_h=auth_header(emp.id, UserRole.employee),
        manager_h=auth_header(manager.id, UserRole.manager),
        hr_h=auth_header(hr.id, UserRole.hr_admin),
    )


async def _setup_balance(client, people, *, opening: str = "5") -> dict:
    """Create a leave type, open this year's entitlement and credit *opening* days."""
    resp = await client.post(
        f"{BASE}/types",
        json={"code": "cl", "name": "Casual Leave", "policy": {"monthly_rate": "1"}},
        headers=people.hr_h,
    )
    assert resp.status_code == 201, resp.text
    leave_type = resp.json()

    today = date.today()
    resp = await client.post(
        f"{BASE}/entitlements",
        json={
            "employee_id": str(people.emp),
            "leave_type_id": leave_type["id"],
            "leave_year": today.year,
            "yearly_entitlement": "12",
            "period_start": today.isoformat(),
            "period_end": (today + timedelta(days=90)).isoformat(),
        },
        headers=people.hr_h,
    )
    assert resp.status_code == 201, resp.text

    resp = await client.post(
        f"{BASE}/adjustments",
        json={
            "employee_id": str(people.emp),
            "leave_type_id": leave_type["id"],
            "leave_year": today.year,
            "amount": opening,
            "reason": "Opening balance",
        },
        headers=people.hr_h,
    )
    assert resp.status_code == 201, resp.text
    return leave_type


def _request_body(leave_type: dict, start_in: int, days: int) -> dict:
    start = date.today() + timedelta(days=start_in)
    return {
        "leave_type_id": leave_type["id"],
        "from_date": start.isoformat(),
        "to_date": (start + timedelta(days=days - 1)).isoformat(),
        "justification": "Family function",
    }


# ═════════════════════════════════════════════════════════════════════
# 1. Health and auth
# ═════════════════════════════════════════════════════════════════════


class TestAuth:

    async def test_health_needs_no_auth(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_missing_token(self, client):
        resp = await client.get(f"{BASE}/types")
        assert resp.status_code == 401

    async def test_expired_token(self, client):
        people = await _seed_people()
        token = create_access_token(people.emp, expired=True)
        resp = await client.get(f"{BASE}/types", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_inactive_employee_rejected(self, client):
        async with TestSessionFactory() as session:
            gone = await _seed_employee(session, is_active=False)
            await session.commit()
        resp = await client.get(f"{BASE}/types", headers=auth_header(gone.id))
        assert resp.status_code == 401

    async def test_employee_cannot_create_leave_type(self, client):
        people = await _seed_people()
        resp = await client.post(
            f"{BASE}/types", json={"code": "SL", "name": "Sick Leave"}, headers=people.emp_h,
        )
        assert resp.status_code == 403
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["rule"] == "role"


# ═════════════════════════════════════════════════════════════════════
# 2. Leave types and balances
# ═════════════════════════════════════════════════════════════════════


class TestLeaveTypesAndBalances:

    async def test_create_and_list_leave_type(self, client):
        people = await _seed_people()
        created = await _setup_balance(client, people)

        assert created["code"] == "CL"
        assert created["policy"]["accrual_method"] == "monthly"

        resp = await client.get(f"{BASE}/types", headers=people.emp_h)
        assert [t["code"] for t in resp.json()] == ["CL"]

    async def test_duplicate_code_is_conflict(self, client):
        people = await _seed_people()
        await _setup_balance(client, people)

        resp = await client.post(
            f"{BASE}/types", json={"code": "CL", "name": "Again"}, headers=people.hr_h,
        )
        assert resp.status_code == 409
        assert resp.json()["status"] == 409

    async def test_balance_shows_pending_days(self, client):
        people = await _seed_people()
        leave_type = await _setup_balance(client, people)

        resp = await client.post(
            f"{BASE}/requests", json=_request_body(leave_type, 7, 3), headers=people.emp_h,
        )
        assert resp.status_code == 201, resp.text

        resp = await client.get(f"{BASE}/balances/me", headers=people.emp_h)
        assert resp.status_code == 200
        [balance] = resp.json()
        assert Decimal(balance["remaining"]) == Decimal("5")
        assert Decimal(balance["pending_days"]) == Decimal("3")
        assert Decimal(balance["available"]) == Decimal("2")

    async def test_colleague_cannot_see_balances(self, client):
        people = await _seed_people()
        resp = await client.get(f"{BASE}/balances/{people.emp}", headers=people.hr_h)
        assert resp.status_code == 200

        async with TestSessionFactory() as session:
            colleague = await _seed_employee(session)
            await session.commit()
        resp = await client.get(f"{BASE}/balances/{people.emp}", headers=auth_header(colleague.id))
        assert resp.status_code == 403

    async def test_adjustment_history(self, client):
        people = await _seed_people()
        await _setup_balance(client, people, opening="4")

        resp = await client.get(f"{BASE}/adjustments/{people.emp}", headers=people.hr_h)
        assert resp.status_code == 200
        [entry] = resp.json()
        assert entry["adjustment_type"] == "manual"
        assert Decimal(entry["amount"]) == Decimal("4")
        assert entry["actor_id"] == str(people.hr)

    async def test_reconcile_is_hr_only(self, client):
        people = await _seed_people()
        await _setup_balance(client, people, opening="4")
        [balance] = (await client.get(f"{BASE}/balances/me", headers=people.emp_h)).json()

        resp = await client.get(
            f"{BASE}/entitlements/{balance['id']}/reconcile", headers=people.emp_h,
        )
        assert resp.status_code == 403

        resp = await client.get(
            f"{BASE}/entitlements/{balance['id']}/reconcile", headers=people.hr_h,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["in_sync"] is True
        assert body["folded"]["entries"] == 1
        assert Decimal(body["folded"]["remaining"]) == Decimal("4")


# ═════════════════════════════════════════════════════════════════════
# 3. Request workflow over HTTP
# ═════════════════════════════════════════════════════════════════════


class TestRequestFlow:

    async def test_submit_approve_finalize(self, client):
        people = await _seed_people()
        leave_type = await _setup_balance(client, people)

        resp = await client.post(
            f"{BASE}/requests", json=_request_body(leave_type, 7, 3), headers=people.emp_h,
        )
        assert resp.status_code == 201, resp.text
        request = resp.json()
        assert request["status"] == "submitted"
        assert Decimal(request["duration_days"]) == Decimal("3")

        resp = await client.get(f"{BASE}/requests/pending", headers=people.manager_h)
        assert [r["id"] for r in resp.json()] == [request["id"]]

        resp = await client.post(
            f"{BASE}/requests/{request['id']}/manager-approve",
            json={"expected_version": request["version"]},
            headers=people.manager_h,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "manager_approved"

        resp = await client.post(
            f"{BASE}/requests/{request['id']}/hr-finalize",
            json={"decision": "approve"},
            headers=people.hr_h,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "hr_approved"

        resp = await client.get(f"{BASE}/balances/me", headers=people.emp_h)
        assert Decimal(resp.json()[0]["remaining"]) == Decimal("2")

        resp = await client.get(f"{BASE}/requests/{request['id']}", headers=people.emp_h)
        assert [e["action"] for e in resp.json()["events"]] == [
            "submit", "manager_approve", "hr_approve",
        ]

    async def test_insufficient_balance_is_problem_json(self, client):
        people = await _seed_people()
        leave_type = await _setup_balance(client, people, opening="2")

        resp = await client.post(
            f"{BASE}/requests", json=_request_body(leave_type, 7, 5), headers=people.emp_h,
        )
        request_id = resp.json()["id"]
        await client.post(
            f"{BASE}/requests/{request_id}/manager-approve", json={}, headers=people.manager_h,
        )

        resp = await client.post(
            f"{BASE}/requests/{request_id}/hr-finalize",
            json={"decision": "approve"},
            headers=people.hr_h,
        )
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["rule"] == "insufficient_balance"
        assert body["retryable"] is True

        resp = await client.get(f"{BASE}/requests/{request_id}", headers=people.hr_h)
        assert resp.json()["status"] == "manager_approved"

    async def test_employee_cannot_finalize(self, client):
        people = await _seed_people()
        leave_type = await _setup_balance(client, people)
        resp = await client.post(
            f"{BASE}/requests", json=_request_body(leave_type, 7, 1), headers=people.emp_h,
        )

        resp = await client.post(
            f"{BASE}/requests/{resp.json()['id']}/hr-finalize",
            json={"decision": "approve"},
            headers=people.emp_h,
        )
        assert resp.status_code == 403

    async def test_illegal_transition_is_409(self, client):
        people = await _seed_people()
        leave_type = await _setup_balance(client, people)
        resp = await client.post(
            f"{BASE}/requests", json=_request_body(leave_type, 7, 1), headers=people.emp_h,
        )

        resp = await client.post(
            f"{BASE}/requests/{resp.json()['id']}/hr-finalize",
            json={"decision": "approve"},
            headers=people.hr_h,
        )
        assert resp.status_code == 409
        assert resp.json()["rule"] == "transition"

    async def test_reversed_dates_rejected(self, client):
        people = await _seed_people()
        leave_type = await _setup_balance(client, people)
        body = _request_body(leave_type, 7, 1)
        body["from_date"], body["to_date"] = (
            (date.today() + timedelta(days=9)).isoformat(),
            (date.today() + timedelta(days=7)).isoformat(),
        )

        resp = await client.post(f"{BASE}/requests", json=body, headers=people.emp_h)
        assert resp.status_code == 422

    async def test_preview_duration(self, client):
        people = await _seed_people()
        leave_type = await _setup_balance(client, people)
        holiday = date.today() + timedelta(days=8)
        resp = await client.post(
            "/api/v1/calendar/holidays",
            json={"holiday_date": holiday.isoformat(), "reason": "Festival"},
            headers=people.hr_h,
        )
        assert resp.status_code == 201, resp.text

        resp = await client.post(
            f"{BASE}/requests/preview-duration",
            json=_request_body(leave_type, 7, 3),
            headers=people.emp_h,
        )
        assert resp.status_code == 200
        assert Decimal(resp.json()["days"]) == Decimal("2")
        assert resp.json()["excluded_dates"] == [holiday.isoformat()]

    async def test_manager_is_notified_on_submit(self, client):
        people = await _seed_people()
        leave_type = await _setup_balance(client, people)

        await client.post(
            f"{BASE}/requests", json=_request_body(leave_type, 7, 2), headers=people.emp_h,
        )

        resp = await client.get("/api/v1/notifications", headers=people.manager_h)
        assert resp.status_code == 200
        assert resp.json()["meta"]["total"] == 1
        assert resp.json()["data"][0]["type"] == "action_required"


# ═════════════════════════════════════════════════════════════════════
# 4. Sweeps
# ═════════════════════════════════════════════════════════════════════


class TestSweeps:

    async def test_accrual_run_requires_hr(self, client):
        people = await _seed_people()
        body = {"reference_date": date.today().isoformat()}

        resp = await client.post(f"{BASE}/accrual/run", json=body, headers=people.manager_h)
        assert resp.status_code == 403

        resp = await client.post(f"{BASE}/accrual/run", json=body, headers=people.hr_h)
        assert resp.status_code == 200
        assert resp.json()["entries_posted"] == 0

    async def test_carry_forward_preview(self, client):
        people = await _seed_people()
        await _setup_balance(client, people)

        resp = await client.post(
            f"{BASE}/carry-forward/preview",
            json={"reference_date": date(date.today().year, 12, 31).isoformat()},
            headers=people.hr_h,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["dry_run"] is True
        assert [r["status"] for r in body["rows"]] == ["not_allowed"]


# ═════════════════════════════════════════════════════════════════════
# 5. Bulk finalize and manager views
# ═════════════════════════════════════════════════════════════════════


async def _submit_and_approve(client, people, leave_type, start_in: int) -> str:
    resp = await client.post(
        f"{BASE}/requests", json=_request_body(leave_type, start_in, 1), headers=people.emp_h,
    )
    assert resp.status_code == 201, resp.text
    request_id = resp.json()["id"]
    resp = await client.post(
        f"{BASE}/requests/{request_id}/manager-approve", json={}, headers=people.manager_h,
    )
    assert resp.status_code == 200, resp.text
    return request_id


class TestManagerViews:

    async def test_assign_entitlement_returns_leave_type(self, client):
        people = await _seed_people()
        resp = await client.post(
            f"{BASE}/types", json={"code": "EL", "name": "Earned Leave"}, headers=people.hr_h,
        )
        leave_type = resp.json()

        resp = await client.post(
            f"{BASE}/entitlements",
            json={
                "employee_id": str(people.emp),
                "leave_type_id": leave_type["id"],
                "leave_year": date.today().year,
                "yearly_entitlement": "18",
            },
            headers=people.hr_h,
        )

        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["leave_type"]["code"] == "EL"
        assert Decimal(body["remaining"]) == Decimal("0")

    async def test_bulk_finalize_reports_each_failure(self, client):
        people = await _seed_people()
        leave_type = await _setup_balance(client, people)
        first = await _submit_and_approve(client, people, leave_type, 7)
        second = await _submit_and_approve(client, people, leave_type, 14)
        missing = "00000000-0000-0000-0000-000000000000"
        body = {"request_ids": [first, missing, second], "decision": "approve"}

        resp = await client.post(f"{BASE}/requests/bulk-finalize", json=body, headers=people.manager_h)
        assert resp.status_code == 403

        resp = await client.post(f"{BASE}/requests/bulk-finalize", json=body, headers=people.hr_h)
        assert resp.status_code == 200, resp.text
        result = resp.json()
        assert result["total"] == 3
        assert result["processed"] == 2
        assert result["ids"] == [first, second]
        assert [(e["request_id"], e["rule"]) for e in result["errors"]] == [(missing, "exists")]

        resp = await client.get(f"{BASE}/balances/me", headers=people.emp_h)
        assert Decimal(resp.json()[0]["remaining"]) == Decimal("3")

    async def test_team_balances(self, client):
        people = await _seed_people()
        await _setup_balance(client, people, opening="4")

        resp = await client.get(f"{BASE}/balances/team", headers=people.manager_h)
        assert resp.status_code == 200, resp.text
        [member] = resp.json()
        assert member["employee_id"] == str(people.emp)
        assert Decimal(member["balances"][0]["remaining"]) == Decimal("4")

        resp = await client.get(f"{BASE}/balances/team", headers=people.emp_h)
        assert resp.status_code == 403

        resp = await client.get(
            f"{BASE}/balances/team", params={"manager_id": str(people.hr)}, headers=people.manager_h,
        )
        assert resp.status_code == 403

    async def test_irregular_patterns(self, client):
        people = await _seed_people()
        resp = await client.post(
            f"{BASE}/types",
            json={"code": "SL", "name": "Sick Leave", "category": "sick"},
            headers=people.hr_h,
        )
        sick = resp.json()
        resp = await client.post(
            f"{BASE}/entitlements",
            json={
                "employee_id": str(people.emp),
                "leave_type_id": sick["id"],
                "leave_year": date.today().year,
                "yearly_entitlement": "12",
            },
            headers=people.hr_h,
        )
        assert resp.status_code == 201, resp.text
        for start_in in (2, 4, 6):
            resp = await client.post(
                f"{BASE}/requests", json=_request_body(sick, start_in, 1), headers=people.emp_h,
            )
            assert resp.status_code == 201, resp.text

        params = {"today": (date.today() + timedelta(days=10)).isoformat()}
        resp = await client.get(
            f"{BASE}/requests/irregular-patterns", params=params, headers=people.manager_h,
        )
        assert resp.status_code == 200, resp.text
        [pattern] = resp.json()
        assert pattern["employee_id"] == str(people.emp)
        assert pattern["request_count"] == 3

        resp = await client.get(
            f"{BASE}/requests/irregular-patterns", params=params, headers=people.emp_h,
        )
        assert resp.status_code == 403
