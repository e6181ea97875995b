"""Entitlement ledger tests — guarded debits, overrides, credits, adjustments
and reconstruction of balances from the adjustment log.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.constants import AdjustmentType
from hr_leave.common.exceptions import (
    ConflictError,
    NotFoundException,
    PolicyViolation,
    ValidationException,
)
from hr_leave.leave.ledger import (
    EntitlementKey,
    EntitlementLedger,
    invariant_holds,
    to_days,
)
from hr_leave.leave.models import Entitlement, LeaveAdjustment
from tests.conftest import _seed_employee, _seed_entitlement, _seed_leave_type


async def _seed_balance(db: AsyncSession, opening: Decimal = Decimal("5")):
    emp = await _seed_employee(db)
    lt = await _seed_leave_type(db)
    ent = await _seed_entitlement(db, emp.id, lt.id, opening=opening)
    return emp, lt, ent


async def _entries(db: AsyncSession, entitlement_id: uuid.UUID) -> list[LeaveAdjustment]:
    return list(await EntitlementLedger.entries(db, entitlement_id))


# ═════════════════════════════════════════════════════════════════════
# 1. Pure helpers
# ═════════════════════════════════════════════════════════════════════


class TestHelpers:

    def test_to_days_rounds_half_up_to_two_places(self):
        assert to_days("1.005") == Decimal("1.01")
        assert to_days(3) == Decimal("3.00")
        assert to_days(Decimal("-0.125")) == Decimal("-0.13")


# ═════════════════════════════════════════════════════════════════════
# 2. Debit
# ═════════════════════════════════════════════════════════════════════


class TestDebit:

    async def test_debit_within_balance(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db)

        result = await EntitlementLedger.debit(db, ent.id, Decimal("3"), reason="Leave")

        assert result.remaining == Decimal("2")
        assert result.taken == Decimal("3")
        assert invariant_holds(result)
        entries = await _entries(db, ent.id)
        assert entries[-1].adjustment_type == AdjustmentType.consumption
        assert entries[-1].amount == Decimal("-3")
        assert entries[-1].balance_after == Decimal("2")
        assert entries[-1].is_override is False

    async def test_debit_by_key(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db)

        result = await EntitlementLedger.debit(
            db, EntitlementKey(emp.id, lt.id, 2026), Decimal("1"), reason="Leave",
        )
        assert result.id == ent.id
        assert result.remaining == Decimal("4")

    async def test_insufficient_balance_writes_nothing(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db, opening=Decimal("2"))
        before = await _entries(db, ent.id)

        with pytest.raises(PolicyViolation) as exc_info:
            await EntitlementLedger.debit(db, ent.id, Decimal("5"), reason="Leave")
        assert exc_info.value.rule == "insufficient_balance"
        assert exc_info.value.retryable is True

        after = await EntitlementLedger.get_balance(db, ent.id)
        assert after.remaining == Decimal("2")
        assert after.taken == Decimal("0")
        assert len(await _entries(db, ent.id)) == len(before)

    async def test_allow_negative_needs_reason(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db, opening=Decimal("2"))

        with pytest.raises(ValidationException):
            await EntitlementLedger.debit(
                db, ent.id, Decimal("5"), reason="", allow_negative=True,
            )

    async def test_allow_negative_tags_one_override_entry(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db, opening=Decimal("2"))

        result = await EntitlementLedger.debit(
            db, ent.id, Decimal("5"), reason="manager exception", allow_negative=True,
        )

        assert result.remaining == Decimal("-3")
        overrides = [e for e in await _entries(db, ent.id) if e.is_override]
        assert len(overrides) == 1
        assert overrides[0].reason == "manager exception"

    async def test_allow_negative_without_overdraw_is_not_override(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db, opening=Decimal("5"))

        await EntitlementLedger.debit(
            db, ent.id, Decimal("2"), reason="covered anyway", allow_negative=True,
        )
        assert not any(e.is_override for e in await _entries(db, ent.id))

    async def test_non_positive_amount_rejected(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db)
        with pytest.raises(ValidationException):
            await EntitlementLedger.debit(db, ent.id, Decimal("0"), reason="Leave")

    async def test_unknown_entitlement(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await EntitlementLedger.debit(db, uuid.uuid4(), Decimal("1"), reason="Leave")


# ═════════════════════════════════════════════════════════════════════
# 3. Credit / adjust / carry forward
# ═════════════════════════════════════════════════════════════════════


class TestCreditAndAdjust:

    async def test_credit_reverses_consumption(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db)
        await EntitlementLedger.debit(db, ent.id, Decimal("3"), reason="Leave")

        result = await EntitlementLedger.credit(db, ent.id, Decimal("3"), reason="Cancelled")

        assert result.remaining == Decimal("5")
        assert result.taken == Decimal("0")
        assert (await _entries(db, ent.id))[-1].adjustment_type == AdjustmentType.reversal

    async def test_negative_manual_adjustment_is_guarded(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db, opening=Decimal("1"))

        with pytest.raises(PolicyViolation):
            await EntitlementLedger.adjust(
                db, ent.id, Decimal("-2"), reason="Correction", actor_id=emp.id,
            )

        result = await EntitlementLedger.adjust(
            db, ent.id, Decimal("-2"), reason="Correction", actor_id=emp.id,
            allow_negative=True,
        )
        assert result.remaining == Decimal("-1")
        assert result.manual_adjustment == Decimal("-1")
        assert invariant_holds(result)

    async def test_adjust_requires_reason_and_amount(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db)
        with pytest.raises(ValidationException):
            await EntitlementLedger.adjust(db, ent.id, Decimal("1"), reason=" ", actor_id=emp.id)
        with pytest.raises(ValidationException):
            await EntitlementLedger.adjust(db, ent.id, Decimal("0"), reason="x", actor_id=emp.id)

    async def test_post_carry_forward_moves_component(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db, opening=Decimal("0"))

        result = await EntitlementLedger.post_carry_forward(
            db, ent.id, Decimal("4"), reason="Carry forward from 2025",
        )
        assert result.carry_forward == Decimal("4")
        assert result.remaining == Decimal("4")

    async def test_every_mutation_bumps_version(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db)
        start = (await EntitlementLedger.get_balance(db, ent.id)).version

        await EntitlementLedger.debit(db, ent.id, Decimal("1"), reason="Leave")
        await EntitlementLedger.credit(db, ent.id, Decimal("1"), reason="Back")

        assert (await EntitlementLedger.get_balance(db, ent.id)).version == start + 2

    async def test_set_active_with_stale_version(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db)
        current = await EntitlementLedger.get_balance(db, ent.id)

        with pytest.raises(ConflictError):
            await EntitlementLedger.set_active(
                db, ent.id, False, expected_version=current.version - 1,
            )
        await EntitlementLedger.set_active(db, ent.id, False, expected_version=current.version)
        assert (await EntitlementLedger.get_balance(db, ent.id)).is_active is False

    async def test_credit_unknown_entitlement(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await EntitlementLedger.credit(db, uuid.uuid4(), Decimal("1"), reason="Back")

    async def test_rejected_required_mutation_is_conflict(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db)

        with pytest.raises(ConflictError):
            await EntitlementLedger._apply_required(
                db,
                ent.id,
                AdjustmentType.manual,
                Decimal("1"),
                {"manual_adjustment": Entitlement.manual_adjustment + Decimal("1")},
                reason="Correction",
                actor_id=emp.id,
                guard_balance=False,
                extra_where=(Entitlement.version == -1,),
            )

        balance = await EntitlementLedger.get_balance(db, ent.id)
        assert balance.remaining == Decimal("5")
        assert len(await _entries(db, ent.id)) == 1


# ═════════════════════════════════════════════════════════════════════
# 3b. Opening
# ═════════════════════════════════════════════════════════════════════


class TestOpenEntitlement:

    async def test_new_entitlement_has_leave_type_loaded(self, db: AsyncSession):
        emp = await _seed_employee(db)
        lt = await _seed_leave_type(db, code="EL", name="Earned Leave")

        opened = await EntitlementLedger.open_entitlement(
            db, EntitlementKey(emp.id, lt.id, 2027), yearly_entitlement=Decimal("15"),
        )

        assert opened.leave_type.code == "EL"
        assert opened.remaining == Decimal("0")
        assert opened.period_start.year == 2027

    async def test_existing_entitlement_is_returned(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db)

        opened = await EntitlementLedger.open_entitlement(
            db, EntitlementKey(emp.id, lt.id, ent.leave_year),
        )
        assert opened.id == ent.id


# ═════════════════════════════════════════════════════════════════════
# 4. Reconstruction
# ═════════════════════════════════════════════════════════════════════


class TestRebuildFromLedger:

    async def test_fold_matches_stored_balance(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db, opening=Decimal("2"))
        await EntitlementLedger.post_carry_forward(db, ent.id, Decimal("3"), reason="CF")
        await EntitlementLedger.debit(db, ent.id, Decimal("4"), reason="Leave")
        await EntitlementLedger.debit(
            db, ent.id, Decimal("3"), reason="manager exception", allow_negative=True,
        )
        await EntitlementLedger.credit(db, ent.id, Decimal("1"), reason="Partial cancel")

        stored = await EntitlementLedger.get_balance(db, ent.id)
        fold = await EntitlementLedger.rebuild_from_ledger(db, ent.id)

        assert fold.matches(stored)
        assert fold.remaining == Decimal("-1")
        assert fold.entries == 5
        assert invariant_holds(stored)

    async def test_entries_are_one_per_mutation(self, db: AsyncSession):
        emp, lt, ent = await _seed_balance(db, opening=Decimal("5"))
        await EntitlementLedger.debit(db, ent.id, Decimal("1"), reason="Leave")
        try:
            await EntitlementLedger.debit(db, ent.id, Decimal("10"), reason="Too much")
        except PolicyViolation:
            pass

        rows = (
            await db.execute(
                select(LeaveAdjustment).where(LeaveAdjustment.entitlement_id == ent.id)
            )
        ).scalars().all()
        assert len(rows) == 2
