"""Entitlement ledger — the only code that mutates balance rows.

Every mutation is one conditional ``UPDATE entitlements ... WHERE`` that
moves a balance component and ``remaining`` together, followed by exactly
one ``LeaveAdjustment`` row in the same transaction. The sufficient-balance
check lives in the WHERE clause, so two concurrent debits can never both
pass it. A guard that rejects the UPDATE leaves nothing written.

Balances can be rebuilt at any time by folding the adjustment rows of an
entitlement from its first entry (``rebuild_from_ledger``).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Sequence, Union

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.constants import AdjustmentType
from hr_leave.common.exceptions import (
    ConflictError,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from hr_leave.leave.models import Entitlement, LeaveAdjustment

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_days(value: Any) -> Decimal:
    """Normalise a day amount to the ledger's two-place precision."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class EntitlementKey:
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_year: int


EntitlementRef = Union[uuid.UUID, EntitlementKey]


@dataclass(frozen=True)
class LedgerFold:
    """Balance components reconstructed from adjustment entries."""

    accrued_actual: Decimal
    accrued_rounded: Decimal
    carry_forward: Decimal
    manual_adjustment: Decimal
    taken: Decimal
    remaining: Decimal
    entries: int

    def matches(self, entitlement: Entitlement) -> bool:
        return (
            self.accrued_rounded == entitlement.accrued_rounded
            and self.carry_forward == entitlement.carry_forward
            and self.manual_adjustment == entitlement.manual_adjustment
            and self.taken == entitlement.taken
            and self.remaining == entitlement.remaining
        )


def invariant_holds(entitlement: Entitlement) -> bool:
    return entitlement.remaining == (
        entitlement.accrued_rounded
        + entitlement.carry_forward
        + entitlement.manual_adjustment
        - entitlement.taken
    )


# ═════════════════════════════════════════════════════════════════════
# EntitlementLedger
# ═════════════════════════════════════════════════════════════════════


class EntitlementLedger:
    """Atomic debit / credit / adjust over entitlement rows."""

    # ─────────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def find(db: AsyncSession, key: EntitlementKey) -> Optional[Entitlement]:
        result = await db.execute(
            select(Entitlement)
            .where(
                Entitlement.employee_id == key.employee_id,
                Entitlement.leave_type_id == key.leave_type_id,
                Entitlement.leave_year == key.leave_year,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def _resolve_id(db: AsyncSession, ref: EntitlementRef) -> uuid.UUID:
        if isinstance(ref, EntitlementKey):
            entitlement = await EntitlementLedger.find(db, ref)
            if entitlement is None:
                raise NotFoundError(
                    "Entitlement",
                    f"{ref.employee_id}/{ref.leave_type_id}/{ref.leave_year}",
                )
            return entitlement.id
        return ref

    @staticmethod
    async def get_balance(db: AsyncSession, ref: EntitlementRef) -> Entitlement:
        """Re-read the entitlement from storage, bypassing the identity map."""
        entitlement_id = await EntitlementLedger._resolve_id(db, ref)
        result = await db.execute(
            select(Entitlement)
            .where(Entitlement.id == entitlement_id)
            .execution_options(populate_existing=True)
        )
        entitlement = result.scalars().first()
        if entitlement is None:
            raise NotFoundError("Entitlement", entitlement_id)
        return entitlement

    @staticmethod
    async def open_entitlement(
        db: AsyncSession,
        key: EntitlementKey,
        *,
        period_start: Optional[date] = None,
        period_end: Optional[date] = None,
        yearly_entitlement: Optional[Decimal] = None,
    ) -> Entitlement:
        """Return the entitlement for *key*, creating an empty one if needed."""
        existing = await EntitlementLedger.find(db, key)
        if existing is not None:
            return existing
        entitlement = Entitlement(
            employee_id=key.employee_id,
            leave_type_id=key.leave_type_id,
            leave_year=key.leave_year,
            period_start=period_start or date(key.leave_year, 1, 1),
            period_end=period_end or date(key.leave_year, 12, 31),
            yearly_entitlement=to_days(yearly_entitlement or 0),
            accrued_actual=ZERO,
            accrued_rounded=ZERO,
            carry_forward=ZERO,
            manual_adjustment=ZERO,
            taken=ZERO,
            remaining=ZERO,
            version=1,
            is_active=True,
        )
        db.add(entitlement)
        await db.flush()
        await db.refresh(entitlement, attribute_names=["leave_type"])
        logger.info(
            "Opened entitlement %s for employee=%s type=%s year=%s",
            entitlement.id, key.employee_id, key.leave_type_id, key.leave_year,
        )
        return entitlement

    # ─────────────────────────────────────────────────────────────────
    # Core mutation
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _apply(
        db: AsyncSession,
        entitlement_id: uuid.UUID,
        adjustment_type: AdjustmentType,
        delta: Decimal,
        components: dict[str, Any],
        *,
        reason: str,
        actor_id: Optional[uuid.UUID],
        guard_balance: bool,
        is_override: bool = False,
        leave_request_id: Optional[uuid.UUID] = None,
        accrual_actual: Optional[Decimal] = None,
        extra_where: Sequence[Any] = (),
    ) -> Optional[Entitlement]:
        """Run the guarded UPDATE and append the matching ledger entry.

        Returns None when an ``extra_where`` precondition did not hold.
        """
        stmt = update(Entitlement).where(Entitlement.id == entitlement_id)
        if guard_balance:
            stmt = stmt.where(Entitlement.remaining + delta >= 0)
        if extra_where:
            stmt = stmt.where(*extra_where)
        stmt = stmt.values(
            remaining=Entitlement.remaining + delta,
            version=Entitlement.version + 1,
            updated_at=datetime.now(timezone.utc),
            **components,
        ).execution_options(synchronize_session=False)

        result = await db.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            current = await EntitlementLedger.get_balance(db, entitlement_id)
            if guard_balance and current.remaining + delta < 0:
                raise PolicyViolation(
                    "insufficient_balance",
                    f"Remaining balance {current.remaining} cannot cover "
                    f"{abs(delta)} day(s) without an override.",
                )
            return None

        entitlement = await EntitlementLedger.get_balance(db, entitlement_id)
        db.add(LeaveAdjustment(
            entitlement_id=entitlement.id,
            employee_id=entitlement.employee_id,
            leave_type_id=entitlement.leave_type_id,
            leave_year=entitlement.leave_year,
            adjustment_type=adjustment_type,
            amount=delta,
            accrual_actual=accrual_actual,
            reason=reason,
            actor_id=actor_id,
            is_override=is_override,
            leave_request_id=leave_request_id,
            balance_after=entitlement.remaining,
        ))
        await db.flush()
        return entitlement

    @staticmethod
    async def _apply_required(
        db: AsyncSession,
        entitlement_id: uuid.UUID,
        *args: Any,
        **kwargs: Any,
    ) -> Entitlement:
        """``_apply`` for mutations that must land; a rejected UPDATE is a conflict."""
        entitlement = await EntitlementLedger._apply(db, entitlement_id, *args, **kwargs)
        if entitlement is None:
            raise ConflictError(
                f"Entitlement {entitlement_id} changed while it was being adjusted; retry.",
                rule="stale_version",
            )
        return entitlement

    # ─────────────────────────────────────────────────────────────────
    # Public operations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def debit(
        db: AsyncSession,
        ref: EntitlementRef,
        amount: Decimal,
        *,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
        allow_negative: bool = False,
        is_override: bool = False,
        leave_request_id: Optional[uuid.UUID] = None,
    ) -> Entitlement:
        """Consume *amount* days. Going below zero needs ``allow_negative`` and a reason.

        The entry is tagged ``is_override`` when the caller says so or when the
        negative allowance was actually needed.
        """
        amount = to_days(amount)
        if amount <= 0:
            raise ValidationError({"amount": ["Debit amount must be positive."]})
        if allow_negative and not (reason or "").strip():
            raise ValidationError({"reason": ["A reason is required to allow a negative balance."]})

        entitlement_id = await EntitlementLedger._resolve_id(db, ref)
        before = await EntitlementLedger.get_balance(db, entitlement_id)
        overdraws = before.remaining - amount < 0

        entitlement = await EntitlementLedger._apply_required(
            db,
            entitlement_id,
            AdjustmentType.consumption,
            -amount,
            {"taken": Entitlement.taken + amount},
            reason=reason,
            actor_id=actor_id,
            guard_balance=not allow_negative,
            is_override=is_override or (allow_negative and overdraws),
            leave_request_id=leave_request_id,
        )
        if entitlement.remaining < 0:
            logger.warning(
                "Entitlement %s overdrawn to %s by override (actor=%s): %s",
                entitlement.id, entitlement.remaining, actor_id, reason,
            )
        return entitlement

    @staticmethod
    async def credit(
        db: AsyncSession,
        ref: EntitlementRef,
        amount: Decimal,
        *,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
        leave_request_id: Optional[uuid.UUID] = None,
    ) -> Entitlement:
        """Give back previously consumed days as a REVERSAL entry."""
        amount = to_days(amount)
        if amount <= 0:
            raise ValidationError({"amount": ["Credit amount must be positive."]})

        entitlement_id = await EntitlementLedger._resolve_id(db, ref)
        entitlement = await EntitlementLedger._apply_required(
            db,
            entitlement_id,
            AdjustmentType.reversal,
            amount,
            {"taken": Entitlement.taken - amount},
            reason=reason,
            actor_id=actor_id,
            guard_balance=False,
            leave_request_id=leave_request_id,
        )
        return entitlement

    @staticmethod
    async def adjust(
        db: AsyncSession,
        ref: EntitlementRef,
        amount: Decimal,
        *,
        reason: str,
        actor_id: Optional[uuid.UUID],
        allow_negative: bool = False,
        is_override: bool = False,
    ) -> Entitlement:
        """Signed manual adjustment, always attributed to an actor and reason."""
        amount = to_days(amount)
        if amount == 0:
            raise ValidationError({"amount": ["Adjustment amount must be non-zero."]})
        if not (reason or "").strip():
            raise ValidationError({"reason": ["A reason is required for manual adjustments."]})

        entitlement_id = await EntitlementLedger._resolve_id(db, ref)
        before = await EntitlementLedger.get_balance(db, entitlement_id)
        overdraws = before.remaining + amount < 0

        entitlement = await EntitlementLedger._apply_required(
            db,
            entitlement_id,
            AdjustmentType.manual,
            amount,
            {"manual_adjustment": Entitlement.manual_adjustment + amount},
            reason=reason,
            actor_id=actor_id,
            guard_balance=amount < 0 and not allow_negative,
            is_override=is_override or (allow_negative and overdraws),
        )
        return entitlement

    @staticmethod
    async def post_accrual(
        db: AsyncSession,
        entitlement_id: uuid.UUID,
        *,
        rounded_delta: Decimal,
        actual_delta: Decimal,
        accrued_through: date,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Optional[Entitlement]:
        """Credit one accrual period; a no-op if the marker already covers it."""
        entitlement = await EntitlementLedger._apply(
            db,
            entitlement_id,
            AdjustmentType.accrual,
            rounded_delta,
            {
                "accrued_rounded": Entitlement.accrued_rounded + rounded_delta,
                "accrued_actual": Entitlement.accrued_actual + actual_delta,
                "accrued_through": accrued_through,
            },
            reason=reason,
            actor_id=actor_id,
            guard_balance=False,
            accrual_actual=actual_delta,
            extra_where=(
                or_(
                    Entitlement.accrued_through.is_(None),
                    Entitlement.accrued_through < accrued_through,
                ),
            ),
        )
        if entitlement is None:
            logger.debug(
                "Accrual for %s through %s already posted", entitlement_id, accrued_through,
            )
        return entitlement

    @staticmethod
    async def post_carry_forward(
        db: AsyncSession,
        entitlement_id: uuid.UUID,
        amount: Decimal,
        *,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Entitlement:
        """Move *amount* (signed) into the carry-forward component."""
        amount = to_days(amount)
        entitlement = await EntitlementLedger._apply_required(
            db,
            entitlement_id,
            AdjustmentType.carry_forward,
            amount,
            {"carry_forward": Entitlement.carry_forward + amount},
            reason=reason,
            actor_id=actor_id,
            guard_balance=False,
        )
        return entitlement

    @staticmethod
    async def set_active(
        db: AsyncSession,
        entitlement_id: uuid.UUID,
        is_active: bool,
        *,
        expected_version: Optional[int] = None,
    ) -> None:
        """Open or close an entitlement without touching its balance."""
        stmt = update(Entitlement).where(Entitlement.id == entitlement_id)
        if expected_version is not None:
            stmt = stmt.where(Entitlement.version == expected_version)
        result = await db.execute(
            stmt.values(
                is_active=is_active,
                version=Entitlement.version + 1,
                updated_at=datetime.now(timezone.utc),
            ).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            await EntitlementLedger.get_balance(db, entitlement_id)
            raise ConflictError(
                "Entitlement changed since it was read; refresh and retry.",
                rule="stale_version",
            )

    # ─────────────────────────────────────────────────────────────────
    # History and reconstruction
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def entries(
        db: AsyncSession,
        entitlement_id: uuid.UUID,
    ) -> Sequence[LeaveAdjustment]:
        result = await db.execute(
            select(LeaveAdjustment)
            .where(LeaveAdjustment.entitlement_id == entitlement_id)
            .order_by(LeaveAdjustment.created_at, LeaveAdjustment.id)
        )
        return result.scalars().all()

    @staticmethod
    async def rebuild_from_ledger(
        db: AsyncSession,
        entitlement_id: uuid.UUID,
    ) -> LedgerFold:
        """Fold every adjustment entry of the entitlement from genesis."""
        totals = {t: ZERO for t in AdjustmentType}
        accrued_actual = ZERO
        rows = await EntitlementLedger.entries(db, entitlement_id)
        for entry in rows:
            totals[entry.adjustment_type] += entry.amount
            if entry.accrual_actual is not None:
                accrued_actual += entry.accrual_actual
        return LedgerFold(
            accrued_actual=accrued_actual,
            accrued_rounded=totals[AdjustmentType.accrual],
            carry_forward=totals[AdjustmentType.carry_forward],
            manual_adjustment=totals[AdjustmentType.manual],
            taken=-(totals[AdjustmentType.consumption] + totals[AdjustmentType.reversal]),
            remaining=sum(totals.values(), ZERO),
            entries=len(rows),
        )
