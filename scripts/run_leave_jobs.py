#!/usr/bin/env python3
"""Scheduled leave jobs — accrual, year-end carry forward, escalation, year reset.

Each job runs in its own transaction and commits once; notifications queued
during the job are dispatched after the commit.

Usage:
    python -m scripts.run_leave_jobs accrual                        # as of today
    python -m scripts.run_leave_jobs accrual --date 2026-03-31
    python -m scripts.run_leave_jobs carry-forward --date 2026-12-31 --dry-run
    python -m scripts.run_leave_jobs escalate --threshold-hours 72
    python -m scripts.run_leave_jobs reset-year --strategy hire_date

Requires in .env (project root):
    DATABASE_URL, JWT_SECRET
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

env_path = PROJECT_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("leave_jobs")

from hr_leave.auth.identity import SYSTEM_ACTOR_ID  # noqa: E402
from hr_leave.common.constants import (  # noqa: E402
    AccrualMethod,
    EscalationDedupScope,
    ResetStrategy,
)
from hr_leave.database import async_session_factory, engine  # noqa: E402
from hr_leave.leave.accrual import AccrualEngine  # noqa: E402
from hr_leave.leave.carry_forward import CarryForwardEngine, CarryForwardRules  # noqa: E402
from hr_leave.leave.escalation import OverdueEscalation  # noqa: E402
from hr_leave.leave.year_reset import LeaveYearReset  # noqa: E402
from hr_leave.notifications.service import DatabaseDispatcher, NotificationOutbox  # noqa: E402


# ══════════════════════════════════════════════════════════════════════
# Jobs
# ══════════════════════════════════════════════════════════════════════


async def run_accrual(args: argparse.Namespace) -> None:
    async with async_session_factory() as session:
        result = await AccrualEngine.run_accrual(
            session,
            args.date,
            method=AccrualMethod(args.method) if args.method else None,
            actor_id=SYSTEM_ACTOR_ID,
        )
        await session.commit()
    print(
        f"Accrual {result.reference_date}: {result.entries_posted} entries posted, "
        f"{result.total_credited} days credited across {result.entitlements_scanned} entitlements"
    )


async def run_carry_forward(args: argparse.Namespace) -> None:
    rules = CarryForwardRules(
        cap=Decimal(args.cap) if args.cap is not None else None,
        expiry_months=args.expiry_months,
        source_year=args.source_year,
    )
    async with async_session_factory() as session:
        plan = await CarryForwardEngine.carry_forward(
            session,
            args.date,
            rules,
            dry_run=args.dry_run,
            actor_id=SYSTEM_ACTOR_ID,
        )
        if args.dry_run:
            await session.rollback()
        else:
            await session.commit()

    for row in plan.rows:
        print(
            f"  {row.employee_id} {row.leave_type_id} {row.source_year}->{row.target_year}: "
            f"remaining={row.previous_remaining} carry={row.carry_forward_days} "
            f"expired={row.expired_days} [{row.status}]"
        )
    summary = plan.summary
    mode = "DRY RUN" if args.dry_run else "COMMITTED"
    print(
        f"Carry forward {mode}: {summary.carried}/{summary.rows} carried, "
        f"{summary.total_carried} days carried, {summary.total_expired} expired"
    )


async def run_escalation(args: argparse.Namespace) -> None:
    outbox = NotificationOutbox()
    async with async_session_factory() as session:
        result = await OverdueEscalation.check_and_escalate_overdue(
            session,
            outbox=outbox,
            threshold_hours=args.threshold_hours,
            dedup=EscalationDedupScope(args.dedup) if args.dedup else None,
        )
        await session.commit()
    delivered = await outbox.dispatch(DatabaseDispatcher(async_session_factory))
    print(
        f"Escalation: {result.escalated} of {result.scanned} overdue requests escalated, "
        f"{delivered} notifications sent"
    )


async def run_year_reset(args: argparse.Namespace) -> None:
    async with async_session_factory() as session:
        plan = await LeaveYearReset.reset_leave_year(
            session,
            ResetStrategy(args.strategy),
            args.date,
            dry_run=args.dry_run,
            actor_id=SYSTEM_ACTOR_ID,
        )
        if args.dry_run:
            await session.rollback()
        else:
            await session.commit()
    mode = "DRY RUN" if args.dry_run else "COMMITTED"
    print(f"Year reset {mode} ({plan.strategy.value}): {plan.renewed} of {len(plan.rows)} renewed")


JOBS = {
    "accrual": run_accrual,
    "carry-forward": run_carry_forward,
    "escalate": run_escalation,
    "reset-year": run_year_reset,
}


# ══════════════════════════════════════════════════════════════════════
# CLI
# ══════════════════════════════════════════════════════════════════════


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run scheduled leave ledger jobs")
    sub = parser.add_subparsers(dest="job", required=True)

    def _with_date(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument(
            "--date",
            type=date.fromisoformat,
            default=date.today(),
            help="Reference date YYYY-MM-DD (default: today)",
        )
        return p

    accrual = _with_date(sub.add_parser("accrual", help="Credit due accrual periods"))
    accrual.add_argument("--method", choices=[m.value for m in AccrualMethod])

    cf = _with_date(sub.add_parser("carry-forward", help="Roll unused balances into next year"))
    cf.add_argument("--dry-run", action="store_true", help="Compute without writing")
    cf.add_argument("--cap", help="Override the policy carry-forward cap (days)")
    cf.add_argument("--expiry-months", type=int)
    cf.add_argument("--source-year", type=int)

    esc = sub.add_parser("escalate", help="Escalate requests idle past the threshold")
    esc.add_argument("--threshold-hours", type=int)
    esc.add_argument("--dedup", choices=[d.value for d in EscalationDedupScope])

    reset = _with_date(sub.add_parser("reset-year", help="Open the next leave period"))
    reset.add_argument(
        "--strategy",
        choices=[s.value for s in ResetStrategy],
        default=ResetStrategy.calendar_year.value,
    )
    reset.add_argument("--dry-run", action="store_true", help="Compute without writing")

    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logger.info("Running job %s", args.job)
    try:
        await JOBS[args.job](args)
    except Exception:
        logger.exception("Job %s failed", args.job)
        return 1
    finally:
        await engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
