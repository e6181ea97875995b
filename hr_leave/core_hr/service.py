"""Employee directory lookups used by the leave workflow."""

from __future__ import annotations

import uuid
from typing import Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.auth.models import RoleAssignment
from hr_leave.common.constants import UserRole
from hr_leave.common.exceptions import NotFoundError
from hr_leave.core_hr.models import Employee


class EmployeeDirectory:
    """Read-only access to employees and their reviewers."""

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        active_only: bool = True,
    ) -> Employee:
        query = select(Employee).where(Employee.id == employee_id)
        if active_only:
            query = query.where(Employee.is_active.is_(True))
        employee = (await db.execute(query)).scalars().first()
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    @staticmethod
    async def get_role_holders(
        db: AsyncSession,
        role: UserRole,
    ) -> Sequence[uuid.UUID]:
        """Return ids of active employees holding an active *role* assignment."""
        result = await db.execute(
            select(RoleAssignment.employee_id)
            .join(Employee, Employee.id == RoleAssignment.employee_id)
            .where(
                RoleAssignment.role == role,
                RoleAssignment.is_active.is_(True),
                Employee.is_active.is_(True),
            )
            .distinct()
        )
        return list(result.scalars().all())

    @staticmethod
    async def is_manager_of(
        db: AsyncSession,
        manager_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> bool:
        """True if *manager_id* is the employee's reporting or L2 manager."""
        employee = await EmployeeDirectory.get_employee(
            db, employee_id, active_only=False,
        )
        return manager_id in (employee.reporting_manager_id, employee.l2_manager_id)

    @staticmethod
    async def get_reports(
        db: AsyncSession,
        manager_id: uuid.UUID,
    ) -> Sequence[Employee]:
        """Active direct and L2 reports of *manager_id*, by name."""
        result = await db.execute(
            select(Employee)
            .where(
                or_(
                    Employee.reporting_manager_id == manager_id,
                    Employee.l2_manager_id == manager_id,
                ),
                Employee.is_active.is_(True),
            )
            .order_by(Employee.first_name, Employee.last_name)
        )
        return list(result.scalars().all())
