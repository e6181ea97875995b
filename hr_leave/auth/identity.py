"""Acting identity passed into ledger and workflow operations."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable

from hr_leave.common.constants import UserRole

# Role hierarchy: each role implicitly includes lower roles
ROLE_HIERARCHY: dict[UserRole, frozenset[UserRole]] = {
    UserRole.system_admin: frozenset(
        {UserRole.system_admin, UserRole.hr_admin, UserRole.manager, UserRole.employee}
    ),
    UserRole.hr_admin: frozenset({UserRole.hr_admin, UserRole.manager, UserRole.employee}),
    UserRole.manager: frozenset({UserRole.manager, UserRole.employee}),
    UserRole.employee: frozenset({UserRole.employee}),
}


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation, trusted as passed."""

    employee_id: uuid.UUID
    role: UserRole = UserRole.employee

    @property
    def effective_roles(self) -> frozenset[UserRole]:
        return ROLE_HIERARCHY.get(self.role, frozenset({self.role}))

    def has_any_role(self, roles: Iterable[UserRole]) -> bool:
        return not self.effective_roles.isdisjoint(roles)

    @property
    def is_hr(self) -> bool:
        return UserRole.hr_admin in self.effective_roles


# Identity used by scheduled sweeps
SYSTEM_ACTOR_ID = uuid.UUID(int=0)
SYSTEM_ACTOR = Actor(employee_id=SYSTEM_ACTOR_ID, role=UserRole.system_admin)
