"""
Caller identity and role capabilities.

Roles map to capability sets; services check a capability once at their
entry point instead of branching on roles.
"""

import enum
from dataclasses import dataclass

from fuel_dispatch.app.core.exceptions import InsufficientPermissionsError
from fuel_dispatch.app.models.enums import UserRole


class Capability(str, enum.Enum):
    RECORD_DISCHARGE = "RECORD_DISCHARGE"
    ALLOCATE_TO_CLIENT = "ALLOCATE_TO_CLIENT"
    CREATE_ASSIGNMENT = "CREATE_ASSIGNMENT"
    COMPLETE_ASSIGNMENT = "COMPLETE_ASSIGNMENT"
    OVERRIDE_STATE = "OVERRIDE_STATE"
    CORRECT_DISCHARGE = "CORRECT_DISCHARGE"
    RUN_SWEEPS = "RUN_SWEEPS"
    ISSUE_NUMBERS = "ISSUE_NUMBERS"


ROLE_CAPABILITIES = {
    UserRole.ADMIN: frozenset(Capability),
    UserRole.SUPER_ADMIN: frozenset(Capability),
    UserRole.OPERATOR: frozenset({
        Capability.RECORD_DISCHARGE,
        Capability.COMPLETE_ASSIGNMENT,
        Capability.RUN_SWEEPS,
    }),
}

# Roles that may act on assignments driven by someone else
SUPERVISOR_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


@dataclass(frozen=True)
class Caller:
    """Resolved identity of whoever invokes the engine."""
    user_id: int
    role: UserRole

    @property
    def is_supervisor(self) -> bool:
        return self.role in SUPERVISOR_ROLES

    def can(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES.get(self.role, frozenset())

    def require(self, capability: Capability) -> None:
        if not self.can(capability):
            raise InsufficientPermissionsError(
                f"Role {self.role.value} lacks capability {capability.value}",
                details={"role": self.role.value, "capability": capability.value},
            )

    def require_owner(self, driver_id: int, resource: str = "assignment") -> None:
        """Operators may only act on their own assignments."""
        if not self.is_supervisor and self.user_id != driver_id:
            raise InsufficientPermissionsError(
                f"This {resource} is not assigned to you",
                details={"user_id": self.user_id, "driver_id": driver_id},
            )
