"""
User roles and availability enumerations.

Defines the role types for the fuel dispatch system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Plans loads, allocations and corrects deliveries
        OPERATOR: Truck driver who records deliveries on own assignments
        SUPER_ADMIN: Administrative role with every capability
    """
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    SUPER_ADMIN = "SUPER_ADMIN"


class UserState(str, enum.Enum):
    """Driver availability, driven by the assignment lifecycle."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    ASSIGNED = "ASSIGNED"
