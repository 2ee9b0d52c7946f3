"""
Fuel dispatch enumerations.
"""

import enum


class FuelType(str, enum.Enum):
    """Fuel a truck can carry. PERSONALIZADO carries a free-text name."""
    DIESEL_B5 = "DIESEL_B5"
    GASOLINA_90 = "GASOLINA_90"
    GASOLINA_95 = "GASOLINA_95"
    GLP = "GLP"
    ELECTRICA = "ELECTRICA"
    PERSONALIZADO = "PERSONALIZADO"


class TruckState(str, enum.Enum):
    """Truck state enumeration."""
    ACTIVE = "ACTIVE"  # Available for a new assignment
    INACTIVE = "INACTIVE"  # Out of service (admin controlled)
    MAINTENANCE = "MAINTENANCE"  # In the workshop (admin controlled)
    IN_TRANSIT = "IN_TRANSIT"  # Driving to the first customer
    UNLOADING = "UNLOADING"  # Delivering, fuel still on board
    ASSIGNED = "ASSIGNED"  # Loaded and handed to a driver


# States the assignment lifecycle owns; admin-controlled states are left alone by sweeps
LIFECYCLE_TRUCK_STATES = frozenset({TruckState.ASSIGNED, TruckState.UNLOADING, TruckState.IN_TRANSIT})


class ClientAssignmentStatus(str, enum.Enum):
    """Planned customer allocation status."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"  # Forced by the stale assignment sweep


RESOLVED_CLIENT_STATUSES = frozenset({ClientAssignmentStatus.COMPLETED, ClientAssignmentStatus.EXPIRED})


class DischargeStatus(str, enum.Enum):
    """Discharge (vale) status."""
    PENDING = "PENDING"  # Recorded, meter readings not closed yet
    FINALIZED = "FINALIZED"


class AssignmentPhase(str, enum.Enum):
    """Derived assignment lifecycle phase."""
    OPEN = "OPEN"
    COMPLETING = "COMPLETING"  # Every sub-unit resolved, completion not yet applied
    COMPLETED = "COMPLETED"


class TripStatus(str, enum.Enum):
    """Trip status for assignment trip records."""
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
