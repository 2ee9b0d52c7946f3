"""
Assignment and client allocation schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fuel_dispatch.app.models.fuel_enums import AssignmentPhase, ClientAssignmentStatus, FuelType


class AssignmentCreate(BaseModel):
    """Schema for loading a truck and handing it to a driver."""
    truck_id: int
    driver_id: int
    total_loaded: Decimal = Field(..., description="Gallons loaded")
    fuel_type: Optional[FuelType] = None  # Defaults to the truck's fuel
    notes: Optional[str] = Field(None, max_length=2000)


class AssignmentResponse(BaseModel):
    id: int
    truck_id: int
    driver_id: int
    fuel_type: FuelType
    total_loaded: Decimal
    total_remaining: Decimal
    is_completed: bool
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AssignmentCompleteRequest(BaseModel):
    override: bool = False


class AssignmentSummaryResponse(BaseModel):
    """Balance view of an assignment."""
    assignment_id: int
    truck_id: int
    driver_id: int
    fuel_type: FuelType
    total_loaded: Decimal
    total_remaining: Decimal
    total_discharged: Decimal
    total_allocated: Decimal
    discharge_count: int
    phase: AssignmentPhase
    is_completed: bool
    unresolved_customer_ids: List[int]

    class Config:
        from_attributes = True


class ClientAllocationCreate(BaseModel):
    customer_id: int
    quantity: Decimal = Field(..., description="Gallons reserved for the customer")


class ClientAssignmentResponse(BaseModel):
    id: int
    assignment_id: int
    customer_id: int
    allocated_quantity: Decimal
    delivered_quantity: Decimal
    remaining_quantity: Decimal
    status: ClientAssignmentStatus
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
