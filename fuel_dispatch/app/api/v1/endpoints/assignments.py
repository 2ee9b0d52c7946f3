"""
Assignment API Endpoints.

Loading trucks, allocating fuel to customers, recording discharges and
completing assignments.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Body, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from fuel_dispatch.app.db.session import get_db
from fuel_dispatch.app.core.guards import require_caller
from fuel_dispatch.app.domain.fuel.capabilities import Caller
from fuel_dispatch.app.domain.fuel.reconciliation_service import MeterReadings, ReconciliationService
from fuel_dispatch.app.domain.fuel.state_machine import AssignmentStateMachine
from fuel_dispatch.app.schemas.assignment import (
    AssignmentCreate, AssignmentResponse, AssignmentCompleteRequest,
    AssignmentSummaryResponse, ClientAllocationCreate, ClientAssignmentResponse
)
from fuel_dispatch.app.schemas.discharge import DischargeCreate, DischargeResponse

router = APIRouter(prefix="/assignments", tags=["Assignments"])


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    payload: AssignmentCreate = Body(...),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """
    Load a truck and hand it to a driver (Admin).

    Truck and driver must both be ACTIVE and the load must fit the truck.
    """
    assignment = await ReconciliationService.create_assignment(
        db,
        caller,
        truck_id=payload.truck_id,
        driver_id=payload.driver_id,
        total_loaded=payload.total_loaded,
        fuel_type=payload.fuel_type,
        notes=payload.notes,
    )
    return assignment


@router.get("/{assignment_id}/summary", response_model=AssignmentSummaryResponse)
async def get_assignment_summary(
    assignment_id: int = Path(..., description="Assignment ID"),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """Loaded, remaining, discharged and allocated totals plus the lifecycle phase."""
    return await ReconciliationService.get_assignment_summary(db, assignment_id, caller=caller)


@router.post(
    "/{assignment_id}/clients",
    response_model=ClientAssignmentResponse,
    status_code=status.HTTP_201_CREATED
)
async def allocate_to_client(
    assignment_id: int = Path(..., description="Assignment ID"),
    payload: ClientAllocationCreate = Body(...),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """Reserve part of the load for a customer (Admin)."""
    return await ReconciliationService.allocate_to_client(
        db, caller, assignment_id, payload.customer_id, payload.quantity
    )


@router.delete("/{assignment_id}/clients/{client_assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_allocation(
    assignment_id: int = Path(..., description="Assignment ID"),
    client_assignment_id: int = Path(..., description="Client assignment ID"),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """Remove a PENDING allocation (Admin)."""
    await ReconciliationService.remove_allocation(db, caller, assignment_id, client_assignment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{assignment_id}/complete", response_model=AssignmentResponse)
async def complete_assignment(
    assignment_id: int = Path(..., description="Assignment ID"),
    payload: Optional[AssignmentCompleteRequest] = Body(None),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """
    Complete an assignment.

    Rejected with ERR_FUEL_005 while customers are unresolved or fuel
    remains, unless an admin passes override=true.
    """
    return await AssignmentStateMachine.complete_assignment(
        db, assignment_id, caller, override=bool(payload and payload.override)
    )


@router.post(
    "/{assignment_id}/discharges",
    response_model=DischargeResponse,
    status_code=status.HTTP_201_CREATED
)
async def record_discharge(
    assignment_id: int = Path(..., description="Assignment ID"),
    payload: DischargeCreate = Body(...),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a delivery (Operator on own assignment, or Admin).

    Returns the discharge with its vale number.
    """
    readings = None
    if payload.meter_readings is not None:
        readings = MeterReadings(
            marker_start=payload.meter_readings.marker_start,
            marker_end=payload.meter_readings.marker_end,
        )
    return await ReconciliationService.record_discharge(
        db,
        caller,
        assignment_id,
        customer_id=payload.customer_id,
        amount=payload.amount,
        meter_readings=readings,
        notes=payload.notes,
    )
