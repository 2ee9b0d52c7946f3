"""
Discharge API Endpoints.

Finalizing, correcting and reversing recorded discharges.
"""

from fastapi import APIRouter, Depends, Path, Body
from sqlalchemy.ext.asyncio import AsyncSession

from fuel_dispatch.app.db.session import get_db
from fuel_dispatch.app.core.guards import require_caller
from fuel_dispatch.app.domain.fuel.capabilities import Caller
from fuel_dispatch.app.domain.fuel.reconciliation_service import ReconciliationService
from fuel_dispatch.app.schemas.assignment import AssignmentResponse
from fuel_dispatch.app.schemas.discharge import DischargeCorrection, DischargeFinalize, DischargeResponse

router = APIRouter(prefix="/discharges", tags=["Discharges"])


@router.post("/{discharge_id}/finalize", response_model=DischargeResponse)
async def finalize_discharge(
    discharge_id: int = Path(..., description="Discharge ID"),
    payload: DischargeFinalize = Body(...),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """Close a discharge with its final meter readings."""
    return await ReconciliationService.finalize_discharge(
        db,
        caller,
        discharge_id,
        marker_start=payload.marker_start,
        marker_end=payload.marker_end,
        real_quantity=payload.real_quantity,
    )


@router.patch("/{discharge_id}", response_model=DischargeResponse)
async def correct_discharge(
    discharge_id: int = Path(..., description="Discharge ID"),
    payload: DischargeCorrection = Body(...),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """Correct the delivered amount (Admin)."""
    return await ReconciliationService.correct_discharge(db, caller, discharge_id, payload.total_discharged)


@router.delete("/{discharge_id}", response_model=AssignmentResponse)
async def reverse_discharge(
    discharge_id: int = Path(..., description="Discharge ID"),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a discharge and restore its fuel (Admin).

    Returns the assignment after restoration.
    """
    return await ReconciliationService.reverse_discharge(db, caller, discharge_id)
