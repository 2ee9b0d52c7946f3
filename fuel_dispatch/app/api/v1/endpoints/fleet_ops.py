"""
Fleet Operations API Endpoints.

Externally triggered sweeps that correct drifted assignment and truck state.
Both are idempotent and safe to call on a timer.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fuel_dispatch.app.db.session import get_db
from fuel_dispatch.app.core.guards import require_capability
from fuel_dispatch.app.domain.fuel.capabilities import Caller, Capability
from fuel_dispatch.app.domain.fuel.state_machine import AssignmentStateMachine
from fuel_dispatch.app.schemas.fleet import FleetRefreshResponse, SweepResponse

router = APIRouter(prefix="/fleet", tags=["Fleet Operations"])


@router.post("/sweep-stale", response_model=SweepResponse)
async def sweep_stale_assignments(
    caller: Caller = Depends(require_capability(Capability.RUN_SWEEPS)),
    db: AsyncSession = Depends(get_db)
):
    """
    Expire assignments open for longer than the stale threshold.

    Operators only sweep their own assignments.
    """
    driver_id = None if caller.is_supervisor else caller.user_id
    return await AssignmentStateMachine.sweep_stale_assignments(db, driver_id=driver_id)


@router.post("/refresh-state", response_model=FleetRefreshResponse)
async def refresh_fleet_state(
    caller: Caller = Depends(require_capability(Capability.OVERRIDE_STATE)),
    db: AsyncSession = Depends(get_db)
):
    """Re-derive every truck's state from its latest assignment (Admin)."""
    return await AssignmentStateMachine.refresh_fleet_state(db)
