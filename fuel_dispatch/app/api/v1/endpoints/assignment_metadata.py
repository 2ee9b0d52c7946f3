"""
Assignment Metadata API Endpoints.

Trip start/end, stage documentation and delivery details.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Body, status
from sqlalchemy.ext.asyncio import AsyncSession

from fuel_dispatch.app.db.session import get_db
from fuel_dispatch.app.core.guards import require_caller
from fuel_dispatch.app.domain.fuel.capabilities import Caller
from fuel_dispatch.app.services.assignment_metadata import AssignmentMetadataService
from fuel_dispatch.app.models.assignment_metadata import DeliveryDetail, StageDocumentation, TripInfo
from fuel_dispatch.app.schemas.assignment_metadata import (
    AssignmentMetadataResponse, DeliveryDetailCreate, DeliveryDetailOut,
    StageDocumentationOut, StageDocumentRequest, TripEndRequest, TripInfoOut
)

router = APIRouter(prefix="/assignments", tags=["Assignment Metadata"])

_SERIALIZERS = {
    TripInfo: TripInfoOut,
    StageDocumentation: StageDocumentationOut,
    DeliveryDetail: DeliveryDetailOut,
}


@router.post("/{assignment_id}/trip/start", response_model=TripInfoOut, status_code=status.HTTP_201_CREATED)
async def start_trip(
    assignment_id: int = Path(..., description="Assignment ID"),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    return await AssignmentMetadataService.start_trip(db, caller, assignment_id)


@router.post("/{assignment_id}/trip/end", response_model=TripInfoOut)
async def end_trip(
    assignment_id: int = Path(..., description="Assignment ID"),
    payload: Optional[TripEndRequest] = Body(None),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    return await AssignmentMetadataService.end_trip(
        db, caller, assignment_id, total_distance_km=payload.total_distance_km if payload else None
    )


@router.put("/{assignment_id}/stages/{stage}", response_model=StageDocumentationOut)
async def document_stage(
    assignment_id: int = Path(..., description="Assignment ID"),
    stage: str = Path(..., min_length=1, max_length=50, description="Stage name, e.g. loading"),
    payload: StageDocumentRequest = Body(...),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """Create or replace the documentation of a stage."""
    return await AssignmentMetadataService.document_stage(
        db, caller, assignment_id, stage,
        photo_urls=payload.photo_urls,
        observations=payload.observations,
    )


@router.post(
    "/{assignment_id}/deliveries",
    response_model=DeliveryDetailOut,
    status_code=status.HTTP_201_CREATED
)
async def add_delivery_detail(
    assignment_id: int = Path(..., description="Assignment ID"),
    payload: DeliveryDetailCreate = Body(...),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    return await AssignmentMetadataService.add_delivery_detail(
        db, caller, assignment_id,
        customer_id=payload.customer_id,
        discharge_id=payload.discharge_id,
        observations=payload.observations,
    )


@router.get("/{assignment_id}/metadata", response_model=AssignmentMetadataResponse)
async def get_metadata(
    assignment_id: int = Path(..., description="Assignment ID"),
    caller: Caller = Depends(require_caller),
    db: AsyncSession = Depends(get_db)
):
    """Trip, stage and delivery records as one list tagged by `kind`."""
    records = await AssignmentMetadataService.get_metadata(db, caller, assignment_id)
    return AssignmentMetadataResponse(
        assignment_id=assignment_id,
        records=[_SERIALIZERS[type(record)].model_validate(record) for record in records],
    )
