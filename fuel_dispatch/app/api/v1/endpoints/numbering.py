"""
Numbering API Endpoints.

Vale (PE) and dispatch (PETRUS) identifiers.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fuel_dispatch.app.db.session import get_db, unit_of_work
from fuel_dispatch.app.core.guards import require_caller, require_capability
from fuel_dispatch.app.domain.fuel.capabilities import Caller, Capability
from fuel_dispatch.app.domain.fuel.numbering_service import NumberingService
from fuel_dispatch.app.schemas.numbering import NumberResponse, NumberStatsResponse, NumberValidationResponse

router = APIRouter(prefix="/numbering", tags=["Numbering"])


@router.get("/validate/{identifier}", response_model=NumberValidationResponse)
async def validate_number(
    identifier: str = Path(..., description="Identifier such as PE-000001-2025"),
    caller: Caller = Depends(require_caller)
):
    parsed = NumberingService.parse(identifier)
    if parsed is None:
        return NumberValidationResponse(identifier=identifier, is_valid=False)
    return NumberValidationResponse(
        identifier=identifier,
        is_valid=True,
        prefix=parsed.prefix,
        sequence=parsed.sequence,
        year=parsed.year,
    )


@router.post("/{prefix}/next", response_model=NumberResponse)
async def next_number(
    prefix: str = Path(..., description="PE or PETRUS"),
    year: Optional[int] = Query(None, description="Defaults to the current year"),
    caller: Caller = Depends(require_capability(Capability.ISSUE_NUMBERS)),
    db: AsyncSession = Depends(get_db)
):
    """Consume and return the next identifier."""
    async with unit_of_work(db):
        identifier = await NumberingService.next(db, prefix, year)
    return NumberResponse(identifier=identifier)


@router.get("/{prefix}/preview", response_model=NumberResponse)
async def preview_number(
    prefix: str = Path(..., description="PE or PETRUS"),
    year: Optional[int] = Query(None),
    caller: Caller = Depends(require_capability(Capability.ISSUE_NUMBERS)),
    db: AsyncSession = Depends(get_db)
):
    """The next identifier, without consuming it."""
    return NumberResponse(identifier=await NumberingService.peek(db, prefix, year))


@router.get("/{prefix}/stats", response_model=NumberStatsResponse)
async def number_stats(
    prefix: str = Path(..., description="PE or PETRUS"),
    year: Optional[int] = Query(None),
    caller: Caller = Depends(require_capability(Capability.ISSUE_NUMBERS)),
    db: AsyncSession = Depends(get_db)
):
    return await NumberingService.stats(db, prefix, year)
