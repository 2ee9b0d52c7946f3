"""
Assignment Metadata Service.

Trip, stage and delivery records attached to an assignment. These never
touch balances or truck state.
"""

import logging
from typing import Any, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fuel_dispatch.app.core.exceptions import InvalidStateError, ResourceNotFoundError
from fuel_dispatch.app.db.session import unit_of_work, utcnow
from fuel_dispatch.app.domain.fuel.capabilities import Caller, Capability
from fuel_dispatch.app.domain.fuel.ledger import to_decimal
from fuel_dispatch.app.domain.fuel.state_machine import get_assignment
from fuel_dispatch.app.models.assignment import Assignment
from fuel_dispatch.app.models.assignment_metadata import DeliveryDetail, StageDocumentation, TripInfo
from fuel_dispatch.app.models.customer import Customer
from fuel_dispatch.app.models.discharge import Discharge
from fuel_dispatch.app.models.fuel_enums import TripStatus

logger = logging.getLogger(__name__)


async def _writable_assignment(db: AsyncSession, caller: Caller, assignment_id: int) -> Assignment:
    caller.require(Capability.RECORD_DISCHARGE)
    assignment = await get_assignment(db, assignment_id)
    caller.require_owner(assignment.driver_id)
    return assignment


async def _get_trip(db: AsyncSession, assignment_id: int) -> Optional[TripInfo]:
    result = await db.execute(select(TripInfo).where(TripInfo.assignment_id == assignment_id))
    return result.scalar_one_or_none()


class AssignmentMetadataService:

    @staticmethod
    async def start_trip(db: AsyncSession, caller: Caller, assignment_id: int) -> TripInfo:
        async with unit_of_work(db):
            assignment = await _writable_assignment(db, caller, assignment_id)
            if assignment.is_completed:
                raise InvalidStateError(
                    f"Assignment {assignment_id} is already completed",
                    details={"assignment_id": assignment_id},
                )
            if await _get_trip(db, assignment_id):
                raise InvalidStateError(
                    f"Trip for assignment {assignment_id} was already started",
                    details={"assignment_id": assignment_id},
                )
            trip = TripInfo(
                assignment_id=assignment_id,
                driver_id=assignment.driver_id,
                status=TripStatus.IN_PROGRESS,
                started_at=utcnow(),
            )
            db.add(trip)

        logger.info("Trip started for assignment %s", assignment_id)
        return trip

    @staticmethod
    async def end_trip(
        db: AsyncSession,
        caller: Caller,
        assignment_id: int,
        total_distance_km: Any = None,
    ) -> TripInfo:
        async with unit_of_work(db):
            await _writable_assignment(db, caller, assignment_id)
            trip = await _get_trip(db, assignment_id)
            if not trip:
                raise ResourceNotFoundError("Trip", assignment_id)
            if trip.status != TripStatus.IN_PROGRESS:
                raise InvalidStateError(
                    f"Trip for assignment {assignment_id} is {trip.status.value}",
                    details={"assignment_id": assignment_id, "status": trip.status.value},
                )
            if total_distance_km is not None:
                distance = to_decimal(total_distance_km)
                if not (distance.is_finite() and distance >= 0):
                    raise InvalidStateError(
                        "Distance must be zero or positive",
                        details={"total_distance_km": str(distance)},
                    )
                trip.total_distance_km = distance
            trip.status = TripStatus.COMPLETED
            trip.ended_at = utcnow()

        logger.info("Trip ended for assignment %s", assignment_id)
        return trip

    @staticmethod
    async def document_stage(
        db: AsyncSession,
        caller: Caller,
        assignment_id: int,
        stage: str,
        photo_urls: Sequence[str] = (),
        observations: Optional[str] = None,
    ) -> StageDocumentation:
        """Create or replace the documentation for one stage."""
        stage = stage.strip().lower()
        async with unit_of_work(db):
            await _writable_assignment(db, caller, assignment_id)
            record = (await db.execute(
                select(StageDocumentation).where(
                    StageDocumentation.assignment_id == assignment_id,
                    StageDocumentation.stage == stage,
                )
            )).scalar_one_or_none()
            if record is None:
                record = StageDocumentation(assignment_id=assignment_id, stage=stage)
                db.add(record)
            record.photo_urls = list(photo_urls)
            record.observations = observations
            record.documented_at = utcnow()
            record.documented_by = caller.user_id

        return record

    @staticmethod
    async def add_delivery_detail(
        db: AsyncSession,
        caller: Caller,
        assignment_id: int,
        customer_id: int,
        discharge_id: Optional[int] = None,
        observations: Optional[str] = None,
    ) -> DeliveryDetail:
        async with unit_of_work(db):
            await _writable_assignment(db, caller, assignment_id)
            if not await db.get(Customer, customer_id):
                raise ResourceNotFoundError("Customer", customer_id)
            if discharge_id is not None:
                discharge = await db.get(Discharge, discharge_id)
                if not discharge or discharge.assignment_id != assignment_id:
                    raise ResourceNotFoundError("Discharge", discharge_id)
            detail = DeliveryDetail(
                assignment_id=assignment_id,
                customer_id=customer_id,
                discharge_id=discharge_id,
                observations=observations,
                recorded_at=utcnow(),
                recorded_by=caller.user_id,
            )
            db.add(detail)

        return detail

    @staticmethod
    async def get_metadata(db: AsyncSession, caller: Caller, assignment_id: int) -> List[Any]:
        """All metadata records, trip first, then stages and deliveries in order."""
        assignment = await get_assignment(db, assignment_id)
        caller.require_owner(assignment.driver_id)

        records: List[Any] = []
        trip = await _get_trip(db, assignment_id)
        if trip:
            records.append(trip)
        stages = await db.execute(
            select(StageDocumentation)
            .where(StageDocumentation.assignment_id == assignment_id)
            .order_by(StageDocumentation.documented_at, StageDocumentation.id)
        )
        records.extend(stages.scalars().all())
        deliveries = await db.execute(
            select(DeliveryDetail)
            .where(DeliveryDetail.assignment_id == assignment_id)
            .order_by(DeliveryDetail.recorded_at, DeliveryDetail.id)
        )
        records.extend(deliveries.scalars().all())
        return records
