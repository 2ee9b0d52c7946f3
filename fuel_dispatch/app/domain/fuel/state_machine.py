"""
Assignment State Machine (Domain Logic).

Drives Assignment completion and the Truck/driver states that follow it,
plus the two batch sweeps that correct drifted state. Every completion goes
through one conditional UPDATE guarded by is_completed, so concurrent
completions and sweeps apply at most once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from fuel_dispatch.app.core.config import settings
from fuel_dispatch.app.core.exceptions import (
    ConcurrencyConflictError,
    IncompleteDeliveriesError,
    InvalidStateError,
    ResourceNotFoundError,
)
from fuel_dispatch.app.db.session import unit_of_work, utcnow
from fuel_dispatch.app.domain.fuel.capabilities import Caller, Capability
from fuel_dispatch.app.models.assignment import Assignment
from fuel_dispatch.app.models.client_assignment import ClientAssignment
from fuel_dispatch.app.models.discharge import Discharge
from fuel_dispatch.app.models.enums import UserState
from fuel_dispatch.app.models.fuel_enums import (
    AssignmentPhase,
    ClientAssignmentStatus,
    DischargeStatus,
    LIFECYCLE_TRUCK_STATES,
    RESOLVED_CLIENT_STATUSES,
    TruckState,
)
from fuel_dispatch.app.models.truck import Truck
from fuel_dispatch.app.models.user import User
from fuel_dispatch.app.services.events import DomainEvent, EventService, EventType

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    assignments_expired: int = 0
    client_assignments_expired: int = 0
    discharges_finalized: int = 0
    assignment_ids: List[int] = field(default_factory=list)


@dataclass
class FleetRefreshReport:
    trucks_updated: int = 0
    assignments_reopened: int = 0


async def get_assignment(db: AsyncSession, assignment_id: int, lock: bool = False) -> Assignment:
    """Load an assignment with fresh column values or raise ResourceNotFoundError."""
    assignment = await db.get(Assignment, assignment_id, populate_existing=True, with_for_update=lock)
    if not assignment:
        raise ResourceNotFoundError("Assignment", assignment_id)
    return assignment


async def list_client_assignments(db: AsyncSession, assignment_id: int) -> List[ClientAssignment]:
    result = await db.execute(
        select(ClientAssignment)
        .where(ClientAssignment.assignment_id == assignment_id)
        .order_by(ClientAssignment.id)
    )
    return list(result.scalars().all())


def unresolved_customer_ids(client_assignments: Sequence[ClientAssignment]) -> List[int]:
    return [ca.customer_id for ca in client_assignments if ca.status not in RESOLVED_CLIENT_STATUSES]


class AssignmentStateMachine:

    @staticmethod
    def phase_of(assignment: Assignment, client_assignments: Sequence[ClientAssignment]) -> AssignmentPhase:
        """
        Derive the lifecycle phase.

        COMPLETING means every client assignment is resolved and no fuel is
        left, but the completion has not been applied yet.
        """
        if assignment.is_completed:
            return AssignmentPhase.COMPLETED
        if not unresolved_customer_ids(client_assignments) and assignment.total_remaining <= 0:
            return AssignmentPhase.COMPLETING
        return AssignmentPhase.OPEN

    @staticmethod
    def transition_truck(truck: Truck, state: TruckState, events: List[DomainEvent], reason: str) -> bool:
        """Set the truck state, recording an event. Returns False when already there."""
        if truck.state == state:
            return False
        previous = truck.state
        truck.state = state
        logger.info("Truck %s state %s -> %s (%s)", truck.id, previous.value, state.value, reason)
        events.append(DomainEvent(EventType.TRUCK_STATE_CHANGED, {
            "truck_id": truck.id,
            "from": previous.value,
            "to": state.value,
            "reason": reason,
        }))
        return True

    @staticmethod
    def on_assignment_created(truck: Truck, driver: User, events: List[DomainEvent]) -> None:
        AssignmentStateMachine.transition_truck(truck, TruckState.ASSIGNED, events, "assignment_created")
        driver.state = UserState.ASSIGNED

    @staticmethod
    async def evaluate_completion(db: AsyncSession, assignment: Assignment, events: List[DomainEvent]) -> bool:
        """
        Complete the assignment if the completion rule now holds.

        Called inside the caller's unit of work after every balance change.

        Returns:
            True if this call completed the assignment
        """
        await db.flush()
        client_assignments = await list_client_assignments(db, assignment.id)
        if AssignmentStateMachine.phase_of(assignment, client_assignments) != AssignmentPhase.COMPLETING:
            return False
        return await AssignmentStateMachine._apply_completion(db, assignment, events, reason="deliveries_resolved")

    @staticmethod
    async def complete_assignment(
        db: AsyncSession,
        assignment_id: int,
        caller: Caller,
        override: bool = False,
    ) -> Assignment:
        """
        Explicitly complete an assignment.

        Args:
            db: Database session
            assignment_id: Assignment to complete
            caller: Resolved caller
            override: Complete despite unresolved deliveries; pending client
                assignments are expired

        Returns:
            The completed assignment

        Raises:
            InsufficientPermissionsError: Missing capability or not the driver
            ResourceNotFoundError: Unknown assignment
            InvalidStateError: Already completed
            IncompleteDeliveriesError: Unresolved customers or fuel remaining
            ConcurrencyConflictError: Completed concurrently by another request
        """
        caller.require(Capability.COMPLETE_ASSIGNMENT)
        if override:
            caller.require(Capability.OVERRIDE_STATE)

        events: List[DomainEvent] = []
        async with unit_of_work(db):
            assignment = await get_assignment(db, assignment_id)
            caller.require_owner(assignment.driver_id)
            if assignment.is_completed:
                raise InvalidStateError(
                    f"Assignment {assignment_id} is already completed",
                    details={"assignment_id": assignment_id},
                )

            client_assignments = await list_client_assignments(db, assignment_id)
            unresolved = unresolved_customer_ids(client_assignments)
            if not override and (unresolved or assignment.total_remaining > 0):
                raise IncompleteDeliveriesError(assignment_id, unresolved, assignment.total_remaining)

            if override and unresolved:
                await AssignmentStateMachine._expire_pending(db, assignment_id, utcnow())
                logger.warning(
                    "Assignment %s completed by override with unresolved customers %s",
                    assignment_id, unresolved,
                )

            reason = "override" if override else "manual"
            if not await AssignmentStateMachine._apply_completion(db, assignment, events, reason=reason):
                raise ConcurrencyConflictError("assignment", assignment_id)

        await EventService.publish_all(events)
        return assignment

    @staticmethod
    async def sweep_stale_assignments(
        db: AsyncSession,
        now: Optional[datetime] = None,
        driver_id: Optional[int] = None,
    ) -> SweepReport:
        """
        Expire assignments left open past the stale threshold.

        Each assignment is handled in its own unit of work. Re-running the
        sweep, or running it concurrently, finds nothing left to change.

        Args:
            db: Database session
            now: Reference time, defaults to the current UTC time
            driver_id: Only sweep this driver's assignments

        Returns:
            SweepReport with the counts applied by this run
        """
        now = now or utcnow()
        cutoff = now - timedelta(hours=settings.stale_assignment_hours)

        query = select(Assignment.id).where(
            Assignment.is_completed.is_(False),
            Assignment.created_at < cutoff,
        ).order_by(Assignment.id)
        if driver_id is not None:
            query = query.where(Assignment.driver_id == driver_id)
        stale_ids = list((await db.execute(query)).scalars().all())

        report = SweepReport()
        for assignment_id in stale_ids:
            events: List[DomainEvent] = []
            async with unit_of_work(db):
                assignment = await get_assignment(db, assignment_id)
                claimed = await AssignmentStateMachine._claim_completion(db, assignment, now)
                if not claimed:
                    continue

                expired = await AssignmentStateMachine._expire_pending(db, assignment_id, now)
                finalized = await db.execute(
                    update(Discharge)
                    .where(Discharge.assignment_id == assignment_id, Discharge.status == DischargeStatus.PENDING)
                    .values(status=DischargeStatus.FINALIZED, end_time=func.coalesce(Discharge.end_time, now))
                    .execution_options(synchronize_session=False)
                )
                await AssignmentStateMachine._release_resources(db, assignment, events, "stale_assignment_expired")

                events.append(DomainEvent(EventType.ASSIGNMENT_EXPIRED, {
                    "assignment_id": assignment_id,
                    "truck_id": assignment.truck_id,
                    "client_assignments_expired": expired,
                    "discharges_finalized": finalized.rowcount,
                }))

            await EventService.publish_all(events)
            report.assignments_expired += 1
            report.client_assignments_expired += expired
            report.discharges_finalized += finalized.rowcount
            report.assignment_ids.append(assignment_id)

        logger.info(
            "Stale sweep: %s assignments expired, %s client assignments expired, %s discharges finalized",
            report.assignments_expired, report.client_assignments_expired, report.discharges_finalized,
        )
        return report

    @staticmethod
    async def refresh_fleet_state(db: AsyncSession) -> FleetRefreshReport:
        """
        Re-derive every truck's state from its most recent assignment.

        - completed, all client assignments resolved: lifecycle state -> ACTIVE
        - completed with PENDING client assignments: reopen, truck -> ASSIGNED
        - open: truck must be ASSIGNED or UNLOADING, otherwise -> ASSIGNED

        INACTIVE and MAINTENANCE trucks with a completed assignment are left
        alone. Idempotent.
        """
        truck_ids = list((await db.execute(select(Truck.id).order_by(Truck.id))).scalars().all())
        report = FleetRefreshReport()

        for truck_id in truck_ids:
            events: List[DomainEvent] = []
            async with unit_of_work(db):
                await AssignmentStateMachine._refresh_truck(db, truck_id, report, events)
            await EventService.publish_all(events)

        logger.info("Fleet refresh: %s trucks updated, %s assignments reopened",
                    report.trucks_updated, report.assignments_reopened)
        return report

    @staticmethod
    async def _refresh_truck(
        db: AsyncSession,
        truck_id: int,
        report: FleetRefreshReport,
        events: List[DomainEvent],
    ) -> None:
        truck = await db.get(Truck, truck_id, populate_existing=True)
        latest = (await db.execute(
            select(Assignment)
            .where(Assignment.truck_id == truck_id)
            .order_by(Assignment.created_at.desc(), Assignment.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if truck is None or latest is None:
            return

        if not latest.is_completed:
            if truck.state not in (TruckState.ASSIGNED, TruckState.UNLOADING):
                logger.warning("Truck %s drifted to %s with open assignment %s",
                               truck_id, truck.state.value, latest.id)
                AssignmentStateMachine.transition_truck(truck, TruckState.ASSIGNED, events, "fleet_refresh")
                report.trucks_updated += 1
            return

        client_assignments = await list_client_assignments(db, latest.id)
        pending = [ca for ca in client_assignments if ca.status == ClientAssignmentStatus.PENDING]
        if not pending:
            if truck.state in LIFECYCLE_TRUCK_STATES:
                logger.warning("Truck %s left in %s after assignment %s completed",
                               truck_id, truck.state.value, latest.id)
                AssignmentStateMachine.transition_truck(truck, TruckState.ACTIVE, events, "fleet_refresh")
                report.trucks_updated += 1
            return

        if await AssignmentStateMachine.reopen(db, latest, events):
            report.assignments_reopened += 1
            if AssignmentStateMachine.transition_truck(truck, TruckState.ASSIGNED, events, "fleet_refresh"):
                report.trucks_updated += 1

    @staticmethod
    async def _claim_completion(db: AsyncSession, assignment: Assignment, now: datetime) -> bool:
        result = await db.execute(
            update(Assignment)
            .where(Assignment.id == assignment.id, Assignment.is_completed.is_(False))
            .values(is_completed=True, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        await db.refresh(assignment)
        return True

    @staticmethod
    async def _apply_completion(
        db: AsyncSession,
        assignment: Assignment,
        events: List[DomainEvent],
        reason: str,
    ) -> bool:
        await db.flush()
        if not await AssignmentStateMachine._claim_completion(db, assignment, utcnow()):
            return False
        await AssignmentStateMachine._release_resources(db, assignment, events, reason)
        logger.info("Assignment %s completed (%s)", assignment.id, reason)
        events.append(DomainEvent(EventType.ASSIGNMENT_COMPLETED, {
            "assignment_id": assignment.id,
            "truck_id": assignment.truck_id,
            "driver_id": assignment.driver_id,
            "total_remaining": str(assignment.total_remaining),
            "reason": reason,
        }))
        return True

    @staticmethod
    async def _release_resources(
        db: AsyncSession,
        assignment: Assignment,
        events: List[DomainEvent],
        reason: str,
    ) -> None:
        truck = await db.get(Truck, assignment.truck_id, populate_existing=True)
        if truck is not None and truck.state in LIFECYCLE_TRUCK_STATES:
            AssignmentStateMachine.transition_truck(truck, TruckState.ACTIVE, events, reason)
        driver = await db.get(User, assignment.driver_id, populate_existing=True)
        if driver is not None and driver.state == UserState.ASSIGNED:
            driver.state = UserState.ACTIVE

    @staticmethod
    async def _expire_pending(db: AsyncSession, assignment_id: int, now: datetime) -> int:
        result = await db.execute(
            update(ClientAssignment)
            .where(
                ClientAssignment.assignment_id == assignment_id,
                ClientAssignment.status == ClientAssignmentStatus.PENDING,
            )
            .values(
                status=ClientAssignmentStatus.EXPIRED,
                delivered_quantity=0,
                remaining_quantity=0,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def reopen(db: AsyncSession, assignment: Assignment, events: List[DomainEvent]) -> bool:
        """Revert a completion, unless the truck already has another open assignment."""
        other_open = (await db.execute(
            select(func.count(Assignment.id)).where(
                Assignment.truck_id == assignment.truck_id,
                Assignment.is_completed.is_(False),
                Assignment.id != assignment.id,
            )
        )).scalar_one()
        if other_open:
            logger.warning("Assignment %s has pending deliveries but truck %s already has an open assignment",
                           assignment.id, assignment.truck_id)
            return False

        now = utcnow()
        result = await db.execute(
            update(Assignment)
            .where(Assignment.id == assignment.id, Assignment.is_completed.is_(True))
            .values(is_completed=False, completed_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        await db.refresh(assignment)

        driver = await db.get(User, assignment.driver_id, populate_existing=True)
        if driver is not None and driver.state == UserState.ACTIVE:
            driver.state = UserState.ASSIGNED

        logger.warning("Assignment %s reopened with pending client assignments", assignment.id)
        events.append(DomainEvent(EventType.ASSIGNMENT_REOPENED, {
            "assignment_id": assignment.id,
            "truck_id": assignment.truck_id,
        }))
        return True
