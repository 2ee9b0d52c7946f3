"""
Reconciliation Service (Domain Logic).

The only writer of assignment balances, truck load levels, discharges and
client allocations. Every operation runs as one unit of work; balance
changes are conditional UPDATEs checked and applied by the database, never
read-modify-write from application code. Domain events are published only
after the unit of work commits.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fuel_dispatch.app.core.config import settings
from fuel_dispatch.app.core.exceptions import (
    CapacityExceededError,
    ConcurrencyConflictError,
    DuplicateAllocationError,
    InsufficientFuelError,
    InvalidQuantityError,
    InvalidStateError,
    ResourceNotFoundError,
)
from fuel_dispatch.app.core.reliability import retry_read_once
from fuel_dispatch.app.db.session import unit_of_work, utcnow
from fuel_dispatch.app.domain.fuel.capabilities import Caller, Capability
from fuel_dispatch.app.domain.fuel.ledger import (
    CAPACITY_EXCEEDED,
    INSUFFICIENT_FUEL,
    FuelLedger,
    LedgerResult,
    to_decimal,
)
from fuel_dispatch.app.domain.fuel.numbering_service import NumberingService
from fuel_dispatch.app.domain.fuel.state_machine import (
    AssignmentStateMachine,
    get_assignment,
    list_client_assignments,
    unresolved_customer_ids,
)
from fuel_dispatch.app.models.assignment import Assignment
from fuel_dispatch.app.models.assignment_metadata import DeliveryDetail
from fuel_dispatch.app.models.client_assignment import ClientAssignment
from fuel_dispatch.app.models.customer import Customer
from fuel_dispatch.app.models.discharge import Discharge
from fuel_dispatch.app.models.enums import UserState
from fuel_dispatch.app.models.fuel_enums import (
    AssignmentPhase,
    ClientAssignmentStatus,
    DischargeStatus,
    FuelType,
    LIFECYCLE_TRUCK_STATES,
    TruckState,
)
from fuel_dispatch.app.models.truck import Truck
from fuel_dispatch.app.models.user import User
from fuel_dispatch.app.services.events import DomainEvent, EventService, EventType

logger = logging.getLogger(__name__)

DELIVERABLE_CLIENT_STATUSES = (ClientAssignmentStatus.PENDING, ClientAssignmentStatus.COMPLETED)


@dataclass(frozen=True)
class MeterReadings:
    marker_start: Any = None
    marker_end: Any = None


@dataclass
class AssignmentSummary:
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
    unresolved_customer_ids: List[int] = field(default_factory=list)


def raise_for_ledger(result: LedgerResult, scope: str = "assignment") -> None:
    """Translate a failed LedgerResult into the matching typed error."""
    if result.ok:
        return
    ctx = result.context
    if result.error == INSUFFICIENT_FUEL:
        raise InsufficientFuelError(ctx["requested"], ctx["available"])
    if result.error == CAPACITY_EXCEEDED:
        raise CapacityExceededError(ctx["requested"], ctx["available"], ctx["limit"], scope=scope)
    raise InvalidQuantityError(ctx.get("requested"))


class ReconciliationService:

    @staticmethod
    async def create_assignment(
        db: AsyncSession,
        caller: Caller,
        truck_id: int,
        driver_id: int,
        total_loaded: Any,
        fuel_type: Optional[FuelType] = None,
        notes: Optional[str] = None,
    ) -> Assignment:
        """
        Load a truck and hand it to a driver.

        Raises:
            InvalidQuantityError: total_loaded <= 0
            ResourceNotFoundError: Unknown truck or driver
            InvalidStateError: Truck or driver not ACTIVE, fuel type mismatch,
                or the truck already has an open assignment
            CapacityExceededError: Load above the truck capacity
            ConcurrencyConflictError: A concurrent request opened an assignment first
        """
        caller.require(Capability.CREATE_ASSIGNMENT)
        amount = to_decimal(total_loaded)
        if not (amount.is_finite() and amount > 0):
            raise InvalidQuantityError(amount, field="total_loaded")

        events: List[DomainEvent] = []
        async with unit_of_work(db):
            truck = await db.get(Truck, truck_id, populate_existing=True)
            if not truck:
                raise ResourceNotFoundError("Truck", truck_id)
            driver = await db.get(User, driver_id, populate_existing=True)
            if not driver:
                raise ResourceNotFoundError("Driver", driver_id)

            if truck.state != TruckState.ACTIVE:
                raise InvalidStateError(
                    f"Truck {truck.plate} is {truck.state.value}, must be ACTIVE",
                    details={"truck_id": truck_id, "state": truck.state.value},
                )
            if not driver.is_active or driver.state != UserState.ACTIVE:
                raise InvalidStateError(
                    f"Driver {driver.username} is {driver.state.value}, must be ACTIVE",
                    details={"driver_id": driver_id, "state": driver.state.value},
                )
            if fuel_type is not None and fuel_type != truck.fuel_type:
                raise InvalidStateError(
                    f"Truck {truck.plate} carries {truck.fuel_type.value}, not {fuel_type.value}",
                    details={"truck_id": truck_id, "fuel_type": truck.fuel_type.value},
                )
            if amount > truck.capacity_gal:
                raise CapacityExceededError(amount, truck.capacity_gal, truck.capacity_gal, scope="truck")

            open_count = (await db.execute(
                select(func.count(Assignment.id)).where(
                    Assignment.truck_id == truck_id,
                    Assignment.is_completed.is_(False),
                )
            )).scalar_one()
            if open_count:
                raise InvalidStateError(
                    f"Truck {truck.plate} already has an open assignment",
                    details={"truck_id": truck_id},
                )

            assignment = Assignment(
                truck_id=truck_id,
                driver_id=driver_id,
                fuel_type=truck.fuel_type,
                total_loaded=amount,
                total_remaining=amount,
                is_completed=False,
                notes=notes,
            )
            db.add(assignment)
            try:
                await db.flush()
            except IntegrityError:
                raise ConcurrencyConflictError("truck", truck_id)

            truck.last_remaining = amount
            AssignmentStateMachine.on_assignment_created(truck, driver, events)
            events.append(DomainEvent(EventType.ASSIGNMENT_CREATED, {
                "assignment_id": assignment.id,
                "truck_id": truck_id,
                "driver_id": driver_id,
                "total_loaded": str(amount),
            }))

        logger.info("Assignment %s created: truck %s, driver %s, %s gal",
                    assignment.id, truck_id, driver_id, amount)
        await EventService.publish_all(events)
        return assignment

    @staticmethod
    async def record_discharge(
        db: AsyncSession,
        caller: Caller,
        assignment_id: int,
        customer_id: int,
        amount: Any,
        meter_readings: Optional[MeterReadings] = None,
        notes: Optional[str] = None,
    ) -> Discharge:
        """
        Record a delivery against an assignment.

        Flow:
        1. Load assignment, check ownership
        2. Validate amount against the remaining balance
        3. Decrement the balance with a conditional UPDATE
        4. Issue the vale number
        5. Persist the discharge, client allocation and truck load level
        6. Re-evaluate assignment completion

        Args:
            db: Database session
            caller: Resolved caller
            assignment_id: Assignment delivering the fuel
            customer_id: Receiving customer
            amount: Declared quantity in gallons
            meter_readings: Optional dispenser readings for the cross-check
            notes: Free text

        Returns:
            The created Discharge with its vale number

        Raises:
            InsufficientPermissionsError: Not allowed or not the driver
            ResourceNotFoundError: Unknown assignment or customer
            InvalidStateError: Assignment already completed
            InvalidQuantityError / InsufficientFuelError: Rejected amount
            CapacityExceededError: Amount above what is left of the customer's allocation
            ConcurrencyConflictError: The balance moved under the request
        """
        caller.require(Capability.RECORD_DISCHARGE)
        amount = to_decimal(amount)

        events: List[DomainEvent] = []
        async with unit_of_work(db):
            assignment = await get_assignment(db, assignment_id)
            caller.require_owner(assignment.driver_id)
            if assignment.is_completed:
                raise InvalidStateError(
                    f"Assignment {assignment_id} is already completed",
                    details={"assignment_id": assignment_id},
                )
            if not await db.get(Customer, customer_id):
                raise ResourceNotFoundError("Customer", customer_id)

            raise_for_ledger(FuelLedger.validate_discharge(assignment.total_remaining, amount))

            allocation = (await db.execute(
                select(ClientAssignment).where(
                    ClientAssignment.assignment_id == assignment_id,
                    ClientAssignment.customer_id == customer_id,
                    ClientAssignment.status.in_(DELIVERABLE_CLIENT_STATUSES),
                )
            )).scalar_one_or_none()
            if allocation and amount > allocation.remaining_quantity:
                raise CapacityExceededError(
                    amount, allocation.remaining_quantity, allocation.allocated_quantity,
                    scope="client_assignment",
                )

            await ReconciliationService._apply_decrement(db, assignment, amount)
            vale_number = await NumberingService.next(db, settings.vale_prefix)

            now = utcnow()
            discharge = Discharge(
                vale_number=vale_number,
                assignment_id=assignment_id,
                customer_id=customer_id,
                recorded_by=caller.user_id,
                total_discharged=amount,
                status=DischargeStatus.PENDING,
                notes=notes,
                start_time=now,
            )
            if meter_readings is not None:
                if meter_readings.marker_start is not None:
                    discharge.marker_start = to_decimal(meter_readings.marker_start)
                if meter_readings.marker_end is not None:
                    discharge.marker_end = to_decimal(meter_readings.marker_end)
                ReconciliationService._apply_meter_check(discharge, events)

            if allocation:
                await ReconciliationService._deliver_to_allocation(db, allocation, amount, now)

            truck = await db.get(Truck, assignment.truck_id, populate_existing=True)
            truck.last_remaining = assignment.total_remaining
            next_state = TruckState.UNLOADING if assignment.total_remaining > 0 else TruckState.ACTIVE
            AssignmentStateMachine.transition_truck(truck, next_state, events, "discharge_recorded")

            db.add(discharge)
            await db.flush()
            events.append(DomainEvent(EventType.DISCHARGE_RECORDED, {
                "discharge_id": discharge.id,
                "vale_number": vale_number,
                "assignment_id": assignment_id,
                "customer_id": customer_id,
                "amount": str(amount),
                "total_remaining": str(assignment.total_remaining),
            }))

            await AssignmentStateMachine.evaluate_completion(db, assignment, events)

        logger.info("Discharge %s recorded: %s gal on assignment %s, %s gal remaining",
                    vale_number, amount, assignment_id, assignment.total_remaining)
        await EventService.publish_all(events)
        return discharge

    @staticmethod
    async def allocate_to_client(
        db: AsyncSession,
        caller: Caller,
        assignment_id: int,
        customer_id: int,
        quantity: Any,
    ) -> ClientAssignment:
        """
        Pre-plan part of an assignment's load for one customer.

        Raises:
            ResourceNotFoundError: Unknown assignment or customer
            InvalidStateError: Assignment already completed
            DuplicateAllocationError: Customer already allocated on this assignment
            InvalidQuantityError / CapacityExceededError: Rejected quantity
        """
        caller.require(Capability.ALLOCATE_TO_CLIENT)
        quantity = to_decimal(quantity)

        async with unit_of_work(db):
            # Row lock serializes concurrent allocations on PostgreSQL
            assignment = await get_assignment(db, assignment_id, lock=True)
            if assignment.is_completed:
                raise InvalidStateError(
                    f"Assignment {assignment_id} is already completed",
                    details={"assignment_id": assignment_id},
                )
            if not await db.get(Customer, customer_id):
                raise ResourceNotFoundError("Customer", customer_id)

            existing = (await db.execute(
                select(ClientAssignment.id).where(
                    ClientAssignment.assignment_id == assignment_id,
                    ClientAssignment.customer_id == customer_id,
                )
            )).scalar_one_or_none()
            if existing is not None:
                raise DuplicateAllocationError(assignment_id, customer_id)

            allocated = (await db.execute(
                select(func.coalesce(func.sum(ClientAssignment.allocated_quantity), 0))
                .where(ClientAssignment.assignment_id == assignment_id)
            )).scalar_one()
            raise_for_ledger(FuelLedger.validate_allocation(assignment.total_loaded, allocated, quantity))

            allocation = ClientAssignment(
                assignment_id=assignment_id,
                customer_id=customer_id,
                allocated_quantity=quantity,
                delivered_quantity=Decimal("0"),
                remaining_quantity=quantity,
                status=ClientAssignmentStatus.PENDING,
            )
            db.add(allocation)
            try:
                await db.flush()
            except IntegrityError:
                raise DuplicateAllocationError(assignment_id, customer_id)

        logger.info("Allocated %s gal of assignment %s to customer %s", quantity, assignment_id, customer_id)
        return allocation

    @staticmethod
    async def remove_allocation(
        db: AsyncSession,
        caller: Caller,
        assignment_id: int,
        client_assignment_id: int,
    ) -> None:
        """Delete a PENDING allocation from an open assignment."""
        caller.require(Capability.ALLOCATE_TO_CLIENT)

        events: List[DomainEvent] = []
        async with unit_of_work(db):
            assignment = await get_assignment(db, assignment_id)
            allocation = await db.get(ClientAssignment, client_assignment_id)
            if not allocation or allocation.assignment_id != assignment_id:
                raise ResourceNotFoundError("ClientAssignment", client_assignment_id)
            if assignment.is_completed or allocation.status != ClientAssignmentStatus.PENDING:
                raise InvalidStateError(
                    "Only PENDING allocations on open assignments can be removed",
                    details={
                        "client_assignment_id": client_assignment_id,
                        "status": allocation.status.value,
                        "assignment_completed": assignment.is_completed,
                    },
                )
            await db.delete(allocation)
            await AssignmentStateMachine.evaluate_completion(db, assignment, events)

        await EventService.publish_all(events)

    @staticmethod
    async def finalize_discharge(
        db: AsyncSession,
        caller: Caller,
        discharge_id: int,
        marker_start: Any,
        marker_end: Any,
        real_quantity: Any = None,
    ) -> Discharge:
        """
        Close a discharge with its final meter readings.

        real_quantity defaults to the metered quantity (start - end).
        """
        caller.require(Capability.RECORD_DISCHARGE)

        events: List[DomainEvent] = []
        async with unit_of_work(db):
            discharge = await ReconciliationService._get_discharge(db, discharge_id)
            assignment = await get_assignment(db, discharge.assignment_id)
            caller.require_owner(assignment.driver_id, resource="discharge")
            if discharge.status == DischargeStatus.FINALIZED:
                raise InvalidStateError(
                    f"Discharge {discharge.vale_number} is already finalized",
                    details={"discharge_id": discharge_id},
                )

            discharge.marker_start = to_decimal(marker_start)
            discharge.marker_end = to_decimal(marker_end)
            ReconciliationService._apply_meter_check(discharge, events)
            if real_quantity is not None:
                discharge.real_quantity = to_decimal(real_quantity)
            discharge.status = DischargeStatus.FINALIZED
            discharge.end_time = utcnow()

            await AssignmentStateMachine.evaluate_completion(db, assignment, events)

        await EventService.publish_all(events)
        return discharge

    @staticmethod
    async def correct_discharge(
        db: AsyncSession,
        caller: Caller,
        discharge_id: int,
        new_amount: Any,
    ) -> Discharge:
        """
        Admin correction of a recorded amount.

        The difference is applied to the assignment balance with the same
        conditional UPDATE used for new discharges.
        """
        caller.require(Capability.CORRECT_DISCHARGE)
        new_amount = to_decimal(new_amount)

        events: List[DomainEvent] = []
        async with unit_of_work(db):
            discharge = await ReconciliationService._get_discharge(db, discharge_id)
            assignment = await get_assignment(db, discharge.assignment_id)
            current = discharge.total_discharged

            raise_for_ledger(FuelLedger.validate_correction(assignment.total_remaining, current, new_amount))
            difference = new_amount - current
            if difference == 0:
                return discharge

            allocation = (await db.execute(
                select(ClientAssignment).where(
                    ClientAssignment.assignment_id == assignment.id,
                    ClientAssignment.customer_id == discharge.customer_id,
                    ClientAssignment.status == ClientAssignmentStatus.COMPLETED,
                )
            )).scalar_one_or_none()
            if allocation:
                delivered = allocation.delivered_quantity + difference
                if delivered > allocation.allocated_quantity:
                    raise CapacityExceededError(
                        difference, allocation.allocated_quantity - allocation.delivered_quantity,
                        allocation.allocated_quantity, scope="client_assignment",
                    )
                await ReconciliationService._adjust_allocation(db, allocation, difference)

            await ReconciliationService._apply_decrement(db, assignment, difference, require_open=False)

            discharge.total_discharged = new_amount
            if discharge.marker_start is not None and discharge.marker_end is not None:
                ReconciliationService._apply_meter_check(discharge, events)

            if not assignment.is_completed:
                truck = await db.get(Truck, assignment.truck_id, populate_existing=True)
                truck.last_remaining = assignment.total_remaining
                await AssignmentStateMachine.evaluate_completion(db, assignment, events)

        logger.info("Discharge %s corrected from %s to %s gal", discharge.vale_number, current, new_amount)
        await EventService.publish_all(events)
        return discharge

    @staticmethod
    async def reverse_discharge(db: AsyncSession, caller: Caller, discharge_id: int) -> Assignment:
        """
        Delete a discharge and give its fuel back to the assignment.

        The balance is restored up to total_loaded, the customer's allocation
        goes back to PENDING and a completed assignment is reopened. The vale
        number is never reissued.

        Returns:
            The assignment after restoration
        """
        caller.require(Capability.CORRECT_DISCHARGE)

        events: List[DomainEvent] = []
        async with unit_of_work(db):
            discharge = await ReconciliationService._get_discharge(db, discharge_id)
            assignment = await get_assignment(db, discharge.assignment_id)
            amount = discharge.total_discharged
            vale_number = discharge.vale_number

            if assignment.is_completed:
                other_open = (await db.execute(
                    select(func.count(Assignment.id)).where(
                        Assignment.truck_id == assignment.truck_id,
                        Assignment.is_completed.is_(False),
                    )
                )).scalar_one()
                if other_open:
                    raise InvalidStateError(
                        f"Cannot reopen assignment {assignment.id}: truck has another open assignment",
                        details={"assignment_id": assignment.id, "truck_id": assignment.truck_id},
                    )

            restored = Assignment.total_remaining + amount
            await db.execute(
                update(Assignment)
                .where(Assignment.id == assignment.id)
                .values(
                    total_remaining=case(
                        (restored > Assignment.total_loaded, Assignment.total_loaded),
                        else_=restored,
                    ),
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await db.refresh(assignment)

            allocation = (await db.execute(
                select(ClientAssignment).where(
                    ClientAssignment.assignment_id == assignment.id,
                    ClientAssignment.customer_id == discharge.customer_id,
                    ClientAssignment.status == ClientAssignmentStatus.COMPLETED,
                )
            )).scalar_one_or_none()
            if allocation:
                await ReconciliationService._adjust_allocation(db, allocation, -amount, reopen=True)

            await db.execute(
                update(DeliveryDetail)
                .where(DeliveryDetail.discharge_id == discharge.id)
                .values(discharge_id=None)
                .execution_options(synchronize_session=False)
            )
            await db.delete(discharge)
            await db.flush()

            if assignment.is_completed:
                await AssignmentStateMachine.reopen(db, assignment, events)

            truck = await db.get(Truck, assignment.truck_id, populate_existing=True)
            truck.last_remaining = assignment.total_remaining
            if truck.state == TruckState.ACTIVE or truck.state in LIFECYCLE_TRUCK_STATES:
                AssignmentStateMachine.transition_truck(truck, TruckState.ASSIGNED, events, "discharge_reversed")

            events.append(DomainEvent(EventType.DISCHARGE_REVERSED, {
                "discharge_id": discharge_id,
                "vale_number": vale_number,
                "assignment_id": assignment.id,
                "amount": str(amount),
                "total_remaining": str(assignment.total_remaining),
            }))

        logger.info("Discharge %s reversed: %s gal restored to assignment %s",
                    vale_number, amount, assignment.id)
        await EventService.publish_all(events)
        return assignment

    @staticmethod
    async def get_assignment_summary(
        db: AsyncSession,
        assignment_id: int,
        caller: Optional[Caller] = None,
    ) -> AssignmentSummary:
        """Read-only balance view, retried once on a transient store error."""
        summary = await retry_read_once(ReconciliationService._load_summary, db, assignment_id)
        if caller is not None:
            caller.require_owner(summary.driver_id)
        return summary

    @staticmethod
    async def _load_summary(db: AsyncSession, assignment_id: int) -> AssignmentSummary:
        assignment = await get_assignment(db, assignment_id)
        client_assignments = await list_client_assignments(db, assignment_id)
        discharged, count = (await db.execute(
            select(func.coalesce(func.sum(Discharge.total_discharged), 0), func.count(Discharge.id))
            .where(Discharge.assignment_id == assignment_id)
        )).one()
        return AssignmentSummary(
            assignment_id=assignment.id,
            truck_id=assignment.truck_id,
            driver_id=assignment.driver_id,
            fuel_type=assignment.fuel_type,
            total_loaded=assignment.total_loaded,
            total_remaining=assignment.total_remaining,
            total_discharged=to_decimal(discharged),
            total_allocated=sum((ca.allocated_quantity for ca in client_assignments), Decimal("0")),
            discharge_count=count,
            phase=AssignmentStateMachine.phase_of(assignment, client_assignments),
            is_completed=assignment.is_completed,
            unresolved_customer_ids=unresolved_customer_ids(client_assignments),
        )

    @staticmethod
    async def _get_discharge(db: AsyncSession, discharge_id: int) -> Discharge:
        discharge = await db.get(Discharge, discharge_id, populate_existing=True)
        if not discharge:
            raise ResourceNotFoundError("Discharge", discharge_id)
        return discharge

    @staticmethod
    async def _apply_decrement(
        db: AsyncSession,
        assignment: Assignment,
        amount: Decimal,
        require_open: bool = True,
    ) -> None:
        """
        Subtract amount from total_remaining iff the balance still covers it.

        A negative amount gives fuel back, bounded by total_loaded.

        Raises:
            ConcurrencyConflictError: Zero rows matched
        """
        conditions = [
            Assignment.id == assignment.id,
            Assignment.total_remaining >= amount,
            Assignment.total_remaining - amount <= Assignment.total_loaded,
        ]
        if require_open:
            conditions.append(Assignment.is_completed.is_(False))

        result = await db.execute(
            update(Assignment)
            .where(*conditions)
            .values(total_remaining=Assignment.total_remaining - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Conditional decrement of %s gal on assignment %s lost a race", amount, assignment.id)
            raise ConcurrencyConflictError("assignment", assignment.id)
        await db.refresh(assignment)

    @staticmethod
    async def _deliver_to_allocation(
        db: AsyncSession,
        allocation: ClientAssignment,
        amount: Decimal,
        now: datetime,
    ) -> None:
        """
        Deliver amount against an allocation iff it still covers it.

        The first delivery resolves the allocation; later ones keep it
        COMPLETED and are bounded by the same remaining_quantity.

        Raises:
            ConcurrencyConflictError: Zero rows matched
        """
        result = await db.execute(
            update(ClientAssignment)
            .where(
                ClientAssignment.id == allocation.id,
                ClientAssignment.status.in_(DELIVERABLE_CLIENT_STATUSES),
                ClientAssignment.remaining_quantity >= amount,
            )
            .values(
                delivered_quantity=ClientAssignment.delivered_quantity + amount,
                remaining_quantity=ClientAssignment.remaining_quantity - amount,
                status=ClientAssignmentStatus.COMPLETED,
                completed_at=func.coalesce(ClientAssignment.completed_at, now),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Delivery of %s gal to client assignment %s lost a race", amount, allocation.id)
            raise ConcurrencyConflictError("client_assignment", allocation.id)
        await db.refresh(allocation)

    @staticmethod
    async def _adjust_allocation(
        db: AsyncSession,
        allocation: ClientAssignment,
        difference: Decimal,
        reopen: bool = False,
    ) -> None:
        """
        Shift a COMPLETED allocation's delivered quantity by difference.

        delivered_quantity is clamped at zero and may never exceed
        allocated_quantity. reopen moves the allocation back to PENDING.

        Raises:
            ConcurrencyConflictError: Zero rows matched
        """
        shifted = ClientAssignment.delivered_quantity + difference
        delivered = case((shifted < 0, 0), else_=shifted)
        values = {
            "delivered_quantity": delivered,
            "remaining_quantity": ClientAssignment.allocated_quantity - delivered,
        }
        if reopen:
            values["status"] = ClientAssignmentStatus.PENDING
            values["completed_at"] = None

        result = await db.execute(
            update(ClientAssignment)
            .where(
                ClientAssignment.id == allocation.id,
                ClientAssignment.status == ClientAssignmentStatus.COMPLETED,
                shifted <= ClientAssignment.allocated_quantity,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Adjustment of %s gal on client assignment %s lost a race", difference, allocation.id)
            raise ConcurrencyConflictError("client_assignment", allocation.id)
        await db.refresh(allocation)

    @staticmethod
    def _apply_meter_check(discharge: Discharge, events: List[DomainEvent]) -> None:
        if discharge.marker_start is None or discharge.marker_end is None:
            return
        check = FuelLedger.cross_check_meter_reading(
            discharge.total_discharged,
            discharge.marker_start,
            discharge.marker_end,
            settings.meter_tolerance_ratio,
        )
        discharge.real_quantity = check.computed
        discharge.meter_delta = check.delta
        discharge.within_tolerance = check.within_tolerance
        if not check.within_tolerance:
            logger.warning(
                "Meter discrepancy on %s: declared %s gal, metered %s gal, delta %s > tolerance %s",
                discharge.vale_number, discharge.total_discharged, check.computed, check.delta, check.tolerance,
            )
            events.append(DomainEvent(EventType.METER_DISCREPANCY, {
                "vale_number": discharge.vale_number,
                "assignment_id": discharge.assignment_id,
                "declared": str(discharge.total_discharged),
                "computed": str(check.computed),
                "delta": str(check.delta),
                "tolerance": str(check.tolerance),
            }))
