"""
Assignment lifecycle: completion, stale sweep and fleet state refresh.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select, update

from fuel_dispatch.app.core.exceptions import (
    IncompleteDeliveriesError,
    InsufficientPermissionsError,
    InvalidStateError,
)
from fuel_dispatch.app.db.session import utcnow
from fuel_dispatch.app.domain.fuel.capabilities import Caller, Capability
from fuel_dispatch.app.domain.fuel.reconciliation_service import ReconciliationService
from fuel_dispatch.app.domain.fuel.state_machine import AssignmentStateMachine
from fuel_dispatch.app.models.assignment import Assignment
from fuel_dispatch.app.models.client_assignment import ClientAssignment
from fuel_dispatch.app.models.discharge import Discharge
from fuel_dispatch.app.models.enums import UserRole, UserState
from fuel_dispatch.app.models.fuel_enums import (
    AssignmentPhase,
    ClientAssignmentStatus,
    DischargeStatus,
    TruckState,
)
from fuel_dispatch.app.models.truck import Truck
from fuel_dispatch.app.models.user import User


async def fresh(db, model, pk):
    return await db.get(model, pk, populate_existing=True)


async def allocations_of(db, assignment_id):
    result = await db.execute(
        select(ClientAssignment)
        .where(ClientAssignment.assignment_id == assignment_id)
        .order_by(ClientAssignment.customer_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def set_truck_state(db, truck_id, state):
    await db.execute(update(Truck).where(Truck.id == truck_id).values(state=state))
    await db.commit()


# Capabilities

def test_operator_capabilities():
    operator = Caller(user_id=7, role=UserRole.OPERATOR)
    assert operator.can(Capability.RECORD_DISCHARGE)
    assert operator.can(Capability.RUN_SWEEPS)
    assert not operator.can(Capability.OVERRIDE_STATE)
    assert not operator.can(Capability.CREATE_ASSIGNMENT)

    with pytest.raises(InsufficientPermissionsError) as exc_info:
        operator.require(Capability.CORRECT_DISCHARGE)
    assert exc_info.value.details["capability"] == "CORRECT_DISCHARGE"


def test_ownership_rules():
    operator = Caller(user_id=7, role=UserRole.OPERATOR)
    admin = Caller(user_id=1, role=UserRole.ADMIN)

    operator.require_owner(7)
    admin.require_owner(7)
    with pytest.raises(InsufficientPermissionsError):
        operator.require_owner(8)


# Phase derivation

def test_phase_of_unsaved_objects():
    assignment = Assignment(total_loaded=Decimal("500"), total_remaining=Decimal("0"), is_completed=False)
    pending = ClientAssignment(customer_id=1, status=ClientAssignmentStatus.PENDING)
    delivered = ClientAssignment(customer_id=2, status=ClientAssignmentStatus.COMPLETED)
    expired = ClientAssignment(customer_id=3, status=ClientAssignmentStatus.EXPIRED)

    assert AssignmentStateMachine.phase_of(assignment, [delivered, pending]) == AssignmentPhase.OPEN
    assert AssignmentStateMachine.phase_of(assignment, [delivered, expired]) == AssignmentPhase.COMPLETING
    assert AssignmentStateMachine.phase_of(assignment, []) == AssignmentPhase.COMPLETING

    assignment.total_remaining = Decimal("10")
    assert AssignmentStateMachine.phase_of(assignment, [delivered]) == AssignmentPhase.OPEN

    assignment.is_completed = True
    assert AssignmentStateMachine.phase_of(assignment, [pending]) == AssignmentPhase.COMPLETED


# Explicit completion

async def test_complete_with_fuel_remaining_is_rejected(db_session, fleet, open_assignment):
    await ReconciliationService.allocate_to_client(
        db_session, fleet.admin_caller, open_assignment.id, fleet.customers[0].id, Decimal("400")
    )
    with pytest.raises(IncompleteDeliveriesError) as exc_info:
        await AssignmentStateMachine.complete_assignment(db_session, open_assignment.id, fleet.operator_caller)

    details = exc_info.value.details
    assert details["unresolved_customer_ids"] == [fleet.customers[0].id]
    assert Decimal(details["remaining"]) == Decimal("1000")

    assignment = await fresh(db_session, Assignment, open_assignment.id)
    assert assignment.is_completed is False


async def test_override_completion_expires_pending_allocations(db_session, fleet, open_assignment, published):
    await ReconciliationService.allocate_to_client(
        db_session, fleet.admin_caller, open_assignment.id, fleet.customers[0].id, Decimal("400")
    )
    await ReconciliationService.record_discharge(
        db_session, fleet.operator_caller, open_assignment.id, fleet.customers[1].id, Decimal("150")
    )

    completed = await AssignmentStateMachine.complete_assignment(
        db_session, open_assignment.id, fleet.admin_caller, override=True
    )
    assert completed.is_completed is True
    assert completed.completed_at is not None
    assert completed.total_remaining == Decimal("850")

    (allocation,) = await allocations_of(db_session, open_assignment.id)
    assert allocation.status == ClientAssignmentStatus.EXPIRED
    assert allocation.remaining_quantity == Decimal("0")

    truck = await fresh(db_session, Truck, fleet.truck.id)
    driver = await fresh(db_session, User, fleet.operator.id)
    assert truck.state == TruckState.ACTIVE
    assert driver.state == UserState.ACTIVE
    assert "ASSIGNMENT_COMPLETED" in published()


async def test_operator_cannot_override(db_session, fleet, open_assignment):
    with pytest.raises(InsufficientPermissionsError):
        await AssignmentStateMachine.complete_assignment(
            db_session, open_assignment.id, fleet.operator_caller, override=True
        )


async def test_operator_cannot_complete_foreign_assignment(db_session, fleet, open_assignment):
    with pytest.raises(InsufficientPermissionsError):
        await AssignmentStateMachine.complete_assignment(
            db_session, open_assignment.id, fleet.other_operator_caller
        )


async def test_complete_twice_is_rejected(db_session, fleet, open_assignment):
    await AssignmentStateMachine.complete_assignment(
        db_session, open_assignment.id, fleet.admin_caller, override=True
    )
    with pytest.raises(InvalidStateError):
        await AssignmentStateMachine.complete_assignment(
            db_session, open_assignment.id, fleet.admin_caller, override=True
        )


async def test_override_completion_keeps_admin_truck_state(db_session, fleet, open_assignment):
    await set_truck_state(db_session, fleet.truck.id, TruckState.MAINTENANCE)
    await AssignmentStateMachine.complete_assignment(
        db_session, open_assignment.id, fleet.admin_caller, override=True
    )
    truck = await fresh(db_session, Truck, fleet.truck.id)
    assert truck.state == TruckState.MAINTENANCE


# Stale sweep

async def test_stale_sweep_expires_assignment(db_session, fleet, open_assignment, published):
    await ReconciliationService.allocate_to_client(
        db_session, fleet.admin_caller, open_assignment.id, fleet.customers[0].id, Decimal("300")
    )
    await ReconciliationService.allocate_to_client(
        db_session, fleet.admin_caller, open_assignment.id, fleet.customers[1].id, Decimal("200")
    )
    recorded = await ReconciliationService.record_discharge(
        db_session, fleet.operator_caller, open_assignment.id, fleet.customers[0].id, Decimal("250")
    )

    later = utcnow() + timedelta(hours=25)
    report = await AssignmentStateMachine.sweep_stale_assignments(db_session, now=later)

    assert report.assignments_expired == 1
    assert report.client_assignments_expired == 1
    assert report.discharges_finalized == 1
    assert report.assignment_ids == [open_assignment.id]

    assignment = await fresh(db_session, Assignment, open_assignment.id)
    assert assignment.is_completed is True
    assert assignment.completed_at == later
    # Fuel still on board is not discharged by the sweep
    assert assignment.total_remaining == Decimal("750")

    delivered, expired = await allocations_of(db_session, open_assignment.id)
    assert delivered.status == ClientAssignmentStatus.COMPLETED
    assert expired.status == ClientAssignmentStatus.EXPIRED
    assert expired.delivered_quantity == Decimal("0")
    assert expired.remaining_quantity == Decimal("0")

    discharge = await fresh(db_session, Discharge, recorded.id)
    assert discharge.status == DischargeStatus.FINALIZED
    assert discharge.end_time is not None

    truck = await fresh(db_session, Truck, fleet.truck.id)
    driver = await fresh(db_session, User, fleet.operator.id)
    assert truck.state == TruckState.ACTIVE
    assert driver.state == UserState.ACTIVE
    assert "ASSIGNMENT_EXPIRED" in published()


async def test_stale_sweep_is_idempotent(db_session, fleet, open_assignment):
    later = utcnow() + timedelta(hours=25)
    first = await AssignmentStateMachine.sweep_stale_assignments(db_session, now=later)
    second = await AssignmentStateMachine.sweep_stale_assignments(db_session, now=later)

    assert first.assignments_expired == 1
    assert second.assignments_expired == 0
    assert second.assignment_ids == []


async def test_stale_sweep_ignores_recent_assignments(db_session, fleet, open_assignment):
    report = await AssignmentStateMachine.sweep_stale_assignments(db_session)
    assert report.assignments_expired == 0

    assignment = await fresh(db_session, Assignment, open_assignment.id)
    assert assignment.is_completed is False


async def test_stale_sweep_scoped_to_driver(db_session, fleet, open_assignment):
    later = utcnow() + timedelta(hours=25)
    report = await AssignmentStateMachine.sweep_stale_assignments(
        db_session, now=later, driver_id=fleet.other_operator.id
    )
    assert report.assignments_expired == 0

    report = await AssignmentStateMachine.sweep_stale_assignments(
        db_session, now=later, driver_id=fleet.operator.id
    )
    assert report.assignments_expired == 1


# Fleet refresh

async def test_refresh_restores_open_assignment_truck(db_session, fleet, open_assignment):
    await set_truck_state(db_session, fleet.truck.id, TruckState.ACTIVE)

    report = await AssignmentStateMachine.refresh_fleet_state(db_session)

    assert report.trucks_updated == 1
    assert report.assignments_reopened == 0
    truck = await fresh(db_session, Truck, fleet.truck.id)
    assert truck.state == TruckState.ASSIGNED


async def test_refresh_releases_truck_of_completed_assignment(db_session, fleet, open_assignment):
    await ReconciliationService.record_discharge(
        db_session, fleet.operator_caller, open_assignment.id, fleet.customers[0].id, Decimal("1000")
    )
    await set_truck_state(db_session, fleet.truck.id, TruckState.UNLOADING)

    report = await AssignmentStateMachine.refresh_fleet_state(db_session)

    assert report.trucks_updated == 1
    truck = await fresh(db_session, Truck, fleet.truck.id)
    assert truck.state == TruckState.ACTIVE


async def test_refresh_reopens_completed_assignment_with_pending_allocation(db_session, fleet, open_assignment, published):
    await ReconciliationService.allocate_to_client(
        db_session, fleet.admin_caller, open_assignment.id, fleet.customers[0].id, Decimal("200")
    )
    await db_session.execute(
        update(Assignment)
        .where(Assignment.id == open_assignment.id)
        .values(is_completed=True, completed_at=utcnow())
    )
    await db_session.execute(update(User).where(User.id == fleet.operator.id).values(state=UserState.ACTIVE))
    await set_truck_state(db_session, fleet.truck.id, TruckState.ACTIVE)

    report = await AssignmentStateMachine.refresh_fleet_state(db_session)

    assert report.assignments_reopened == 1
    assert report.trucks_updated == 1

    assignment = await fresh(db_session, Assignment, open_assignment.id)
    truck = await fresh(db_session, Truck, fleet.truck.id)
    driver = await fresh(db_session, User, fleet.operator.id)
    assert assignment.is_completed is False
    assert assignment.completed_at is None
    assert truck.state == TruckState.ASSIGNED
    assert driver.state == UserState.ASSIGNED
    assert "ASSIGNMENT_REOPENED" in published()


async def test_refresh_leaves_admin_states_alone(db_session, fleet, open_assignment):
    await ReconciliationService.record_discharge(
        db_session, fleet.operator_caller, open_assignment.id, fleet.customers[0].id, Decimal("1000")
    )
    await set_truck_state(db_session, fleet.truck.id, TruckState.MAINTENANCE)

    report = await AssignmentStateMachine.refresh_fleet_state(db_session)

    assert report.trucks_updated == 0
    truck = await fresh(db_session, Truck, fleet.truck.id)
    assert truck.state == TruckState.MAINTENANCE


async def test_refresh_is_idempotent(db_session, fleet, open_assignment):
    await set_truck_state(db_session, fleet.truck.id, TruckState.IN_TRANSIT)

    first = await AssignmentStateMachine.refresh_fleet_state(db_session)
    second = await AssignmentStateMachine.refresh_fleet_state(db_session)

    assert first.trucks_updated == 1
    assert second.trucks_updated == 0
    assert second.assignments_reopened == 0
