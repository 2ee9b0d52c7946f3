"""
Trip, stage and delivery metadata attached to assignments.
"""

import pytest
from decimal import Decimal

from sqlalchemy import select

from fuel_dispatch.app.core.exceptions import (
    InsufficientPermissionsError,
    InvalidStateError,
    ResourceNotFoundError,
)
from fuel_dispatch.app.domain.fuel.reconciliation_service import ReconciliationService
from fuel_dispatch.app.models.assignment_metadata import DeliveryDetail, StageDocumentation
from fuel_dispatch.app.models.fuel_enums import TripStatus
from fuel_dispatch.app.services.assignment_metadata import AssignmentMetadataService


async def test_trip_lifecycle(db_session, fleet, open_assignment):
    trip = await AssignmentMetadataService.start_trip(db_session, fleet.operator_caller, open_assignment.id)
    assert trip.status == TripStatus.IN_PROGRESS
    assert trip.driver_id == fleet.operator.id
    assert trip.ended_at is None

    with pytest.raises(InvalidStateError):
        await AssignmentMetadataService.start_trip(db_session, fleet.operator_caller, open_assignment.id)

    trip = await AssignmentMetadataService.end_trip(
        db_session, fleet.operator_caller, open_assignment.id, total_distance_km=Decimal("42.5")
    )
    assert trip.status == TripStatus.COMPLETED
    assert trip.ended_at is not None
    assert trip.total_distance_km == Decimal("42.5")

    with pytest.raises(InvalidStateError):
        await AssignmentMetadataService.end_trip(db_session, fleet.operator_caller, open_assignment.id)


async def test_end_trip_requires_started_trip(db_session, fleet, open_assignment):
    with pytest.raises(ResourceNotFoundError):
        await AssignmentMetadataService.end_trip(db_session, fleet.operator_caller, open_assignment.id)


async def test_negative_distance_is_rejected(db_session, fleet, open_assignment):
    await AssignmentMetadataService.start_trip(db_session, fleet.operator_caller, open_assignment.id)
    with pytest.raises(InvalidStateError):
        await AssignmentMetadataService.end_trip(
            db_session, fleet.operator_caller, open_assignment.id, total_distance_km=Decimal("-1")
        )


async def test_trip_cannot_start_on_completed_assignment(db_session, fleet, open_assignment):
    await ReconciliationService.record_discharge(
        db_session, fleet.operator_caller, open_assignment.id, fleet.customers[0].id, Decimal("1000")
    )
    with pytest.raises(InvalidStateError):
        await AssignmentMetadataService.start_trip(db_session, fleet.operator_caller, open_assignment.id)


async def test_stage_documentation_is_replaced(db_session, fleet, open_assignment):
    await AssignmentMetadataService.document_stage(
        db_session, fleet.operator_caller, open_assignment.id, "Loading",
        photo_urls=["https://cdn.example.com/a.jpg"], observations="Seals intact",
    )
    record = await AssignmentMetadataService.document_stage(
        db_session, fleet.operator_caller, open_assignment.id, "loading ",
        photo_urls=["https://cdn.example.com/b.jpg", "https://cdn.example.com/c.jpg"],
    )

    assert record.stage == "loading"
    assert record.photo_urls == ["https://cdn.example.com/b.jpg", "https://cdn.example.com/c.jpg"]
    assert record.observations is None

    stages = (await db_session.execute(
        select(StageDocumentation).where(StageDocumentation.assignment_id == open_assignment.id)
    )).scalars().all()
    assert len(stages) == 1


async def test_delivery_detail_links_discharge(db_session, fleet, open_assignment):
    discharge = await ReconciliationService.record_discharge(
        db_session, fleet.operator_caller, open_assignment.id, fleet.customers[0].id, Decimal("200")
    )
    detail = await AssignmentMetadataService.add_delivery_detail(
        db_session, fleet.operator_caller, open_assignment.id,
        customer_id=fleet.customers[0].id, discharge_id=discharge.id, observations="Tank 2",
    )
    assert detail.discharge_id == discharge.id
    assert detail.recorded_by == fleet.operator.id

    # Reversing the discharge keeps the note but drops the link
    await ReconciliationService.reverse_discharge(db_session, fleet.admin_caller, discharge.id)
    detail = await db_session.get(DeliveryDetail, detail.id, populate_existing=True)
    assert detail.discharge_id is None
    assert detail.observations == "Tank 2"


async def test_delivery_detail_rejects_foreign_discharge(db_session, fleet, open_assignment):
    other = await ReconciliationService.create_assignment(
        db_session, fleet.admin_caller, fleet.spare_truck.id, fleet.other_operator.id, Decimal("500")
    )
    foreign = await ReconciliationService.record_discharge(
        db_session, fleet.other_operator_caller, other.id, fleet.customers[1].id, Decimal("50")
    )
    with pytest.raises(ResourceNotFoundError):
        await AssignmentMetadataService.add_delivery_detail(
            db_session, fleet.operator_caller, open_assignment.id,
            customer_id=fleet.customers[1].id, discharge_id=foreign.id,
        )


async def test_metadata_writes_require_ownership(db_session, fleet, open_assignment):
    with pytest.raises(InsufficientPermissionsError):
        await AssignmentMetadataService.start_trip(db_session, fleet.other_operator_caller, open_assignment.id)
    with pytest.raises(InsufficientPermissionsError):
        await AssignmentMetadataService.document_stage(
            db_session, fleet.other_operator_caller, open_assignment.id, "arrival"
        )


async def test_metadata_endpoints(client, fleet, open_assignment, headers_for):
    base = f"/v1/assignments/{open_assignment.id}"
    headers = headers_for(fleet.operator)

    response = await client.post(f"{base}/trip/start", headers=headers)
    assert response.status_code == 201
    assert response.json()["kind"] == "trip"

    response = await client.post(f"{base}/trip/start", headers=headers)
    assert response.status_code == 409

    response = await client.put(
        f"{base}/stages/loading", json={"photo_urls": ["https://cdn.example.com/1.jpg"]}, headers=headers
    )
    assert response.status_code == 200
    response = await client.put(
        f"{base}/stages/arrival", json={"observations": "Gate 3"}, headers=headers
    )
    assert response.status_code == 200

    response = await client.post(
        f"{base}/deliveries", json={"customer_id": fleet.customers[2].id}, headers=headers
    )
    assert response.status_code == 201
    assert response.json()["discharge_id"] is None

    response = await client.post(
        f"{base}/trip/end", json={"total_distance_km": "18.3"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "COMPLETED"

    response = await client.get(f"{base}/metadata", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["assignment_id"] == open_assignment.id
    assert [r["kind"] for r in body["records"]] == ["trip", "stage", "stage", "delivery"]
    assert [r["stage"] for r in body["records"] if r["kind"] == "stage"] == ["loading", "arrival"]

    response = await client.get(f"{base}/metadata", headers=headers_for(fleet.other_operator))
    assert response.status_code == 403
