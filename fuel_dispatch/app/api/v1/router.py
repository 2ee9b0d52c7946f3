"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fuel_dispatch.app.api.v1.endpoints import (
    assignments, assignment_metadata, discharges, fleet_ops, numbering
)

router = APIRouter()

# Assignment lifecycle, allocations and discharges
router.include_router(assignments.router)
router.include_router(discharges.router)

# Trip, stage and delivery metadata
router.include_router(assignment_metadata.router)

# Batch reconciliation sweeps
router.include_router(fleet_ops.router)

# Vale and dispatch numbering
router.include_router(numbering.router)
