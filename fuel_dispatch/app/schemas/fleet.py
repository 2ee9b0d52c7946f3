"""
Fleet sweep schemas.
"""

from pydantic import BaseModel
from typing import List


class SweepResponse(BaseModel):
    assignments_expired: int
    client_assignments_expired: int
    discharges_finalized: int
    assignment_ids: List[int]

    class Config:
        from_attributes = True


class FleetRefreshResponse(BaseModel):
    trucks_updated: int
    assignments_reopened: int

    class Config:
        from_attributes = True
