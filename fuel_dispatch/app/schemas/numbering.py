"""
Numbering schemas.
"""

from pydantic import BaseModel
from decimal import Decimal
from typing import Optional


class NumberResponse(BaseModel):
    identifier: str


class NumberStatsResponse(BaseModel):
    prefix: str
    year: int
    total_issued: int
    last_identifier: Optional[str] = None
    average_per_month: Decimal

    class Config:
        from_attributes = True


class NumberValidationResponse(BaseModel):
    identifier: str
    is_valid: bool
    prefix: Optional[str] = None
    sequence: Optional[int] = None
    year: Optional[int] = None
