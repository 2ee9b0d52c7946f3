"""
Discharge (vale) schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fuel_dispatch.app.models.fuel_enums import DischargeStatus


class MeterReadingsIn(BaseModel):
    """Dispenser meter readings. Meters count down while dispensing."""
    marker_start: Optional[Decimal] = None
    marker_end: Optional[Decimal] = None


class DischargeCreate(BaseModel):
    customer_id: int
    amount: Decimal = Field(..., description="Declared gallons delivered")
    meter_readings: Optional[MeterReadingsIn] = None
    notes: Optional[str] = Field(None, max_length=2000)


class DischargeFinalize(BaseModel):
    marker_start: Decimal
    marker_end: Decimal
    real_quantity: Optional[Decimal] = None


class DischargeCorrection(BaseModel):
    total_discharged: Decimal


class DischargeResponse(BaseModel):
    id: int
    vale_number: str
    assignment_id: int
    customer_id: int
    total_discharged: Decimal
    status: DischargeStatus
    marker_start: Optional[Decimal] = None
    marker_end: Optional[Decimal] = None
    real_quantity: Optional[Decimal] = None
    meter_delta: Optional[Decimal] = None
    within_tolerance: Optional[bool] = None
    notes: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None

    class Config:
        from_attributes = True
