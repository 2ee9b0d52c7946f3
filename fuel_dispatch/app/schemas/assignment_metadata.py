"""
Assignment metadata schemas.

Records are returned as one list discriminated by `kind`.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from fuel_dispatch.app.models.fuel_enums import TripStatus


class TripEndRequest(BaseModel):
    total_distance_km: Optional[Decimal] = Field(None, ge=0)


class StageDocumentRequest(BaseModel):
    photo_urls: List[str] = Field(default_factory=list, max_length=20)
    observations: Optional[str] = Field(None, max_length=2000)


class DeliveryDetailCreate(BaseModel):
    customer_id: int
    discharge_id: Optional[int] = None
    observations: Optional[str] = Field(None, max_length=2000)


class TripInfoOut(BaseModel):
    kind: Literal["trip"] = "trip"
    id: int
    driver_id: int
    status: TripStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    total_distance_km: Optional[Decimal] = None

    class Config:
        from_attributes = True


class StageDocumentationOut(BaseModel):
    kind: Literal["stage"] = "stage"
    id: int
    stage: str
    photo_urls: List[str]
    observations: Optional[str] = None
    documented_at: datetime
    documented_by: int

    class Config:
        from_attributes = True


class DeliveryDetailOut(BaseModel):
    kind: Literal["delivery"] = "delivery"
    id: int
    customer_id: int
    discharge_id: Optional[int] = None
    observations: Optional[str] = None
    recorded_at: datetime
    recorded_by: int

    class Config:
        from_attributes = True


MetadataRecord = Annotated[
    Union[TripInfoOut, StageDocumentationOut, DeliveryDetailOut],
    Field(discriminator="kind"),
]


class AssignmentMetadataResponse(BaseModel):
    assignment_id: int
    records: List[MetadataRecord]
