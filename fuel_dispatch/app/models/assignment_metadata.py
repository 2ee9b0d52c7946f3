"""
Assignment metadata database models.

Typed side tables owned by an assignment: trip info, stage documentation
and per-customer delivery details.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Text, JSON, UniqueConstraint
)
from fuel_dispatch.app.db.session import Base, utcnow
from fuel_dispatch.app.models.fuel_enums import TripStatus


class TripInfo(Base):
    """Trip start/end for an assignment. One row per assignment."""
    __tablename__ = "assignment_trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    assignment_id = Column(Integer, ForeignKey('assignments.id'), nullable=False, unique=True, index=True)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    status = Column(Enum(TripStatus), default=TripStatus.IN_PROGRESS, nullable=False)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    total_distance_km = Column(Numeric(10, 2), nullable=True)


class StageDocumentation(Base):
    """Photos and observations for one named stage (e.g. loading, arrival)."""
    __tablename__ = "assignment_stages"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    assignment_id = Column(Integer, ForeignKey('assignments.id'), nullable=False, index=True)
    stage = Column(String(50), nullable=False)

    photo_urls = Column(JSON, nullable=False, default=list)  # ["https://...", ...]
    observations = Column(Text, nullable=True)

    documented_at = Column(DateTime, default=utcnow, nullable=False)
    documented_by = Column(Integer, ForeignKey('users.id'), nullable=False)

    __table_args__ = (
        UniqueConstraint('assignment_id', 'stage', name='uq_assignment_stages_stage'),
    )


class DeliveryDetail(Base):
    """Free-form delivery observations for one customer stop."""
    __tablename__ = "delivery_details"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    assignment_id = Column(Integer, ForeignKey('assignments.id'), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False)
    discharge_id = Column(Integer, ForeignKey('discharges.id'), nullable=True)

    observations = Column(Text, nullable=True)

    recorded_at = Column(DateTime, default=utcnow, nullable=False)
    recorded_by = Column(Integer, ForeignKey('users.id'), nullable=False)
