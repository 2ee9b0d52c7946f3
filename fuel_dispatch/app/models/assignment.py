"""
Assignment database model.

One truck-load of fuel handed to one driver for a work session.
"""

from sqlalchemy import (
    Column, Integer, Numeric, Boolean, ForeignKey, DateTime, Enum, Text, Index, CheckConstraint, text
)
from fuel_dispatch.app.db.session import Base, utcnow
from fuel_dispatch.app.models.fuel_enums import FuelType


class Assignment(Base):
    """
    Assignment model.

    total_loaded is fixed at creation; total_remaining only moves through
    conditional updates issued by the reconciliation service.
    """
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    truck_id = Column(Integer, ForeignKey('trucks.id'), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    fuel_type = Column(Enum(FuelType), nullable=False)

    # Balances (gallons)
    total_loaded = Column(Numeric(12, 2), nullable=False)
    total_remaining = Column(Numeric(12, 2), nullable=False)

    # Lifecycle
    is_completed = Column(Boolean, default=False, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("total_remaining >= 0", name="ck_assignments_remaining_non_negative"),
        CheckConstraint("total_remaining <= total_loaded", name="ck_assignments_remaining_within_load"),
        # At most one open assignment per truck
        Index(
            "uq_assignments_open_truck", "truck_id", unique=True,
            postgresql_where=text("is_completed = false"),
            sqlite_where=text("is_completed = 0"),
        ),
    )

    def __repr__(self):
        return f"<Assignment(id={self.id}, truck_id={self.truck_id}, remaining={self.total_remaining})>"
