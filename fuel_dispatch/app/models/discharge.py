"""
Discharge database model.

One actual fuel delivery (a vale) against an assignment for one customer.
"""

from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey, DateTime, Enum, Text, CheckConstraint
from fuel_dispatch.app.db.session import Base, utcnow
from fuel_dispatch.app.models.fuel_enums import DischargeStatus


class Discharge(Base):
    """
    Discharge model.

    marker_start/marker_end are the dispenser meter readings; meter_delta and
    within_tolerance hold the last cross-check against total_discharged.
    Discrepancies are flagged, never rejected.
    """
    __tablename__ = "discharges"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    vale_number = Column(String(20), unique=True, nullable=False, index=True)  # PE-000001-2025

    assignment_id = Column(Integer, ForeignKey('assignments.id'), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    recorded_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    total_discharged = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(DischargeStatus), default=DischargeStatus.PENDING, nullable=False, index=True)

    # Meter cross-check
    marker_start = Column(Numeric(12, 2), nullable=True)
    marker_end = Column(Numeric(12, 2), nullable=True)
    real_quantity = Column(Numeric(12, 2), nullable=True)
    meter_delta = Column(Numeric(12, 2), nullable=True)
    within_tolerance = Column(Boolean, nullable=True)

    notes = Column(Text, nullable=True)

    start_time = Column(DateTime, default=utcnow, nullable=False)
    end_time = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("total_discharged > 0", name="ck_discharges_amount_positive"),
    )

    def __repr__(self):
        return f"<Discharge(id={self.id}, vale='{self.vale_number}', amount={self.total_discharged})>"
