"""
Truck database model.

A tanker truck with a fuel capability, a capacity in gallons and the fuel
currently on board (last_remaining).
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, CheckConstraint
from fuel_dispatch.app.db.session import Base, utcnow
from fuel_dispatch.app.models.fuel_enums import FuelType, TruckState


class Truck(Base):
    """
    Truck model.

    state is driven by the assignment lifecycle (ASSIGNED, UNLOADING, ACTIVE)
    and by admin overrides (INACTIVE, MAINTENANCE).
    """
    __tablename__ = "trucks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    plate = Column(String(20), unique=True, nullable=False, index=True)

    fuel_type = Column(Enum(FuelType), nullable=False)
    custom_fuel_name = Column(String(100), nullable=True)  # Only for PERSONALIZADO

    capacity_gal = Column(Numeric(12, 2), nullable=False)
    last_remaining = Column(Numeric(12, 2), nullable=False, default=0)

    state = Column(Enum(TruckState), default=TruckState.ACTIVE, nullable=False, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("last_remaining >= 0", name="ck_trucks_last_remaining_non_negative"),
        CheckConstraint("last_remaining <= capacity_gal", name="ck_trucks_last_remaining_within_capacity"),
    )

    @property
    def fuel_label(self) -> str:
        if self.fuel_type == FuelType.PERSONALIZADO and self.custom_fuel_name:
            return self.custom_fuel_name
        return self.fuel_type.value

    def __repr__(self):
        return f"<Truck(id={self.id}, plate='{self.plate}', state='{self.state.value}')>"
