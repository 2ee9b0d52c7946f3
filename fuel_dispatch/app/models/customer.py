"""
Customer database model.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from fuel_dispatch.app.db.session import Base, utcnow


class Customer(Base):
    """A fuel customer that receives deliveries."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    company_name = Column(String(255), nullable=False)
    ruc = Column(String(20), unique=True, nullable=False, index=True)
    address = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Customer(id={self.id}, ruc='{self.ruc}')>"
