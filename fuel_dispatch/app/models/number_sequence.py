"""
Number Sequence database model.

Durable counter behind vale and dispatch numbers, one row per (prefix, year).
"""

from sqlalchemy import Column, Integer, String, DateTime
from fuel_dispatch.app.db.session import Base, utcnow


class NumberSequence(Base):
    """Atomic counter row. last_number is only changed by a single UPDATE ... + 1."""
    __tablename__ = "number_sequences"

    prefix = Column(String(10), primary_key=True)
    year = Column(Integer, primary_key=True)
    last_number = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<NumberSequence(prefix='{self.prefix}', year={self.year}, last={self.last_number})>"
