"""
Client Assignment database model.

A planned allocation of part of an assignment's fuel to one customer.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Enum, UniqueConstraint, CheckConstraint
from fuel_dispatch.app.db.session import Base, utcnow
from fuel_dispatch.app.models.fuel_enums import ClientAssignmentStatus


class ClientAssignment(Base):
    """
    Client Assignment model.

    Invariant: delivered_quantity + remaining_quantity == allocated_quantity
    while PENDING or COMPLETED. EXPIRED rows are zeroed by the stale sweep.
    """
    __tablename__ = "client_assignments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    assignment_id = Column(Integer, ForeignKey('assignments.id'), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)

    allocated_quantity = Column(Numeric(12, 2), nullable=False)
    delivered_quantity = Column(Numeric(12, 2), nullable=False, default=0)
    remaining_quantity = Column(Numeric(12, 2), nullable=False)

    status = Column(Enum(ClientAssignmentStatus), default=ClientAssignmentStatus.PENDING, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('assignment_id', 'customer_id', name='uq_client_assignments_customer'),
        CheckConstraint("allocated_quantity > 0", name="ck_client_assignments_allocated_positive"),
        CheckConstraint("delivered_quantity <= allocated_quantity", name="ck_client_assignments_delivered_bound"),
    )

    def __repr__(self):
        return (
            f"<ClientAssignment(id={self.id}, assignment_id={self.assignment_id}, "
            f"customer_id={self.customer_id}, status='{self.status.value}')>"
        )
