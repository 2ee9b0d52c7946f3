"""
User database model.

Drivers (operators) and administrators. Credentials are verified by the
external auth provider; this table only tracks role and availability.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from fuel_dispatch.app.db.session import Base, utcnow
from fuel_dispatch.app.models.enums import UserRole, UserState


class User(Base):
    """User model for role checks and driver availability."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    role = Column(Enum(UserRole), default=UserRole.OPERATOR, nullable=False)
    state = Column(Enum(UserState), default=UserState.ACTIVE, nullable=False, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role='{self.role.value}')>"
