"""
Centralized Test Configuration.
"""

import json
import pytest
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from fuel_dispatch.app.main import app
from fuel_dispatch.app.db.session import get_db, Base
from fuel_dispatch.app.core.jwt import create_access_token
from fuel_dispatch.app.core.reliability import events_circuit_breaker
import fuel_dispatch.app.core.redis_client as redis_client_module
from fuel_dispatch.app.domain.fuel.capabilities import Caller
from fuel_dispatch.app.domain.fuel.reconciliation_service import ReconciliationService
from fuel_dispatch.app.models.customer import Customer
from fuel_dispatch.app.models.enums import UserRole, UserState
from fuel_dispatch.app.models.fuel_enums import FuelType, TruckState
from fuel_dispatch.app.models.truck import Truck
from fuel_dispatch.app.models.user import User
from fuel_dispatch.app.services.events import clear_listeners

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.published = []
        self._closed = False

    async def ping(self):
        return not self._closed

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1

    async def flushdb(self):
        self.store = {}
        self.published = []

    async def aclose(self):
        self._closed = True
        self.store = {}


@dataclass
class Fleet:
    """Users, trucks and customers seeded for a test."""
    admin: User
    super_admin: User
    operator: User
    other_operator: User
    truck: Truck
    spare_truck: Truck
    customers: List[Customer] = field(default_factory=list)

    @property
    def admin_caller(self) -> Caller:
        return Caller(user_id=self.admin.id, role=UserRole.ADMIN)

    @property
    def super_admin_caller(self) -> Caller:
        return Caller(user_id=self.super_admin.id, role=UserRole.SUPER_ADMIN)

    @property
    def operator_caller(self) -> Caller:
        return Caller(user_id=self.operator.id, role=UserRole.OPERATOR)

    @property
    def other_operator_caller(self) -> Caller:
        return Caller(user_id=self.other_operator.id, role=UserRole.OPERATOR)


async def seed_fleet(session: AsyncSession) -> Fleet:
    admin = User(username="admin", full_name="Admin", role=UserRole.ADMIN)
    super_admin = User(username="root", full_name="Super Admin", role=UserRole.SUPER_ADMIN)
    operator = User(username="jperez", full_name="Juan Perez", role=UserRole.OPERATOR, state=UserState.ACTIVE)
    other_operator = User(username="mrojas", full_name="Maria Rojas", role=UserRole.OPERATOR, state=UserState.ACTIVE)
    truck = Truck(plate="ABC-123", fuel_type=FuelType.DIESEL_B5, capacity_gal=Decimal("5000"),
                  last_remaining=Decimal("0"), state=TruckState.ACTIVE)
    spare_truck = Truck(plate="XYZ-789", fuel_type=FuelType.GASOLINA_90, capacity_gal=Decimal("3000"),
                        last_remaining=Decimal("0"), state=TruckState.ACTIVE)
    customers = [
        Customer(company_name="Grifo Norte SAC", ruc="20100000001"),
        Customer(company_name="Minera Sur SA", ruc="20100000002"),
        Customer(company_name="Transportes Lima EIRL", ruc="20100000003"),
    ]
    session.add_all([admin, super_admin, operator, other_operator, truck, spare_truck, *customers])
    await session.commit()
    # Detached copies survive the expire-all of a rolled back unit of work
    session.expunge_all()
    return Fleet(
        admin=admin,
        super_admin=super_admin,
        operator=operator,
        other_operator=other_operator,
        truck=truck,
        spare_truck=spare_truck,
        customers=customers,
    )


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": user.username, "user_id": user.id, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    events_circuit_breaker.reset_state()
    clear_listeners()

    yield

    clear_listeners()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def fleet(db_session) -> Fleet:
    return await seed_fleet(db_session)


@pytest.fixture
def headers_for():
    """Bearer headers for a seeded user."""
    return auth_headers


@pytest.fixture
def fleet_seeder():
    """Seed a fleet through any session, e.g. one from file_session_factory."""
    return seed_fleet


@pytest.fixture
def published(redis_client_session):
    """Event types published to the Redis channel during the test."""
    def _types():
        return [json.loads(message)["event_type"] for _, message in redis_client_session.published]
    return _types


@pytest.fixture
async def open_assignment(db_session, fleet):
    """A 1000 gal assignment on fleet.truck driven by fleet.operator."""
    assignment = await ReconciliationService.create_assignment(
        db_session,
        fleet.admin_caller,
        truck_id=fleet.truck.id,
        driver_id=fleet.operator.id,
        total_loaded=Decimal("1000"),
    )
    db_session.expunge(assignment)
    return assignment


@pytest.fixture
async def file_session_factory(tmp_path):
    """
    File-backed database for tests that need several real connections.

    The in-memory engine shares a single connection, which would hide races.
    """
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fuel_dispatch.db'}",
        connect_args={"timeout": 30},
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    await file_engine.dispose()
