"""
Database seeding script for a development fleet.

Creates an ADMIN, an OPERATOR, a truck and a customer, then prints bearer
tokens for both users. Credentials live with the external auth provider, so
the tokens are signed locally with settings.secret_key.

Run with:
    python -m fuel_dispatch.seed_fleet
"""

import asyncio
from decimal import Decimal

from sqlalchemy import select

from fuel_dispatch.app.core.jwt import create_access_token
from fuel_dispatch.app.db.session import AsyncSessionLocal, Base, engine
from fuel_dispatch.app.models.customer import Customer
from fuel_dispatch.app.models.enums import UserRole
from fuel_dispatch.app.models.fuel_enums import FuelType, TruckState
from fuel_dispatch.app.models.truck import Truck
from fuel_dispatch.app.models.user import User
from fuel_dispatch.app.main import app  # noqa: F401  registers every model


def _token(user: User) -> str:
    return create_access_token({"sub": user.username, "user_id": user.id, "role": user.role.value})


async def seed_fleet():
    """
    Seed the development fleet.

    Creates:
    - 1 ADMIN user
    - 1 OPERATOR (driver)
    - 1 DIESEL_B5 truck, 5000 gal
    - 1 customer
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("Starting fleet seeding...")

        result = await db.execute(select(User).where(User.username == "admin"))
        admin = result.scalar_one_or_none()
        if admin:
            print("ADMIN user already exists, skipping seeding")
            operator = (await db.execute(select(User).where(User.username == "operador"))).scalar_one_or_none()
        else:
            admin = User(username="admin", full_name="Administrador", role=UserRole.ADMIN)
            operator = User(username="operador", full_name="Operador de Turno", role=UserRole.OPERATOR)
            truck = Truck(
                plate="ABC-123",
                fuel_type=FuelType.DIESEL_B5,
                capacity_gal=Decimal("5000"),
                last_remaining=Decimal("0"),
                state=TruckState.ACTIVE,
            )
            customer = Customer(company_name="Grifo Central SAC", ruc="20123456789", address="Av. Principal 100")
            db.add_all([admin, operator, truck, customer])
            await db.commit()

            print(f"Created ADMIN user (id: {admin.id}, username: admin)")
            print(f"Created OPERATOR user (id: {operator.id}, username: operador)")
            print(f"Created truck {truck.plate} (id: {truck.id}, {truck.capacity_gal} gal {truck.fuel_type.value})")
            print(f"Created customer {customer.company_name} (id: {customer.id})")

        print("\nBearer tokens:")
        print(f"  - ADMIN:    {_token(admin)}")
        if operator:
            print(f"  - OPERATOR: {_token(operator)}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_fleet())
