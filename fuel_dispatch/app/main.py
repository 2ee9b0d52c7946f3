"""
FastAPI Application Entry Point.

This is the main application file for the Fuel Dispatch Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fuel_dispatch.app.core.config import settings
from fuel_dispatch.app.api.v1.router import router as api_v1_router
from fuel_dispatch.app.core.observability import ObservabilityMiddleware, setup_logging
from fuel_dispatch.app.core.redis_client import ping_redis
from fuel_dispatch.app.db.session import engine, Base
from fuel_dispatch.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from fuel_dispatch.app.models.user import User  # noqa: F401
from fuel_dispatch.app.models.customer import Customer  # noqa: F401
from fuel_dispatch.app.models.truck import Truck  # noqa: F401
from fuel_dispatch.app.models.assignment import Assignment  # noqa: F401
from fuel_dispatch.app.models.client_assignment import ClientAssignment  # noqa: F401
from fuel_dispatch.app.models.discharge import Discharge  # noqa: F401
from fuel_dispatch.app.models.number_sequence import NumberSequence  # noqa: F401
from fuel_dispatch.app.models.assignment_metadata import TripInfo, StageDocumentation, DeliveryDetail  # noqa: F401

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup and disposes the pool on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Fuel-balance reconciliation and assignment lifecycle backend",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and event bus reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "event_bus": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Fuel Dispatch Backend API",
        "docs": "/docs",
        "health": "/health",
    }
