"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes, the fuel engine error taxonomy and
global exception handlers.
"""

import logging
from decimal import Decimal
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


def _num(value: Any) -> Any:
    """Render Decimals as strings so error details stay JSON-safe and exact."""
    if isinstance(value, Decimal):
        return str(value)
    return value


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Fuel engine errors

class InvalidQuantityError(AppException):
    """Raised when a fuel quantity is zero or negative."""

    def __init__(self, requested: Decimal, field: str = "quantity"):
        super().__init__(
            message=f"Invalid {field}: {requested} gal. Quantity must be greater than 0",
            error_code="ERR_FUEL_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"field": field, "requested": _num(requested)}
        )


class InsufficientFuelError(AppException):
    """Raised when a discharge asks for more fuel than the assignment holds."""

    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            message=f"Insufficient fuel: requested {requested} gal, available {available} gal",
            error_code="ERR_FUEL_002",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"requested": _num(requested), "available": _num(available)}
        )


class CapacityExceededError(AppException):
    """Raised when allocations or a load would exceed the available capacity."""

    def __init__(self, requested: Decimal, available: Decimal, limit: Decimal, scope: str = "assignment"):
        super().__init__(
            message=(
                f"Capacity exceeded on {scope}: requested {requested} gal, "
                f"available {available} gal of {limit} gal"
            ),
            error_code="ERR_FUEL_003",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={
                "scope": scope,
                "requested": _num(requested),
                "available": _num(available),
                "limit": _num(limit),
            }
        )


class DuplicateAllocationError(AppException):
    """Raised when a customer already has an allocation on the assignment."""

    def __init__(self, assignment_id: int, customer_id: int):
        super().__init__(
            message=f"Customer {customer_id} is already allocated on assignment {assignment_id}",
            error_code="ERR_FUEL_004",
            status_code=status.HTTP_409_CONFLICT,
            details={"assignment_id": assignment_id, "customer_id": customer_id}
        )


class IncompleteDeliveriesError(AppException):
    """Raised when completing an assignment whose deliveries are unresolved."""

    def __init__(self, assignment_id: int, unresolved_customer_ids: List[int], remaining: Decimal):
        parts = []
        if unresolved_customer_ids:
            parts.append(f"unresolved customers {unresolved_customer_ids}")
        if remaining > 0:
            parts.append(f"{remaining} gal still remaining")
        super().__init__(
            message=f"Cannot complete assignment {assignment_id}: {', '.join(parts)}",
            error_code="ERR_FUEL_005",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "assignment_id": assignment_id,
                "unresolved_customer_ids": unresolved_customer_ids,
                "remaining": _num(remaining),
            }
        )


class ConcurrencyConflictError(AppException):
    """Raised when an atomic conditional update lost a race."""

    def __init__(self, resource: str, resource_id: Any = None):
        super().__init__(
            message=f"The {resource} was modified by another request, please retry",
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource": resource, "id": resource_id}
        )


class NumberingExhaustedError(AppException):
    """Raised when a (prefix, year) counter has used every 6-digit sequence."""

    def __init__(self, prefix: str, year: int):
        super().__init__(
            message=f"Number sequence {prefix}/{year} is exhausted",
            error_code="ERR_NUMBERING_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"prefix": prefix, "year": year}
        )


class InvalidStateError(AppException):
    """Raised when an entity is not in a state that allows the operation."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": [
                    {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
