"""
Security guards for capability-based access control.

Turns the authenticated token payload into a Caller and checks capabilities
once, at the endpoint boundary.
"""

from fastapi import Depends, HTTPException, status
from fuel_dispatch.app.core.dependencies import get_current_user
from fuel_dispatch.app.domain.fuel.capabilities import Caller, Capability
from fuel_dispatch.app.models.enums import UserRole


async def require_caller(current_user: dict = Depends(get_current_user)) -> Caller:
    """
    Dependency resolving the authenticated user into a Caller.

    Raises:
        HTTPException 403 if the role claim is missing or unknown
    """
    try:
        role = UserRole(current_user.get("role"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid role in token"
        )
    return Caller(user_id=int(current_user["user_id"]), role=role)


def require_capability(capability: Capability):
    """
    Dependency factory for capability-gated endpoints.

    Usage:
        @router.post("/fleet/sweep-stale")
        async def sweep(caller: Caller = Depends(require_capability(Capability.RUN_SWEEPS))):
            ...
    """
    async def capability_checker(caller: Caller = Depends(require_caller)) -> Caller:
        if not caller.can(capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required capability: {capability.value}"
            )
        return caller

    return capability_checker
