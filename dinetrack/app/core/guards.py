"""
Security guards for role-based and ownership-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List
from fastapi import Depends
from dinetrack.app.core.caller import CallerContext
from dinetrack.app.core.dependencies import get_caller_context
from dinetrack.app.core.exceptions import PermissionDeniedError
from dinetrack.app.models.enums import Role, TargetType


def require_role(allowed_roles: List[Role]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/dinecoins/adjustments")
        async def adjust(caller: CallerContext = Depends(require_role([Role.SUPERVISOR]))):
            ...

    Args:
        allowed_roles: List of Role enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates the caller's role

    Raises:
        PermissionDeniedError if caller role is not in allowed_roles
    """
    async def role_checker(caller: CallerContext = Depends(get_caller_context)) -> CallerContext:
        if caller.role not in allowed_roles:
            raise PermissionDeniedError(
                f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return caller

    return role_checker


def enforce_balance_access(caller: CallerContext, target_type: TargetType, target_id: str):
    """
    Supervisors see every balance; a user sees only their own.

    Raises:
        PermissionDeniedError if the caller may not read the target's ledger
    """
    if caller.is_supervisor:
        return
    if target_type == TargetType.USER and caller.caller_id == target_id:
        return
    raise PermissionDeniedError("You do not have permission to view this balance")
