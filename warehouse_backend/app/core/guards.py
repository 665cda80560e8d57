"""
Role guards for endpoints.

Coarse gating only; ownership and admin-only rules live in the services.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from warehouse_backend.app.models.enums import UserRole
from warehouse_backend.app.core.dependencies import Actor, get_actor


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/parcels")
        async def intake(actor: Actor = Depends(require_role([UserRole.WAREHOUSE_STAFF, UserRole.ADMIN]))):
            ...

    Raises:
        HTTPException 403 if the actor's role is not in allowed_roles
    """
    async def role_checker(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )
        return actor

    return role_checker


require_staff = require_role([UserRole.WAREHOUSE_STAFF, UserRole.ADMIN])
require_admin = require_role([UserRole.ADMIN])
