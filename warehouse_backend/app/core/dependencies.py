"""
Caller identity dependencies for FastAPI.

Authentication happens upstream: the gateway forwards the authenticated
user as `X-Actor-Id` / `X-Actor-Role`. This module turns those headers into
an `Actor` that services receive explicitly.
"""

from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from warehouse_backend.app.db.session import get_db
from warehouse_backend.app.models.enums import UserRole
from warehouse_backend.app.models.user import User


@dataclass(frozen=True)
class Actor:
    """The user performing an operation, plus request metadata for the audit log."""
    id: int
    role: UserRole
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.WAREHOUSE_STAFF, UserRole.ADMIN)


async def get_actor(
    request: Request,
    x_actor_id: Optional[int] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db)
) -> Actor:
    """
    FastAPI dependency resolving the calling actor.

    Checks:
    1. Both identity headers are present and well-formed
    2. The user still exists and is active (real-time check)
    3. The forwarded role matches the directory

    Raises:
        HTTPException: 401 if the identity cannot be established
    """
    if x_actor_id is None or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Caller identity headers missing",
        )

    try:
        role = UserRole(x_actor_role.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid role in identity headers",
        )

    result = await db.execute(select(User).where(User.id == x_actor_id))
    user = result.scalar_one_or_none()

    if not user or not user.is_active or user.is_deleted:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    if user.role != role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Forwarded role does not match user record",
        )

    return Actor(
        id=user.id,
        role=user.role,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
