"""
Audit logging service for tracking every state-changing action.

Entries are appended inside the caller's transaction, so an audit failure
aborts the business change with it. There is deliberately no update or
delete API.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple, TYPE_CHECKING
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_, and_
from warehouse_backend.app.models.audit_log import AuditLog

if TYPE_CHECKING:
    from warehouse_backend.app.core.dependencies import Actor


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Parcel lifecycle
    PARCEL_REGISTERED = "PARCEL_REGISTERED"
    PARCEL_STATE_CHANGED = "PARCEL_STATE_CHANGED"
    PARCEL_OWNER_ASSIGNED = "PARCEL_OWNER_ASSIGNED"
    PARCEL_DELETED = "PARCEL_DELETED"

    # Exceptions
    EXCEPTION_CREATED = "EXCEPTION_CREATED"
    EXCEPTION_ASSIGNED = "EXCEPTION_ASSIGNED"
    EXCEPTION_RESOLVED = "EXCEPTION_RESOLVED"
    EXCEPTION_CANCELLED = "EXCEPTION_CANCELLED"

    # Deliveries
    DELIVERY_REQUESTED = "DELIVERY_REQUESTED"
    DELIVERY_PAYMENT_CONFIRMED = "DELIVERY_PAYMENT_CONFIRMED"
    DELIVERY_DISPATCHED = "DELIVERY_DISPATCHED"
    DELIVERY_COMPLETED = "DELIVERY_COMPLETED"


class AuditEntity:
    PARCEL = "parcel"
    EXCEPTION = "parcel_exception"
    DELIVERY = "delivery"


@dataclass
class AuditFilters:
    actor_id: Optional[int] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    action: Optional[str] = None
    parcel_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


async def record(
    db: AsyncSession,
    actor: Optional["Actor"],
    action: str,
    entity_type: str,
    entity_id: int,
    previous_data: Optional[Dict[str, Any]] = None,
    new_data: Optional[Dict[str, Any]] = None,
    parcel_id: Optional[int] = None,
    delivery_id: Optional[int] = None,
    exception_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Append an audit entry to the current transaction.

    Flushes but does not commit; the enclosing unit of work owns the commit.

    Args:
        db: Database session
        actor: Who performed the action (None for system actions)
        action: Action being performed (use AuditAction constants)
        entity_type: Kind of entity changed (use AuditEntity constants)
        entity_id: ID of the entity changed
        previous_data: Snapshot before the change
        new_data: Snapshot after the change
        parcel_id, delivery_id, exception_id: Related entities for timelines
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor.id if actor else None,
        actor_role=actor.role if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        previous_data=previous_data,
        new_data=new_data,
        meta_data=metadata,
        parcel_id=parcel_id,
        delivery_id=delivery_id,
        exception_id=exception_id,
        ip_address=actor.ip_address if actor else None,
        user_agent=actor.user_agent if actor else None,
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


def _ordering(newest_first: bool):
    if newest_first:
        return (AuditLog.created_at.desc(), AuditLog.id.desc())
    return (AuditLog.created_at.asc(), AuditLog.id.asc())


async def get_audit_trail(
    db: AsyncSession,
    filters: Optional[AuditFilters] = None,
    page: int = 1,
    page_size: int = 50,
    newest_first: bool = True
) -> Tuple[List[AuditLog], int]:
    """
    Search the audit log.

    Returns:
        (entries for the requested page, total matching entries)
    """
    filters = filters or AuditFilters()
    conditions = []

    if filters.actor_id is not None:
        conditions.append(AuditLog.actor_id == filters.actor_id)
    if filters.entity_type:
        conditions.append(AuditLog.entity_type == filters.entity_type)
    if filters.entity_id is not None:
        conditions.append(AuditLog.entity_id == filters.entity_id)
    if filters.action:
        conditions.append(AuditLog.action == filters.action)
    if filters.parcel_id is not None:
        conditions.append(AuditLog.parcel_id == filters.parcel_id)
    if filters.start_time:
        conditions.append(AuditLog.created_at >= filters.start_time)
    if filters.end_time:
        conditions.append(AuditLog.created_at <= filters.end_time)

    count_query = select(func.count()).select_from(AuditLog).where(*conditions)
    total = (await db.execute(count_query)).scalar_one()

    query = (
        select(AuditLog)
        .where(*conditions)
        .order_by(*_ordering(newest_first))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)

    return list(result.scalars().all()), total


async def get_entity_timeline(
    db: AsyncSession,
    entity_type: str,
    entity_id: int,
    newest_first: bool = False
) -> List[AuditLog]:
    """All entries targeting one entity."""
    query = select(AuditLog).where(
        AuditLog.entity_type == entity_type,
        AuditLog.entity_id == entity_id
    ).order_by(*_ordering(newest_first))

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_parcel_timeline(
    db: AsyncSession,
    parcel_id: int,
    newest_first: bool = False
) -> List[AuditLog]:
    """
    Everything that happened to a parcel: entries targeting it directly plus
    exception and delivery entries linked to it.
    """
    query = select(AuditLog).where(
        or_(
            AuditLog.parcel_id == parcel_id,
            and_(AuditLog.entity_type == AuditEntity.PARCEL, AuditLog.entity_id == parcel_id)
        )
    ).order_by(*_ordering(newest_first))

    result = await db.execute(query)
    return list(result.scalars().all())
