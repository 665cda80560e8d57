"""
Exception Lifecycle Service.

Staff report, pick up, resolve or cancel parcel exceptions. The parcel's
`has_exception` flag is a projection of its open exceptions and is
re-derived in the same transaction as every exception change.
"""

import logging
from typing import Optional, List, Tuple, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from warehouse_backend.app.core.clock import utcnow
from warehouse_backend.app.core.dependencies import Actor
from warehouse_backend.app.core.exceptions import ValidationError, ResourceNotFoundError, ConflictError
from warehouse_backend.app.db.unit_of_work import UnitOfWork
from warehouse_backend.app.models.parcel import Parcel
from warehouse_backend.app.models.parcel_enums import (
    ExceptionType, ExceptionStatus, OPEN_EXCEPTION_STATUSES, CLOSED_EXCEPTION_STATUSES
)
from warehouse_backend.app.models.parcel_exception import ParcelException
from warehouse_backend.app.services.audit import AuditAction, AuditEntity
from warehouse_backend.app.services.notification_service import NotificationService, NotificationType
from warehouse_backend.app.services.parcel_service import ParcelService

logger = logging.getLogger("warehouse.exceptions")

DESCRIPTION_MAX_LENGTH = 1000
RESOLUTION_MAX_LENGTH = 2000


async def count_open_exceptions(db: AsyncSession, parcel_id: int, exclude_id: Optional[int] = None) -> int:
    conditions = [
        ParcelException.parcel_id == parcel_id,
        ParcelException.status.in_(OPEN_EXCEPTION_STATUSES),
    ]
    if exclude_id is not None:
        conditions.append(ParcelException.id != exclude_id)
    result = await db.execute(select(func.count()).select_from(ParcelException).where(*conditions))
    return result.scalar_one()


async def refresh_exception_lock(db: AsyncSession, parcel: Parcel) -> bool:
    """
    Recompute `parcel.has_exception` from the open exception count.

    Pending changes must be flushed first so the count sees them.
    """
    open_count = await count_open_exceptions(db, parcel.id)
    locked = open_count > 0
    if parcel.has_exception != locked:
        logger.info(
            "Parcel exception lock changed",
            extra={"parcel_id": parcel.id, "locked": locked, "open_exceptions": open_count}
        )
    parcel.has_exception = locked
    await db.flush()
    return locked


class ExceptionService:

    @staticmethod
    async def _load_for_update(db: AsyncSession, exception_id: int) -> ParcelException:
        result = await db.execute(
            select(ParcelException)
            .where(ParcelException.id == exception_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        exception = result.scalar_one_or_none()
        if not exception:
            raise ResourceNotFoundError("Exception", exception_id)
        return exception

    @staticmethod
    async def _load_parcel(db: AsyncSession, parcel_id: int) -> Parcel:
        # Soft-deleted parcels still get their exceptions closed out
        result = await db.execute(
            select(Parcel)
            .where(Parcel.id == parcel_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    def _ensure_open(exception: ParcelException) -> None:
        if exception.status in CLOSED_EXCEPTION_STATUSES:
            raise ConflictError(
                f"Exception is already {exception.status.value}",
                details={"exception_id": exception.id, "status": exception.status.value}
            )

    @staticmethod
    async def _ensure_not_last_for_orphan(db: AsyncSession, parcel: Parcel, exception: ParcelException) -> None:
        if parcel.owner_id is not None:
            return
        remaining = await count_open_exceptions(db, parcel.id, exclude_id=exception.id)
        if remaining == 0:
            raise ConflictError(
                "Parcel has no owner. Assign an owner before closing its last open exception.",
                details={"parcel_id": parcel.id, "exception_id": exception.id}
            )

    @staticmethod
    async def create(
        db: AsyncSession,
        parcel_id: int,
        type: ExceptionType,
        description: str,
        actor: Actor
    ) -> ParcelException:
        """
        Report an exception and lock the parcel.

        Raises:
            ValidationError: If the description is empty or too long
            ResourceNotFoundError: If the parcel is missing or soft-deleted
            ConflictError: If an open exception of the same type already exists
        """
        description = (description or "").strip()
        if not description or len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(f"Description must be between 1 and {DESCRIPTION_MAX_LENGTH} characters")

        async with UnitOfWork(db, actor) as uow:
            parcel = await ParcelService.load_for_update(db, parcel_id)

            duplicate = await db.execute(
                select(ParcelException.id).where(
                    ParcelException.parcel_id == parcel.id,
                    ParcelException.type == type,
                    ParcelException.status.in_(OPEN_EXCEPTION_STATUSES)
                ).limit(1)
            )
            if duplicate.scalar_one_or_none() is not None:
                raise ConflictError(
                    f"Parcel already has an open {type.value} exception",
                    details={"parcel_id": parcel.id, "type": type.value}
                )

            exception = ParcelException(
                parcel_id=parcel.id,
                type=type,
                status=ExceptionStatus.OPEN,
                description=description,
                created_by_id=actor.id,
            )
            db.add(exception)
            await db.flush()
            await refresh_exception_lock(db, parcel)

            await uow.audit(
                AuditAction.EXCEPTION_CREATED,
                AuditEntity.EXCEPTION,
                exception.id,
                new_data={"type": type.value, "status": exception.status.value, "description": description},
                parcel_id=parcel.id,
                exception_id=exception.id,
            )

            if parcel.owner_id:
                owner_id, tracking_code = parcel.owner_id, parcel.tracking_code
                uow.on_commit(lambda: NotificationService.publish(
                    owner_id, NotificationType.EXCEPTION_CREATED,
                    parcel_id=parcel_id, tracking_code=tracking_code, exception_type=type.value
                ))

        logger.info("Exception created", extra={"exception_id": exception.id, "parcel_id": parcel_id, "type": type.value})
        return exception

    @staticmethod
    async def assign(db: AsyncSession, exception_id: int, actor: Actor) -> ParcelException:
        """Take ownership of an exception; moves it to IN_PROGRESS."""
        async with UnitOfWork(db, actor) as uow:
            exception = await ExceptionService._load_for_update(db, exception_id)
            ExceptionService._ensure_open(exception)

            previous = {"status": exception.status.value, "handled_by_id": exception.handled_by_id}
            exception.status = ExceptionStatus.IN_PROGRESS
            exception.handled_by_id = actor.id
            await db.flush()

            await uow.audit(
                AuditAction.EXCEPTION_ASSIGNED,
                AuditEntity.EXCEPTION,
                exception.id,
                previous_data=previous,
                new_data={"status": exception.status.value, "handled_by_id": actor.id},
                parcel_id=exception.parcel_id,
                exception_id=exception.id,
            )

        return exception

    @staticmethod
    async def resolve(db: AsyncSession, exception_id: int, resolution: str, actor: Actor) -> ParcelException:
        """
        Resolve an exception and re-derive the parcel lock.

        Raises:
            ValidationError: If the resolution is empty or too long
            ConflictError: If already closed, or if it is the last open exception of an ownerless parcel
        """
        resolution = (resolution or "").strip()
        if not resolution or len(resolution) > RESOLUTION_MAX_LENGTH:
            raise ValidationError(f"Resolution must be between 1 and {RESOLUTION_MAX_LENGTH} characters")

        async with UnitOfWork(db, actor) as uow:
            exception = await ExceptionService._load_for_update(db, exception_id)
            ExceptionService._ensure_open(exception)
            parcel = await ExceptionService._load_parcel(db, exception.parcel_id)
            await ExceptionService._ensure_not_last_for_orphan(db, parcel, exception)

            previous_status = exception.status.value
            exception.status = ExceptionStatus.RESOLVED
            exception.resolution = resolution
            exception.resolved_at = utcnow()
            exception.handled_by_id = actor.id
            await db.flush()

            locked = await refresh_exception_lock(db, parcel)

            await uow.audit(
                AuditAction.EXCEPTION_RESOLVED,
                AuditEntity.EXCEPTION,
                exception.id,
                previous_data={"status": previous_status},
                new_data={"status": exception.status.value, "resolution": resolution},
                parcel_id=parcel.id,
                exception_id=exception.id,
                metadata={"parcel_locked": locked},
            )

            if parcel.owner_id:
                owner_id, parcel_id, tracking_code = parcel.owner_id, parcel.id, parcel.tracking_code
                uow.on_commit(lambda: NotificationService.publish(
                    owner_id, NotificationType.EXCEPTION_RESOLVED,
                    parcel_id=parcel_id, tracking_code=tracking_code
                ))

        return exception

    @staticmethod
    async def cancel(db: AsyncSession, exception_id: int, actor: Actor) -> ParcelException:
        """Cancel an exception raised in error; re-derives the parcel lock."""
        async with UnitOfWork(db, actor) as uow:
            exception = await ExceptionService._load_for_update(db, exception_id)
            ExceptionService._ensure_open(exception)
            parcel = await ExceptionService._load_parcel(db, exception.parcel_id)
            await ExceptionService._ensure_not_last_for_orphan(db, parcel, exception)

            previous_status = exception.status.value
            exception.status = ExceptionStatus.CANCELLED
            exception.handled_by_id = actor.id
            await db.flush()

            locked = await refresh_exception_lock(db, parcel)

            await uow.audit(
                AuditAction.EXCEPTION_CANCELLED,
                AuditEntity.EXCEPTION,
                exception.id,
                previous_data={"status": previous_status},
                new_data={"status": exception.status.value},
                parcel_id=parcel.id,
                exception_id=exception.id,
                metadata={"parcel_locked": locked},
            )

        return exception

    # Reads

    @staticmethod
    async def get_exception(db: AsyncSession, exception_id: int) -> ParcelException:
        result = await db.execute(select(ParcelException).where(ParcelException.id == exception_id))
        exception = result.scalar_one_or_none()
        if not exception:
            raise ResourceNotFoundError("Exception", exception_id)
        return exception

    @staticmethod
    async def list_queue(
        db: AsyncSession,
        statuses: Optional[Sequence[ExceptionStatus]] = None,
        type: Optional[ExceptionType] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[ParcelException], int]:
        """Work queue, oldest first. Defaults to OPEN and IN_PROGRESS."""
        conditions = [ParcelException.status.in_(statuses or OPEN_EXCEPTION_STATUSES)]
        if type is not None:
            conditions.append(ParcelException.type == type)

        total = (await db.execute(
            select(func.count()).select_from(ParcelException).where(*conditions)
        )).scalar_one()

        result = await db.execute(
            select(ParcelException)
            .where(*conditions)
            .order_by(ParcelException.created_at.asc(), ParcelException.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def list_for_parcel(db: AsyncSession, parcel_id: int) -> List[ParcelException]:
        result = await db.execute(
            select(ParcelException)
            .where(ParcelException.parcel_id == parcel_id)
            .order_by(ParcelException.created_at.asc(), ParcelException.id.asc())
        )
        return list(result.scalars().all())
