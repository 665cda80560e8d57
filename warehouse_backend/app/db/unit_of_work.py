"""
Transactional unit of work.

Bundles every write of one business operation (entity rows, state history,
audit entries) into a single commit, and defers side effects such as
notifications until that commit has succeeded.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from warehouse_backend.app.core.dependencies import Actor
from warehouse_backend.app.models.audit_log import AuditLog
from warehouse_backend.app.models.parcel import Parcel
from warehouse_backend.app.models.parcel_enums import ParcelState
from warehouse_backend.app.models.parcel_state_history import ParcelStateHistory
from warehouse_backend.app.services import audit

logger = logging.getLogger("warehouse.db.uow")

PostCommitCallback = Callable[[], Awaitable[Any]]


class UnitOfWork:
    """
    Async context manager around one database transaction.

    Usage:
        async with UnitOfWork(db, actor) as uow:
            parcel.state = ParcelState.STORED
            await uow.append_history(parcel, ParcelState.ARRIVED, ParcelState.STORED)
            await uow.audit(AuditAction.PARCEL_STATE_CHANGED, "parcel", parcel.id)
            uow.on_commit(lambda: notifier.publish(...))

    Leaving the block normally commits and then runs the post-commit
    callbacks. Leaving it with an exception rolls back, drops the callbacks
    and re-raises.
    """

    def __init__(self, db: AsyncSession, actor: Actor):
        self.db = db
        self.actor = actor
        self._callbacks: List[PostCommitCallback] = []

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            await self.db.rollback()
            self._callbacks.clear()
            return False

        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            self._callbacks.clear()
            raise

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                await callback()
            except Exception:
                # Side effects never undo a committed transaction
                logger.exception("Post-commit callback failed")
        return False

    def on_commit(self, callback: PostCommitCallback) -> None:
        """Schedule an async callable to run after a successful commit."""
        self._callbacks.append(callback)

    async def audit(
        self,
        action: str,
        entity_type: str,
        entity_id: int,
        previous_data: Optional[Dict[str, Any]] = None,
        new_data: Optional[Dict[str, Any]] = None,
        parcel_id: Optional[int] = None,
        delivery_id: Optional[int] = None,
        exception_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        return await audit.record(
            self.db,
            actor=self.actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            previous_data=previous_data,
            new_data=new_data,
            parcel_id=parcel_id,
            delivery_id=delivery_id,
            exception_id=exception_id,
            metadata=metadata,
        )

    async def append_history(
        self,
        parcel: Parcel,
        from_state: Optional[ParcelState],
        to_state: ParcelState,
        notes: Optional[str] = None,
    ) -> ParcelStateHistory:
        entry = ParcelStateHistory(
            parcel_id=parcel.id,
            from_state=from_state,
            to_state=to_state,
            changed_by_id=self.actor.id,
            notes=notes,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry
