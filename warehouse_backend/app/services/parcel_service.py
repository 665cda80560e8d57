"""
Parcel Lifecycle Service.

Intake, state transitions, ownership overrides and soft deletion. Every
mutation runs in one UnitOfWork so the parcel row, its state history and
the audit entry commit together or not at all.
"""

import logging
from typing import Optional, List, Tuple, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from warehouse_backend.app.core.clock import utcnow
from warehouse_backend.app.core.dependencies import Actor
from warehouse_backend.app.core.exceptions import (
    ValidationError, ForbiddenError, ResourceNotFoundError, ConflictError, IllegalTransitionError
)
from warehouse_backend.app.db.unit_of_work import UnitOfWork
from warehouse_backend.app.domain.lifecycle import state_machine
from warehouse_backend.app.models.parcel import (
    Parcel, MIN_PARCEL_WEIGHT_KG, MAX_PARCEL_WEIGHT_KG, MEMBER_CODE_MAX_LENGTH
)
from warehouse_backend.app.models.parcel_enums import (
    ParcelState, ExceptionType, ExceptionStatus, OPEN_EXCEPTION_STATUSES
)
from warehouse_backend.app.models.parcel_exception import ParcelException
from warehouse_backend.app.models.parcel_state_history import ParcelStateHistory
from warehouse_backend.app.services.audit import AuditAction, AuditEntity
from warehouse_backend.app.services.member_directory import MemberDirectory
from warehouse_backend.app.services.notification_service import NotificationService, NotificationType

logger = logging.getLogger("warehouse.parcels")

OVERRIDE_REASON_MIN_LENGTH = 10
OVERRIDE_REASON_MAX_LENGTH = 500


def parcel_snapshot(parcel: Parcel) -> Dict[str, Any]:
    """JSON-safe view of the fields the audit log tracks."""
    return {
        "tracking_code": parcel.tracking_code,
        "member_code": parcel.member_code,
        "owner_id": parcel.owner_id,
        "state": parcel.state.value,
        "has_exception": parcel.has_exception,
        "weight_kg": parcel.weight_kg,
        "is_deleted": parcel.is_deleted,
    }


class ParcelService:

    # Loading

    @staticmethod
    async def load_for_update(db: AsyncSession, parcel_id: int) -> Parcel:
        """
        Re-read a parcel row with a row lock inside the current transaction.

        Raises:
            ResourceNotFoundError: If missing or soft-deleted
        """
        result = await db.execute(
            select(Parcel)
            .where(Parcel.id == parcel_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        parcel = result.scalar_one_or_none()
        if not parcel or parcel.is_deleted:
            raise ResourceNotFoundError("Parcel", parcel_id)
        return parcel

    # Mutations

    @staticmethod
    async def intake(
        db: AsyncSession,
        actor: Actor,
        tracking_code: str,
        weight_kg: float,
        member_code: Optional[str] = None,
        description: Optional[str] = None
    ) -> Parcel:
        """
        Register a parcel arriving at the warehouse.

        The owner is resolved from the member code. When it cannot be resolved
        the parcel is registered as an orphan: no owner, locked, with an open
        MISSING_MEMBER_CODE or INVALID_MEMBER_CODE exception created in the
        same transaction.

        Raises:
            ValidationError: If the weight is out of range or the member code is too long to store
            ConflictError: If the tracking code is already registered
        """
        if weight_kg is None or not (MIN_PARCEL_WEIGHT_KG <= weight_kg <= MAX_PARCEL_WEIGHT_KG):
            raise ValidationError(
                f"Weight must be between {MIN_PARCEL_WEIGHT_KG} and {MAX_PARCEL_WEIGHT_KG} kg",
                details={"weight_kg": weight_kg}
            )

        tracking_code = tracking_code.strip()
        existing = await db.execute(select(Parcel.id).where(Parcel.tracking_code == tracking_code))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(
                f"Parcel with tracking code {tracking_code} already exists",
                details={"tracking_code": tracking_code}
            )

        member_code = MemberDirectory.normalize(member_code)
        if member_code and len(member_code) > MEMBER_CODE_MAX_LENGTH:
            raise ValidationError(
                f"Member code must be at most {MEMBER_CODE_MAX_LENGTH} characters",
                details={"member_code": member_code}
            )

        member = await MemberDirectory.lookup_by_member_code(db, member_code)
        is_orphan = not MemberDirectory.is_resolvable(member)

        try:
            async with UnitOfWork(db, actor) as uow:
                parcel = Parcel(
                    tracking_code=tracking_code,
                    member_code=member_code,
                    description=description,
                    owner_id=None if is_orphan else member.id,
                    registered_by_id=actor.id,
                    weight_kg=weight_kg,
                    state=ParcelState.ARRIVED,
                    has_exception=is_orphan,
                    is_deleted=False,
                )
                db.add(parcel)
                await db.flush()

                await uow.append_history(parcel, None, ParcelState.ARRIVED, "Parcel registered at intake")

                exception = None
                if is_orphan:
                    exception = ParcelException(
                        parcel_id=parcel.id,
                        type=ExceptionType.INVALID_MEMBER_CODE if member_code else ExceptionType.MISSING_MEMBER_CODE,
                        status=ExceptionStatus.OPEN,
                        description=MemberDirectory.unresolvable_reason(member_code, member),
                        created_by_id=actor.id,
                    )
                    db.add(exception)
                    await db.flush()

                    await uow.audit(
                        AuditAction.EXCEPTION_CREATED,
                        AuditEntity.EXCEPTION,
                        exception.id,
                        new_data={"type": exception.type.value, "status": exception.status.value},
                        parcel_id=parcel.id,
                        exception_id=exception.id,
                        metadata={"source": "intake", "description": exception.description},
                    )

                await uow.audit(
                    AuditAction.PARCEL_REGISTERED,
                    AuditEntity.PARCEL,
                    parcel.id,
                    new_data=parcel_snapshot(parcel),
                    parcel_id=parcel.id,
                    exception_id=exception.id if exception else None,
                )

                if parcel.owner_id:
                    owner_id, parcel_id = parcel.owner_id, parcel.id
                    uow.on_commit(lambda: NotificationService.publish(
                        owner_id, NotificationType.PARCEL_ARRIVED,
                        parcel_id=parcel_id, tracking_code=tracking_code
                    ))
        except IntegrityError:
            # Lost a race with a concurrent intake of the same tracking code
            raise ConflictError(
                f"Parcel with tracking code {tracking_code} already exists",
                details={"tracking_code": tracking_code}
            )

        if is_orphan:
            logger.warning(
                "Orphan parcel registered",
                extra={"parcel_id": parcel.id, "tracking_code": tracking_code, "member_code": member_code}
            )
        else:
            logger.info("Parcel registered", extra={"parcel_id": parcel.id, "owner_id": parcel.owner_id})

        return parcel

    @staticmethod
    async def apply_transition(
        uow: UnitOfWork,
        parcel: Parcel,
        target: ParcelState,
        notes: Optional[str] = None,
        audit: bool = True
    ) -> ParcelState:
        """
        Validate and apply a transition inside an open unit of work.

        Used by `transition_state` and by the delivery steps, which record
        their own audit entry (`audit=False`).

        Returns:
            The state the parcel was in before the transition

        Raises:
            ForbiddenError: If the parcel is exception-locked
            IllegalTransitionError: For any other rejected transition
        """
        decision = state_machine.validate_transition(
            parcel.state, target, parcel.has_exception, admin_override=uow.actor.is_admin
        )
        if not decision.valid:
            if decision.is_lock_rejection:
                raise ForbiddenError(
                    decision.error,
                    details={"parcel_id": parcel.id, "reason": decision.reason.value}
                )
            raise IllegalTransitionError(decision.error, from_state=parcel.state, to_state=target)

        lock_bypassed = parcel.has_exception
        backwards = state_machine.is_backwards_transition(parcel.state, target)
        previous = parcel.state
        parcel.state = target
        if target == ParcelState.STORED and parcel.stored_at is None:
            parcel.stored_at = utcnow()
        await uow.db.flush()

        await uow.append_history(parcel, previous, target, notes)

        if audit:
            await uow.audit(
                AuditAction.PARCEL_STATE_CHANGED,
                AuditEntity.PARCEL,
                parcel.id,
                previous_data={"state": previous.value},
                new_data={"state": target.value},
                parcel_id=parcel.id,
                metadata={
                    "notes": notes,
                    "admin_override": uow.actor.is_admin and (lock_bypassed or backwards),
                    "lock_bypassed": lock_bypassed,
                    "backwards": backwards,
                },
            )

        if target == ParcelState.STORED and parcel.owner_id:
            owner_id, parcel_id, tracking_code = parcel.owner_id, parcel.id, parcel.tracking_code
            uow.on_commit(lambda: NotificationService.publish(
                owner_id, NotificationType.PARCEL_STORED,
                parcel_id=parcel_id, tracking_code=tracking_code
            ))

        logger.info(
            "Parcel state changed",
            extra={"parcel_id": parcel.id, "from_state": previous.value, "to_state": target.value}
        )
        return previous

    @staticmethod
    async def transition_state(
        db: AsyncSession,
        parcel_id: int,
        target: ParcelState,
        actor: Actor,
        notes: Optional[str] = None
    ) -> Parcel:
        """Move a parcel to `target`, admin override applying when the actor is an admin."""
        async with UnitOfWork(db, actor) as uow:
            parcel = await ParcelService.load_for_update(db, parcel_id)
            await ParcelService.apply_transition(uow, parcel, target, notes)
        return parcel

    @staticmethod
    async def override_ownership(
        db: AsyncSession,
        parcel_id: int,
        member_code: Optional[str],
        reason: str,
        actor: Actor
    ) -> Parcel:
        """
        Admin correction of a parcel's owner.

        An unknown or empty member code leaves the parcel without an owner,
        which re-locks it and opens an INVALID_MEMBER_CODE exception unless one
        is already open.

        Raises:
            ForbiddenError: If the actor is not an admin
            ValidationError: If the reason is out of bounds or the member is inactive/deleted
        """
        if not actor.is_admin:
            raise ForbiddenError("Only admins can override parcel ownership")

        reason = (reason or "").strip()
        if not (OVERRIDE_REASON_MIN_LENGTH <= len(reason) <= OVERRIDE_REASON_MAX_LENGTH):
            raise ValidationError(
                f"Reason must be between {OVERRIDE_REASON_MIN_LENGTH} and {OVERRIDE_REASON_MAX_LENGTH} characters"
            )

        member_code = MemberDirectory.normalize(member_code)
        member = await MemberDirectory.lookup_by_member_code(db, member_code)
        if member is not None and not MemberDirectory.is_resolvable(member):
            raise ValidationError(
                MemberDirectory.unresolvable_reason(member_code, member),
                details={"member_code": member_code}
            )

        async with UnitOfWork(db, actor) as uow:
            parcel = await ParcelService.load_for_update(db, parcel_id)
            previous = parcel_snapshot(parcel)

            parcel.owner_id = member.id if member else None
            parcel.member_code = member_code

            exception = None
            if parcel.owner_id is None:
                parcel.has_exception = True
                open_result = await db.execute(
                    select(ParcelException).where(
                        ParcelException.parcel_id == parcel.id,
                        ParcelException.type == ExceptionType.INVALID_MEMBER_CODE,
                        ParcelException.status.in_(OPEN_EXCEPTION_STATUSES)
                    ).limit(1)
                )
                if open_result.scalar_one_or_none() is None:
                    exception = ParcelException(
                        parcel_id=parcel.id,
                        type=ExceptionType.INVALID_MEMBER_CODE,
                        status=ExceptionStatus.OPEN,
                        description=f"Ownership override left parcel without owner: {reason}",
                        created_by_id=actor.id,
                    )
                    db.add(exception)
            await db.flush()

            if exception is not None:
                await uow.audit(
                    AuditAction.EXCEPTION_CREATED,
                    AuditEntity.EXCEPTION,
                    exception.id,
                    new_data={"type": exception.type.value, "status": exception.status.value},
                    parcel_id=parcel.id,
                    exception_id=exception.id,
                    metadata={"source": "ownership_override"},
                )

            await uow.audit(
                AuditAction.PARCEL_OWNER_ASSIGNED,
                AuditEntity.PARCEL,
                parcel.id,
                previous_data={"owner_id": previous["owner_id"], "member_code": previous["member_code"]},
                new_data={"owner_id": parcel.owner_id, "member_code": parcel.member_code},
                parcel_id=parcel.id,
                metadata={"reason": reason},
            )

            if parcel.owner_id and parcel.owner_id != previous["owner_id"]:
                owner_id, tracking_code = parcel.owner_id, parcel.tracking_code
                uow.on_commit(lambda: NotificationService.publish(
                    owner_id, NotificationType.OWNERSHIP_ASSIGNED,
                    parcel_id=parcel_id, tracking_code=tracking_code
                ))

        logger.info(
            "Parcel ownership overridden",
            extra={"parcel_id": parcel.id, "previous_owner_id": previous["owner_id"], "owner_id": parcel.owner_id}
        )
        return parcel

    @staticmethod
    async def soft_delete(db: AsyncSession, parcel_id: int, actor: Actor) -> Parcel:
        """
        Hide a parcel. History, exceptions and deliveries are left untouched.

        Raises:
            ForbiddenError: If the actor is not an admin
        """
        if not actor.is_admin:
            raise ForbiddenError("Only admins can delete parcels")

        async with UnitOfWork(db, actor) as uow:
            parcel = await ParcelService.load_for_update(db, parcel_id)
            parcel.is_deleted = True
            await db.flush()

            await uow.audit(
                AuditAction.PARCEL_DELETED,
                AuditEntity.PARCEL,
                parcel.id,
                previous_data={"is_deleted": False},
                new_data={"is_deleted": True},
                parcel_id=parcel.id,
            )

        logger.info("Parcel soft-deleted", extra={"parcel_id": parcel.id})
        return parcel

    # Reads

    @staticmethod
    async def get_parcel(db: AsyncSession, parcel_id: int, actor: Optional[Actor] = None) -> Parcel:
        """
        Fetch a visible parcel. Plain users may only see their own.

        Raises:
            ResourceNotFoundError: If missing or soft-deleted
            ForbiddenError: If a non-staff actor does not own it
        """
        result = await db.execute(select(Parcel).where(Parcel.id == parcel_id))
        parcel = result.scalar_one_or_none()
        if not parcel or parcel.is_deleted:
            raise ResourceNotFoundError("Parcel", parcel_id)
        if actor is not None and not actor.is_staff and parcel.owner_id != actor.id:
            raise ForbiddenError("You do not own this parcel")
        return parcel

    @staticmethod
    async def get_by_tracking_code(db: AsyncSession, tracking_code: str) -> Parcel:
        result = await db.execute(select(Parcel).where(Parcel.tracking_code == tracking_code.strip()))
        parcel = result.scalar_one_or_none()
        if not parcel or parcel.is_deleted:
            raise ResourceNotFoundError("Parcel", tracking_code)
        return parcel

    @staticmethod
    async def list_parcels(
        db: AsyncSession,
        state: Optional[ParcelState] = None,
        has_exception: Optional[bool] = None,
        owner_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Parcel], int]:
        """Visible parcels, newest first."""
        conditions = [Parcel.is_deleted == False]
        if state is not None:
            conditions.append(Parcel.state == state)
        if has_exception is not None:
            conditions.append(Parcel.has_exception == has_exception)
        if owner_id is not None:
            conditions.append(Parcel.owner_id == owner_id)

        total = (await db.execute(select(func.count()).select_from(Parcel).where(*conditions))).scalar_one()

        result = await db.execute(
            select(Parcel)
            .where(*conditions)
            .order_by(Parcel.created_at.desc(), Parcel.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def list_owned_parcels(
        db: AsyncSession,
        owner_id: int,
        state: Optional[ParcelState] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Parcel], int]:
        return await ParcelService.list_parcels(db, state=state, owner_id=owner_id, page=page, page_size=page_size)

    @staticmethod
    async def get_state_history(
        db: AsyncSession,
        parcel_id: int,
        actor: Optional[Actor] = None
    ) -> List[ParcelStateHistory]:
        """The parcel's transition ledger, oldest first."""
        await ParcelService.get_parcel(db, parcel_id, actor)
        result = await db.execute(
            select(ParcelStateHistory)
            .where(ParcelStateHistory.parcel_id == parcel_id)
            .order_by(ParcelStateHistory.created_at.asc(), ParcelStateHistory.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    def get_next_states(parcel: Parcel, actor: Actor) -> List[ParcelState]:
        """States the actor could move this parcel to right now."""
        if parcel.has_exception and not actor.is_admin:
            return []
        return state_machine.get_valid_next_states(parcel.state, is_admin=actor.is_admin)
