"""
Delivery Fulfillment Service.

request → confirm payment → dispatch → complete. Each step mutates the
delivery and moves the parcel through the state machine in the same
transaction, with a single audit entry describing the delivery fact.
"""

import logging
from typing import Optional, List, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from warehouse_backend.app.core.clock import utcnow
from warehouse_backend.app.core.dependencies import Actor
from warehouse_backend.app.core.exceptions import (
    ForbiddenError, ResourceNotFoundError, ConflictError, IllegalTransitionError
)
from warehouse_backend.app.db.unit_of_work import UnitOfWork
from warehouse_backend.app.domain.billing.fee_resolver import FeeResolver, FeeQuote
from warehouse_backend.app.models.delivery import Delivery
from warehouse_backend.app.models.delivery_enums import PaymentStatus
from warehouse_backend.app.models.parcel import Parcel
from warehouse_backend.app.models.parcel_enums import ParcelState
from warehouse_backend.app.services.audit import AuditAction, AuditEntity
from warehouse_backend.app.services.member_directory import MemberDirectory
from warehouse_backend.app.services.notification_service import NotificationService, NotificationType
from warehouse_backend.app.services.parcel_service import ParcelService

logger = logging.getLogger("warehouse.deliveries")


class DeliveryService:

    @staticmethod
    async def calculate_fee(db: AsyncSession, weight_kg: float) -> FeeQuote:
        return await FeeResolver.calculate_fee(db, weight_kg)

    @staticmethod
    async def get_fee_estimate(db: AsyncSession, parcel_id: int, actor: Actor) -> Tuple[Parcel, FeeQuote]:
        """
        Preview the fee for one of the caller's parcels.

        Raises:
            ResourceNotFoundError: If missing or soft-deleted
            ForbiddenError: If the caller does not own the parcel
        """
        result = await db.execute(select(Parcel).where(Parcel.id == parcel_id))
        parcel = result.scalar_one_or_none()
        if not parcel or parcel.is_deleted:
            raise ResourceNotFoundError("Parcel", parcel_id)
        if parcel.owner_id != actor.id:
            raise ForbiddenError("You do not own this parcel")

        quote = await FeeResolver.calculate_fee(db, parcel.weight_kg)
        return parcel, quote

    @staticmethod
    async def _load_for_update(db: AsyncSession, delivery_id: int) -> Delivery:
        result = await db.execute(
            select(Delivery)
            .where(Delivery.id == delivery_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise ResourceNotFoundError("Delivery", delivery_id)
        return delivery

    @staticmethod
    async def request_delivery(
        db: AsyncSession,
        parcel_id: int,
        actor: Actor,
        street: str,
        city: str,
        province: str,
        zip_code: str
    ) -> Delivery:
        """
        Request home delivery of a stored parcel.

        Checks, in order: parcel exists, caller owns it, parcel is STORED, no
        delivery exists yet, parcel is not exception-locked.

        Raises:
            ResourceNotFoundError, ForbiddenError, IllegalTransitionError, ConflictError
        """
        async with UnitOfWork(db, actor) as uow:
            parcel = await ParcelService.load_for_update(db, parcel_id)

            if parcel.owner_id != actor.id:
                raise ForbiddenError("You do not own this parcel")

            if parcel.state != ParcelState.STORED:
                raise IllegalTransitionError(
                    f"Delivery can only be requested for STORED parcels (current: {parcel.state.value})",
                    from_state=parcel.state,
                    to_state=ParcelState.DELIVERY_REQUESTED
                )

            existing = await db.execute(select(Delivery.id).where(Delivery.parcel_id == parcel.id))
            if existing.scalar_one_or_none() is not None:
                raise ConflictError("Delivery already requested for this parcel", details={"parcel_id": parcel.id})

            if parcel.has_exception:
                raise ForbiddenError(
                    "Parcel has an unresolved exception. Resolve it before requesting delivery.",
                    details={"parcel_id": parcel.id}
                )

            quote = await FeeResolver.calculate_fee(db, parcel.weight_kg)

            delivery = Delivery(
                parcel_id=parcel.id,
                recipient_id=actor.id,
                delivery_street=street,
                delivery_city=city,
                delivery_province=province,
                delivery_zip_code=zip_code,
                weight_kg=parcel.weight_kg,
                base_fee=quote.base_fee,
                weight_fee=quote.weight_fee,
                total_fee=quote.total_fee,
                payment_status=PaymentStatus.PENDING,
            )
            db.add(delivery)
            await db.flush()

            previous_state = await ParcelService.apply_transition(
                uow, parcel, ParcelState.DELIVERY_REQUESTED, "Delivery requested by user", audit=False
            )

            recipient = await MemberDirectory.get_user(db, actor.id)
            await MemberDirectory.update_delivery_address(db, recipient, street, city, province, zip_code)

            await uow.audit(
                AuditAction.DELIVERY_REQUESTED,
                AuditEntity.DELIVERY,
                delivery.id,
                previous_data={"parcel_state": previous_state.value},
                new_data={
                    "parcel_state": parcel.state.value,
                    "payment_status": delivery.payment_status.value,
                    "base_fee": quote.base_fee,
                    "weight_fee": quote.weight_fee,
                    "total_fee": quote.total_fee,
                },
                parcel_id=parcel.id,
                delivery_id=delivery.id,
                metadata={"fee_configuration_id": quote.fee_configuration_id},
            )

            delivery_id, tracking_code, total_fee = delivery.id, parcel.tracking_code, quote.total_fee
            uow.on_commit(lambda: NotificationService.publish(
                actor.id, NotificationType.DELIVERY_REQUESTED,
                parcel_id=parcel_id, delivery_id=delivery_id,
                tracking_code=tracking_code, total_fee=total_fee
            ))

        logger.info(
            "Delivery requested",
            extra={"delivery_id": delivery.id, "parcel_id": parcel_id, "total_fee": delivery.total_fee}
        )
        return delivery

    @staticmethod
    async def confirm_payment(db: AsyncSession, delivery_id: int, actor: Actor) -> Delivery:
        """
        Record that payment was received.

        Raises:
            ConflictError: If payment is already CONFIRMED or REFUNDED
        """
        async with UnitOfWork(db, actor) as uow:
            delivery = await DeliveryService._load_for_update(db, delivery_id)

            if delivery.payment_status in (PaymentStatus.CONFIRMED, PaymentStatus.REFUNDED):
                raise ConflictError(
                    f"Payment is already {delivery.payment_status.value}",
                    details={"delivery_id": delivery.id, "payment_status": delivery.payment_status.value}
                )

            previous_status = delivery.payment_status.value
            delivery.payment_status = PaymentStatus.CONFIRMED
            delivery.payment_confirmed_at = utcnow()
            delivery.payment_confirmed_by_id = actor.id
            await db.flush()

            await uow.audit(
                AuditAction.DELIVERY_PAYMENT_CONFIRMED,
                AuditEntity.DELIVERY,
                delivery.id,
                previous_data={"payment_status": previous_status},
                new_data={"payment_status": delivery.payment_status.value, "total_fee": delivery.total_fee},
                parcel_id=delivery.parcel_id,
                delivery_id=delivery.id,
            )

            tracking_code = (await db.execute(
                select(Parcel.tracking_code).where(Parcel.id == delivery.parcel_id)
            )).scalar_one()
            recipient_id, parcel_id = delivery.recipient_id, delivery.parcel_id
            uow.on_commit(lambda: NotificationService.publish(
                recipient_id, NotificationType.PAYMENT_CONFIRMED,
                parcel_id=parcel_id, delivery_id=delivery_id, tracking_code=tracking_code
            ))

        return delivery

    @staticmethod
    async def dispatch(db: AsyncSession, delivery_id: int, actor: Actor) -> Delivery:
        """
        Hand the parcel to a courier.

        Raises:
            ConflictError: If payment is not CONFIRMED
            IllegalTransitionError: If the parcel is not DELIVERY_REQUESTED
        """
        async with UnitOfWork(db, actor) as uow:
            delivery = await DeliveryService._load_for_update(db, delivery_id)

            if delivery.payment_status != PaymentStatus.CONFIRMED:
                raise ConflictError(
                    "Payment must be confirmed before dispatch",
                    details={"delivery_id": delivery.id, "payment_status": delivery.payment_status.value}
                )

            parcel = await ParcelService.load_for_update(db, delivery.parcel_id)
            if parcel.state != ParcelState.DELIVERY_REQUESTED:
                raise IllegalTransitionError(
                    f"Only DELIVERY_REQUESTED parcels can be dispatched (current: {parcel.state.value})",
                    from_state=parcel.state,
                    to_state=ParcelState.OUT_FOR_DELIVERY
                )

            delivery.dispatched_at = utcnow()
            previous_state = await ParcelService.apply_transition(
                uow, parcel, ParcelState.OUT_FOR_DELIVERY, "Parcel dispatched for delivery", audit=False
            )

            await uow.audit(
                AuditAction.DELIVERY_DISPATCHED,
                AuditEntity.DELIVERY,
                delivery.id,
                previous_data={"parcel_state": previous_state.value},
                new_data={"parcel_state": parcel.state.value, "dispatched_at": delivery.dispatched_at.isoformat()},
                parcel_id=parcel.id,
                delivery_id=delivery.id,
            )

            recipient_id, parcel_id, tracking_code = delivery.recipient_id, parcel.id, parcel.tracking_code
            uow.on_commit(lambda: NotificationService.publish(
                recipient_id, NotificationType.OUT_FOR_DELIVERY,
                parcel_id=parcel_id, delivery_id=delivery_id, tracking_code=tracking_code
            ))

        logger.info("Delivery dispatched", extra={"delivery_id": delivery.id, "parcel_id": delivery.parcel_id})
        return delivery

    @staticmethod
    async def complete(db: AsyncSession, delivery_id: int, actor: Actor) -> Delivery:
        """
        Mark the parcel delivered.

        Raises:
            IllegalTransitionError: If the parcel is not OUT_FOR_DELIVERY
        """
        async with UnitOfWork(db, actor) as uow:
            delivery = await DeliveryService._load_for_update(db, delivery_id)
            parcel = await ParcelService.load_for_update(db, delivery.parcel_id)

            if parcel.state != ParcelState.OUT_FOR_DELIVERY:
                raise IllegalTransitionError(
                    f"Only OUT_FOR_DELIVERY parcels can be completed (current: {parcel.state.value})",
                    from_state=parcel.state,
                    to_state=ParcelState.DELIVERED
                )

            delivery.delivered_at = utcnow()
            previous_state = await ParcelService.apply_transition(
                uow, parcel, ParcelState.DELIVERED, "Parcel delivered to recipient", audit=False
            )

            await uow.audit(
                AuditAction.DELIVERY_COMPLETED,
                AuditEntity.DELIVERY,
                delivery.id,
                previous_data={"parcel_state": previous_state.value},
                new_data={"parcel_state": parcel.state.value, "delivered_at": delivery.delivered_at.isoformat()},
                parcel_id=parcel.id,
                delivery_id=delivery.id,
            )

            recipient_id, parcel_id, tracking_code = delivery.recipient_id, parcel.id, parcel.tracking_code
            uow.on_commit(lambda: NotificationService.publish(
                recipient_id, NotificationType.DELIVERED,
                parcel_id=parcel_id, delivery_id=delivery_id, tracking_code=tracking_code
            ))

        logger.info("Delivery completed", extra={"delivery_id": delivery.id, "parcel_id": delivery.parcel_id})
        return delivery

    # Reads

    @staticmethod
    async def get_delivery(db: AsyncSession, delivery_id: int, actor: Optional[Actor] = None) -> Delivery:
        result = await db.execute(select(Delivery).where(Delivery.id == delivery_id))
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise ResourceNotFoundError("Delivery", delivery_id)
        if actor is not None and not actor.is_staff and delivery.recipient_id != actor.id:
            raise ForbiddenError("You do not have access to this delivery")
        return delivery

    @staticmethod
    async def list_deliveries(
        db: AsyncSession,
        payment_status: Optional[PaymentStatus] = None,
        recipient_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Delivery], int]:
        """Deliveries, newest request first."""
        conditions = []
        if payment_status is not None:
            conditions.append(Delivery.payment_status == payment_status)
        if recipient_id is not None:
            conditions.append(Delivery.recipient_id == recipient_id)

        total = (await db.execute(select(func.count()).select_from(Delivery).where(*conditions))).scalar_one()

        result = await db.execute(
            select(Delivery)
            .where(*conditions)
            .order_by(Delivery.requested_at.desc(), Delivery.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def list_for_recipient(
        db: AsyncSession,
        recipient_id: int,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Delivery], int]:
        return await DeliveryService.list_deliveries(db, recipient_id=recipient_id, page=page, page_size=page_size)
