"""
Delivery Fulfillment Service tests.
"""

import pytest
from sqlalchemy import select

from warehouse_backend.app.core.exceptions import (
    ForbiddenError, ResourceNotFoundError, ConflictError, IllegalTransitionError
)
from warehouse_backend.app.models.audit_log import AuditLog
from warehouse_backend.app.models.delivery_enums import PaymentStatus
from warehouse_backend.app.models.fee_configuration import FeeConfiguration
from warehouse_backend.app.models.parcel_enums import ParcelState, ExceptionType
from warehouse_backend.app.models.user import User
from warehouse_backend.app.services.audit import AuditAction
from warehouse_backend.app.services.delivery_service import DeliveryService
from warehouse_backend.app.services.exception_service import ExceptionService
from warehouse_backend.app.services.parcel_service import ParcelService

from conftest import actor_for

ADDRESS = dict(street="12 Mabini St", city="Quezon City", province="Metro Manila", zip_code="1100")


@pytest.fixture
async def stored_parcel(db_session, staff, member):
    parcel = await ParcelService.intake(db_session, staff, "TRK-DLV-1", 3.5, member_code=member.member_code)
    return await ParcelService.transition_state(db_session, parcel.id, ParcelState.STORED, staff)


@pytest.mark.asyncio
async def test_default_fee_calculation(db_session):
    quote = await DeliveryService.calculate_fee(db_session, 3.5)

    assert quote.rounded_weight_kg == 4
    assert quote.base_fee == 50.0
    assert quote.weight_fee == 80.0
    assert quote.total_fee == 130.0
    assert quote.fee_configuration_id is None


@pytest.mark.asyncio
async def test_fee_band_selection(db_session):
    db_session.add_all([
        FeeConfiguration(name="light", base_fee=40.0, per_kg_rate=10.0, min_weight_kg=0.0, max_weight_kg=5.0),
        FeeConfiguration(name="heavy", base_fee=80.0, per_kg_rate=15.0, min_weight_kg=5.0, max_weight_kg=None),
        FeeConfiguration(name="retired", base_fee=1.0, per_kg_rate=1.0, min_weight_kg=4.0, is_active=False),
    ])
    await db_session.commit()

    light = await DeliveryService.calculate_fee(db_session, 4.2)
    assert light.base_fee == 40.0
    assert light.total_fee == 40.0 + 5 * 10.0

    # Upper bound is exclusive
    heavy = await DeliveryService.calculate_fee(db_session, 5.0)
    assert heavy.base_fee == 80.0
    assert heavy.total_fee == 80.0 + 5 * 15.0


@pytest.mark.asyncio
async def test_fee_estimate_is_owner_only(db_session, stored_parcel, member_actor, other_member):
    parcel, quote = await DeliveryService.get_fee_estimate(db_session, stored_parcel.id, member_actor)
    assert parcel.id == stored_parcel.id
    assert quote.total_fee == 130.0

    with pytest.raises(ForbiddenError):
        await DeliveryService.get_fee_estimate(db_session, stored_parcel.id, actor_for(other_member))


@pytest.mark.asyncio
async def test_request_delivery(db_session, stored_parcel, member, member_actor):
    delivery = await DeliveryService.request_delivery(db_session, stored_parcel.id, member_actor, **ADDRESS)

    assert delivery.payment_status == PaymentStatus.PENDING
    assert delivery.recipient_id == member.id
    assert delivery.weight_kg == 3.5
    assert delivery.total_fee == 130.0

    parcel = await ParcelService.get_parcel(db_session, stored_parcel.id)
    assert parcel.state == ParcelState.DELIVERY_REQUESTED

    history = await ParcelService.get_state_history(db_session, parcel.id)
    assert history[-1].notes == "Delivery requested by user"

    user = (await db_session.execute(select(User).where(User.id == member.id))).scalar_one()
    assert user.delivery_city == "Quezon City"

    actions = (await db_session.execute(
        select(AuditLog.action).where(AuditLog.delivery_id == delivery.id)
    )).scalars().all()
    assert list(actions) == [AuditAction.DELIVERY_REQUESTED]


@pytest.mark.asyncio
async def test_request_delivery_not_owner(db_session, stored_parcel, other_member):
    with pytest.raises(ForbiddenError):
        await DeliveryService.request_delivery(db_session, stored_parcel.id, actor_for(other_member), **ADDRESS)


@pytest.mark.asyncio
async def test_request_delivery_requires_stored(db_session, staff, member, member_actor):
    parcel = await ParcelService.intake(db_session, staff, "TRK-DLV-2", 1.0, member_code=member.member_code)

    with pytest.raises(IllegalTransitionError):
        await DeliveryService.request_delivery(db_session, parcel.id, member_actor, **ADDRESS)


@pytest.mark.asyncio
async def test_request_delivery_twice_conflicts(db_session, stored_parcel, admin, member_actor):
    await DeliveryService.request_delivery(db_session, stored_parcel.id, member_actor, **ADDRESS)
    # Admin puts the parcel back on the shelf; the delivery record stays
    await ParcelService.transition_state(db_session, stored_parcel.id, ParcelState.STORED, admin, "User cancelled")

    with pytest.raises(ConflictError):
        await DeliveryService.request_delivery(db_session, stored_parcel.id, member_actor, **ADDRESS)


@pytest.mark.asyncio
async def test_request_delivery_locked_parcel_forbidden(db_session, stored_parcel, staff, member_actor):
    await ExceptionService.create(db_session, stored_parcel.id, ExceptionType.DAMAGED_PARCEL, "Wet box", staff)

    with pytest.raises(ForbiddenError):
        await DeliveryService.request_delivery(db_session, stored_parcel.id, member_actor, **ADDRESS)


@pytest.mark.asyncio
async def test_request_delivery_missing_parcel(db_session, member_actor):
    with pytest.raises(ResourceNotFoundError):
        await DeliveryService.request_delivery(db_session, 4242, member_actor, **ADDRESS)


@pytest.mark.asyncio
async def test_full_fulfillment_flow(db_session, stored_parcel, staff, member_actor, mock_redis):
    parcel_id = stored_parcel.id
    delivery = await DeliveryService.request_delivery(db_session, parcel_id, member_actor, **ADDRESS)
    delivery_id = delivery.id

    with pytest.raises(ConflictError):
        await DeliveryService.dispatch(db_session, delivery_id, staff)

    delivery = await DeliveryService.confirm_payment(db_session, delivery_id, staff)
    assert delivery.payment_status == PaymentStatus.CONFIRMED
    assert delivery.payment_confirmed_by_id == staff.id
    assert delivery.payment_confirmed_at is not None

    with pytest.raises(ConflictError):
        await DeliveryService.confirm_payment(db_session, delivery_id, staff)

    with pytest.raises(IllegalTransitionError):
        await DeliveryService.complete(db_session, delivery_id, staff)

    delivery = await DeliveryService.dispatch(db_session, delivery_id, staff)
    assert delivery.dispatched_at is not None

    delivery = await DeliveryService.complete(db_session, delivery_id, staff)
    assert delivery.delivered_at is not None

    parcel = await ParcelService.get_parcel(db_session, parcel_id)
    assert parcel.state == ParcelState.DELIVERED

    history = await ParcelService.get_state_history(db_session, parcel.id)
    assert [h.to_state for h in history] == [
        ParcelState.ARRIVED,
        ParcelState.STORED,
        ParcelState.DELIVERY_REQUESTED,
        ParcelState.OUT_FOR_DELIVERY,
        ParcelState.DELIVERED,
    ]

    types = [m for _, m in mock_redis.published]
    assert any('"DELIVERED"' in m for m in types)


@pytest.mark.asyncio
async def test_refunded_payment_cannot_be_confirmed(db_session, stored_parcel, staff, member_actor):
    delivery = await DeliveryService.request_delivery(db_session, stored_parcel.id, member_actor, **ADDRESS)
    delivery.payment_status = PaymentStatus.REFUNDED
    await db_session.commit()

    with pytest.raises(ConflictError):
        await DeliveryService.confirm_payment(db_session, delivery.id, staff)


@pytest.mark.asyncio
async def test_failed_payment_can_be_retried(db_session, stored_parcel, staff, member_actor):
    delivery = await DeliveryService.request_delivery(db_session, stored_parcel.id, member_actor, **ADDRESS)
    delivery.payment_status = PaymentStatus.FAILED
    await db_session.commit()

    delivery = await DeliveryService.confirm_payment(db_session, delivery.id, staff)
    assert delivery.payment_status == PaymentStatus.CONFIRMED


@pytest.mark.asyncio
async def test_delivery_reads(db_session, stored_parcel, staff, member_actor, other_member):
    delivery = await DeliveryService.request_delivery(db_session, stored_parcel.id, member_actor, **ADDRESS)

    assert (await DeliveryService.get_delivery(db_session, delivery.id, member_actor)).id == delivery.id
    assert (await DeliveryService.get_delivery(db_session, delivery.id, staff)).id == delivery.id
    with pytest.raises(ForbiddenError):
        await DeliveryService.get_delivery(db_session, delivery.id, actor_for(other_member))

    deliveries, total = await DeliveryService.list_deliveries(db_session, payment_status=PaymentStatus.PENDING)
    assert total == 1

    deliveries, total = await DeliveryService.list_for_recipient(db_session, other_member.id)
    assert total == 0
