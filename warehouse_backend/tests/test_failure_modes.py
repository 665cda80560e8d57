"""
Failure Injection Tests.

Validates that a failing audit write aborts the business change, and that
notification failures never do.
"""

import pytest
from sqlalchemy import select, func

from warehouse_backend.app.db import unit_of_work
from warehouse_backend.app.db.unit_of_work import UnitOfWork
from warehouse_backend.app.models.audit_log import AuditLog
from warehouse_backend.app.models.parcel import Parcel
from warehouse_backend.app.models.parcel_enums import ParcelState, ExceptionType
from warehouse_backend.app.models.parcel_exception import ParcelException
from warehouse_backend.app.models.parcel_state_history import ParcelStateHistory
from warehouse_backend.app.services.exception_service import ExceptionService
from warehouse_backend.app.services.notification_service import NotificationService, NotificationType
from warehouse_backend.app.services.parcel_service import ParcelService


async def count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_audit_failure_rolls_back_intake(db_session, staff, member, mocker):
    """If the audit entry cannot be written, the parcel is not registered either."""
    mocker.patch(
        "warehouse_backend.app.services.audit.record",
        side_effect=RuntimeError("audit store unavailable")
    )

    with pytest.raises(RuntimeError):
        await ParcelService.intake(db_session, staff, "TRK-FAIL-1", 1.0, member_code=member.member_code)

    assert await count(db_session, Parcel) == 0
    assert await count(db_session, ParcelStateHistory) == 0
    assert await count(db_session, AuditLog) == 0


@pytest.mark.asyncio
async def test_audit_failure_rolls_back_transition(db_session, staff, member, mocker):
    parcel = await ParcelService.intake(db_session, staff, "TRK-FAIL-2", 1.0, member_code=member.member_code)
    parcel_id = parcel.id

    mocker.patch(
        "warehouse_backend.app.services.audit.record",
        side_effect=RuntimeError("audit store unavailable")
    )
    with pytest.raises(RuntimeError):
        await ParcelService.transition_state(db_session, parcel_id, ParcelState.STORED, staff)
    mocker.stopall()

    parcel = await ParcelService.get_parcel(db_session, parcel_id)
    assert parcel.state == ParcelState.ARRIVED
    history = await ParcelService.get_state_history(db_session, parcel_id)
    assert len(history) == 1


@pytest.mark.asyncio
async def test_audit_failure_keeps_parcel_unlocked(db_session, staff, member, mocker):
    parcel = await ParcelService.intake(db_session, staff, "TRK-FAIL-3", 1.0, member_code=member.member_code)
    parcel_id = parcel.id

    mocker.patch(
        "warehouse_backend.app.services.audit.record",
        side_effect=RuntimeError("audit store unavailable")
    )
    with pytest.raises(RuntimeError):
        await ExceptionService.create(db_session, parcel_id, ExceptionType.DAMAGED_PARCEL, "Torn", staff)
    mocker.stopall()

    parcel = await ParcelService.get_parcel(db_session, parcel_id)
    assert parcel.has_exception is False
    assert await count(db_session, ParcelException) == 0


@pytest.mark.asyncio
async def test_redis_outage_does_not_fail_operation(db_session, staff, member, mock_redis):
    await mock_redis.aclose()

    parcel = await ParcelService.intake(db_session, staff, "TRK-FAIL-4", 1.0, member_code=member.member_code)

    assert parcel.id is not None
    assert mock_redis.published == []
    assert await count(db_session, Parcel) == 1


@pytest.mark.asyncio
async def test_publish_reports_failure(mock_redis):
    await mock_redis.aclose()

    published = await NotificationService.publish(
        1, NotificationType.PARCEL_ARRIVED, parcel_id=1, tracking_code="TRK-X"
    )
    assert published is False


@pytest.mark.asyncio
async def test_publish_skips_missing_user(mock_redis):
    published = await NotificationService.publish(None, NotificationType.PARCEL_ARRIVED, tracking_code="TRK-X")
    assert published is False
    assert mock_redis.published == []


@pytest.mark.asyncio
async def test_post_commit_callback_failure_keeps_commit(db_session, staff, member, mocker):
    mocker.patch.object(NotificationService, "publish", side_effect=RuntimeError("broker exploded"))
    uow_logger = mocker.patch.object(unit_of_work, "logger")

    parcel = await ParcelService.intake(db_session, staff, "TRK-FAIL-5", 1.0, member_code=member.member_code)

    assert parcel.id is not None
    assert await count(db_session, Parcel) == 1
    uow_logger.exception.assert_called_once_with("Post-commit callback failed")


@pytest.mark.asyncio
async def test_unit_of_work_drops_callbacks_on_error(db_session, staff):
    calls = []

    async def callback():
        calls.append("called")

    with pytest.raises(ValueError):
        async with UnitOfWork(db_session, staff) as uow:
            uow.on_commit(callback)
            raise ValueError("boom")

    assert calls == []


@pytest.mark.asyncio
async def test_unit_of_work_runs_callbacks_after_commit(db_session, staff):
    seen = []

    async def callback():
        seen.append(await count(db_session, AuditLog))

    async with UnitOfWork(db_session, staff) as uow:
        await uow.audit("TEST_ACTION", "parcel", 1)
        uow.on_commit(callback)

    assert seen == [1]
