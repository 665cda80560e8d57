"""
Parcel Exception API Endpoints.

Staff work queue for parcels pulled out of the normal flow.
"""

from typing import Optional, List
from fastapi import APIRouter, Depends, Header, Query, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from warehouse_backend.app.db.session import get_db
from warehouse_backend.app.core.dependencies import Actor
from warehouse_backend.app.core.guards import require_staff
from warehouse_backend.app.core.idempotency import idempotent_response
from warehouse_backend.app.models.parcel_enums import ExceptionType, ExceptionStatus
from warehouse_backend.app.schemas.parcel_exception import (
    ExceptionCreate, ExceptionResolve, ExceptionResponse, ExceptionListResponse
)
from warehouse_backend.app.services.exception_service import ExceptionService

router = APIRouter(prefix="/exceptions", tags=["Exceptions"])


def _dump(exception) -> dict:
    return ExceptionResponse.model_validate(exception).model_dump(mode="json")


@router.post("", response_model=ExceptionResponse, status_code=status.HTTP_201_CREATED)
async def create_exception(
    request: Request,
    payload: ExceptionCreate,
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    """Report an exception; the parcel is locked until it is closed."""
    async def run():
        exception = await ExceptionService.create(db, payload.parcel_id, payload.type, payload.description, actor)
        return status.HTTP_201_CREATED, _dump(exception)

    return await idempotent_response(db, request, actor, idempotency_key, run)


@router.get("", response_model=ExceptionListResponse)
async def list_exception_queue(
    status_filter: Optional[List[ExceptionStatus]] = Query(None, alias="status"),
    type: Optional[ExceptionType] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    """Exception queue, oldest first. Defaults to OPEN and IN_PROGRESS."""
    exceptions, total = await ExceptionService.list_queue(
        db, statuses=status_filter, type=type, page=page, page_size=page_size
    )
    return ExceptionListResponse(
        exceptions=[ExceptionResponse.model_validate(e) for e in exceptions],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/parcel/{parcel_id}", response_model=List[ExceptionResponse])
async def list_parcel_exceptions(
    parcel_id: int = Path(...),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    return await ExceptionService.list_for_parcel(db, parcel_id)


@router.get("/{exception_id}", response_model=ExceptionResponse)
async def get_exception(
    exception_id: int = Path(...),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    return await ExceptionService.get_exception(db, exception_id)


@router.post("/{exception_id}/assign", response_model=ExceptionResponse)
async def assign_exception(
    request: Request,
    exception_id: int = Path(...),
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    async def run():
        exception = await ExceptionService.assign(db, exception_id, actor)
        return status.HTTP_200_OK, _dump(exception)

    return await idempotent_response(db, request, actor, idempotency_key, run)


@router.post("/{exception_id}/resolve", response_model=ExceptionResponse)
async def resolve_exception(
    request: Request,
    payload: ExceptionResolve,
    exception_id: int = Path(...),
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    """Resolve an exception; unlocks the parcel when no open exceptions remain."""
    async def run():
        exception = await ExceptionService.resolve(db, exception_id, payload.resolution, actor)
        return status.HTTP_200_OK, _dump(exception)

    return await idempotent_response(db, request, actor, idempotency_key, run)


@router.post("/{exception_id}/cancel", response_model=ExceptionResponse)
async def cancel_exception(
    request: Request,
    exception_id: int = Path(...),
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    async def run():
        exception = await ExceptionService.cancel(db, exception_id, actor)
        return status.HTTP_200_OK, _dump(exception)

    return await idempotent_response(db, request, actor, idempotency_key, run)
