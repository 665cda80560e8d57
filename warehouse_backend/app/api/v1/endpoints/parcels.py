"""
Parcel API Endpoints.

Staff register parcels and move them through the lifecycle; admins correct
ownership and delete; members read their own parcels.
"""

from typing import Optional, List
from fastapi import APIRouter, Depends, Header, Query, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from warehouse_backend.app.db.session import get_db
from warehouse_backend.app.core.dependencies import Actor, get_actor
from warehouse_backend.app.core.guards import require_staff, require_admin
from warehouse_backend.app.core.idempotency import idempotent_response
from warehouse_backend.app.models.parcel_enums import ParcelState
from warehouse_backend.app.schemas.parcel import (
    ParcelIntake, ParcelStateUpdate, OwnershipOverride,
    ParcelResponse, ParcelListResponse, StateHistoryResponse, NextStatesResponse
)
from warehouse_backend.app.services.parcel_service import ParcelService

router = APIRouter(prefix="/parcels", tags=["Parcels"])


def _dump(parcel) -> dict:
    return ParcelResponse.model_validate(parcel).model_dump(mode="json")


@router.post("", response_model=ParcelResponse, status_code=status.HTTP_201_CREATED)
async def intake_parcel(
    request: Request,
    payload: ParcelIntake,
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    """
    Register an arriving parcel (Staff/Admin).

    Unresolvable member codes produce an orphan parcel with an open exception.
    """
    async def run():
        parcel = await ParcelService.intake(
            db, actor,
            tracking_code=payload.tracking_code,
            weight_kg=payload.weight_kg,
            member_code=payload.member_code,
            description=payload.description,
        )
        return status.HTTP_201_CREATED, _dump(parcel)

    return await idempotent_response(db, request, actor, idempotency_key, run)


@router.get("", response_model=ParcelListResponse)
async def list_parcels(
    state: Optional[ParcelState] = Query(None),
    has_exception: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    """List visible parcels, newest first (Staff/Admin)."""
    parcels, total = await ParcelService.list_parcels(
        db, state=state, has_exception=has_exception, page=page, page_size=page_size
    )
    return ParcelListResponse(
        parcels=[ParcelResponse.model_validate(p) for p in parcels],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/mine", response_model=ParcelListResponse)
async def list_my_parcels(
    state: Optional[ParcelState] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """List parcels owned by the caller."""
    parcels, total = await ParcelService.list_owned_parcels(
        db, actor.id, state=state, page=page, page_size=page_size
    )
    return ParcelListResponse(
        parcels=[ParcelResponse.model_validate(p) for p in parcels],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/tracking/{tracking_code}", response_model=ParcelResponse)
async def get_parcel_by_tracking_code(
    tracking_code: str = Path(..., max_length=100),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    return await ParcelService.get_by_tracking_code(db, tracking_code)


@router.get("/{parcel_id}", response_model=ParcelResponse)
async def get_parcel(
    parcel_id: int = Path(...),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """Get a parcel. Members may only read their own."""
    return await ParcelService.get_parcel(db, parcel_id, actor)


@router.get("/{parcel_id}/history", response_model=List[StateHistoryResponse])
async def get_parcel_history(
    parcel_id: int = Path(...),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """State history ledger, oldest first."""
    return await ParcelService.get_state_history(db, parcel_id, actor)


@router.get("/{parcel_id}/next-states", response_model=NextStatesResponse)
async def get_next_states(
    parcel_id: int = Path(...),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    parcel = await ParcelService.get_parcel(db, parcel_id)
    return NextStatesResponse(
        parcel_id=parcel.id,
        current_state=parcel.state,
        has_exception=parcel.has_exception,
        next_states=ParcelService.get_next_states(parcel, actor)
    )


@router.patch("/{parcel_id}/state", response_model=ParcelResponse)
async def update_parcel_state(
    request: Request,
    payload: ParcelStateUpdate,
    parcel_id: int = Path(...),
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a parcel to a new state (Staff/Admin).

    Admins may additionally move parcels back to STORED and bypass the
    exception lock.
    """
    async def run():
        parcel = await ParcelService.transition_state(db, parcel_id, payload.state, actor, payload.notes)
        return status.HTTP_200_OK, _dump(parcel)

    return await idempotent_response(db, request, actor, idempotency_key, run)


@router.patch("/{parcel_id}/owner", response_model=ParcelResponse)
async def override_parcel_owner(
    request: Request,
    payload: OwnershipOverride,
    parcel_id: int = Path(...),
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Correct a parcel's owner (Admin only)."""
    async def run():
        parcel = await ParcelService.override_ownership(db, parcel_id, payload.member_code, payload.reason, actor)
        return status.HTTP_200_OK, _dump(parcel)

    return await idempotent_response(db, request, actor, idempotency_key, run)


@router.delete("/{parcel_id}", response_model=ParcelResponse)
async def delete_parcel(
    parcel_id: int = Path(...),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Soft-delete a parcel (Admin only)."""
    return await ParcelService.soft_delete(db, parcel_id, actor)
