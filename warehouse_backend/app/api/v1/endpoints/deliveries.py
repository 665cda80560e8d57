"""
Delivery API Endpoints.

Members request delivery of their stored parcels; staff confirm payment,
dispatch and complete.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Header, Query, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from warehouse_backend.app.db.session import get_db
from warehouse_backend.app.core.dependencies import Actor, get_actor
from warehouse_backend.app.core.guards import require_staff
from warehouse_backend.app.core.idempotency import idempotent_response
from warehouse_backend.app.models.delivery_enums import PaymentStatus
from warehouse_backend.app.schemas.delivery import (
    DeliveryRequest, DeliveryResponse, DeliveryListResponse, FeeEstimateResponse
)
from warehouse_backend.app.services.delivery_service import DeliveryService

router = APIRouter(prefix="/deliveries", tags=["Deliveries"])


def _dump(delivery) -> dict:
    return DeliveryResponse.model_validate(delivery).model_dump(mode="json")


@router.get("/fee-estimate/{parcel_id}", response_model=FeeEstimateResponse)
async def get_fee_estimate(
    parcel_id: int = Path(...),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """Preview the delivery fee for one of the caller's parcels."""
    parcel, quote = await DeliveryService.get_fee_estimate(db, parcel_id, actor)
    return FeeEstimateResponse(
        parcel_id=parcel.id,
        weight_kg=quote.weight_kg,
        rounded_weight_kg=quote.rounded_weight_kg,
        base_fee=quote.base_fee,
        per_kg_rate=quote.per_kg_rate,
        weight_fee=quote.weight_fee,
        total_fee=quote.total_fee
    )


@router.post("", response_model=DeliveryResponse, status_code=status.HTTP_201_CREATED)
async def request_delivery(
    request: Request,
    payload: DeliveryRequest,
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Request delivery of a stored parcel.

    Send an `Idempotency-Key` header so a retried request cannot create a
    second delivery.
    """
    async def run():
        delivery = await DeliveryService.request_delivery(
            db, payload.parcel_id, actor,
            street=payload.street,
            city=payload.city,
            province=payload.province,
            zip_code=payload.zip_code,
        )
        return status.HTTP_201_CREATED, _dump(delivery)

    return await idempotent_response(db, request, actor, idempotency_key, run)


@router.get("", response_model=DeliveryListResponse)
async def list_deliveries(
    payment_status: Optional[PaymentStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    deliveries, total = await DeliveryService.list_deliveries(
        db, payment_status=payment_status, page=page, page_size=page_size
    )
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.model_validate(d) for d in deliveries],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/mine", response_model=DeliveryListResponse)
async def list_my_deliveries(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    deliveries, total = await DeliveryService.list_for_recipient(db, actor.id, page=page, page_size=page_size)
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.model_validate(d) for d in deliveries],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    delivery_id: int = Path(...),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    return await DeliveryService.get_delivery(db, delivery_id, actor)


@router.post("/{delivery_id}/confirm-payment", response_model=DeliveryResponse)
async def confirm_payment(
    request: Request,
    delivery_id: int = Path(...),
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    async def run():
        delivery = await DeliveryService.confirm_payment(db, delivery_id, actor)
        return status.HTTP_200_OK, _dump(delivery)

    return await idempotent_response(db, request, actor, idempotency_key, run)


@router.post("/{delivery_id}/dispatch", response_model=DeliveryResponse)
async def dispatch_delivery(
    request: Request,
    delivery_id: int = Path(...),
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    async def run():
        delivery = await DeliveryService.dispatch(db, delivery_id, actor)
        return status.HTTP_200_OK, _dump(delivery)

    return await idempotent_response(db, request, actor, idempotency_key, run)


@router.post("/{delivery_id}/complete", response_model=DeliveryResponse)
async def complete_delivery(
    request: Request,
    delivery_id: int = Path(...),
    idempotency_key: Optional[str] = Header(None),
    actor: Actor = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    async def run():
        delivery = await DeliveryService.complete(db, delivery_id, actor)
        return status.HTTP_200_OK, _dump(delivery)

    return await idempotent_response(db, request, actor, idempotency_key, run)
