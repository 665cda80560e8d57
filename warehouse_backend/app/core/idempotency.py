"""
HTTP glue for idempotent endpoints.
"""

from typing import Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from warehouse_backend.app.core.dependencies import Actor
from warehouse_backend.app.services.idempotency import IdempotencyService, Operation

REPLAY_HEADER = "Idempotent-Replayed"


async def idempotent_response(
    db: AsyncSession,
    request: Request,
    actor: Actor,
    key: Optional[str],
    operation: Operation
) -> JSONResponse:
    """
    Run an endpoint body through the idempotency cache.

    Usage:
        async def run():
            delivery = await DeliveryService.request_delivery(...)
            return 201, DeliveryResponse.model_validate(delivery).model_dump(mode="json")

        return await idempotent_response(db, request, actor, idempotency_key, run)
    """
    result = await IdempotencyService.execute(
        db,
        key=key,
        endpoint=request.url.path,
        method=request.method,
        user_id=actor.id,
        operation=operation,
    )
    return JSONResponse(
        status_code=result.status_code,
        content=result.body,
        headers={REPLAY_HEADER: "true" if result.replayed else "false"},
    )
