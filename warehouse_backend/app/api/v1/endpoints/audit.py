"""
Audit Trail API Endpoints (Admin only).
"""

from datetime import datetime
from typing import Optional, List
from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from warehouse_backend.app.db.session import get_db
from warehouse_backend.app.core.dependencies import Actor
from warehouse_backend.app.core.guards import require_admin
from warehouse_backend.app.schemas.audit import AuditLogResponse, AuditLogListResponse
from warehouse_backend.app.services import audit

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get("", response_model=AuditLogListResponse)
async def search_audit_logs(
    actor_id: Optional[int] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[int] = Query(None),
    action: Optional[str] = Query(None),
    parcel_id: Optional[int] = Query(None),
    start_time: Optional[datetime] = Query(None),
    end_time: Optional[datetime] = Query(None),
    newest_first: bool = Query(True),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    filters = audit.AuditFilters(
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        parcel_id=parcel_id,
        start_time=start_time,
        end_time=end_time,
    )
    logs, total = await audit.get_audit_trail(db, filters, page=page, page_size=page_size, newest_first=newest_first)
    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/parcels/{parcel_id}", response_model=List[AuditLogResponse])
async def get_parcel_timeline(
    parcel_id: int = Path(...),
    newest_first: bool = Query(False),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Everything recorded against a parcel, its exceptions and its delivery."""
    return await audit.get_parcel_timeline(db, parcel_id, newest_first=newest_first)


@router.get("/entities/{entity_type}/{entity_id}", response_model=List[AuditLogResponse])
async def get_entity_timeline(
    entity_type: str = Path(...),
    entity_id: int = Path(...),
    newest_first: bool = Query(False),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await audit.get_entity_timeline(db, entity_type, entity_id, newest_first=newest_first)
