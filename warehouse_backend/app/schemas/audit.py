"""
Audit log Pydantic schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Dict, Any
from warehouse_backend.app.models.enums import UserRole


class AuditLogResponse(BaseModel):
    id: int
    actor_id: Optional[int]
    actor_role: Optional[UserRole]
    action: str
    entity_type: str
    entity_id: int
    previous_data: Optional[Dict[str, Any]]
    new_data: Optional[Dict[str, Any]]
    meta_data: Optional[Dict[str, Any]]
    parcel_id: Optional[int]
    delivery_id: Optional[int]
    exception_id: Optional[int]
    ip_address: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
