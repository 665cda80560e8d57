"""
Parcel Exception Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from warehouse_backend.app.models.parcel_enums import ExceptionType, ExceptionStatus


class ExceptionCreate(BaseModel):
    """Schema for reporting a parcel exception."""
    parcel_id: int
    type: ExceptionType
    description: str = Field(..., min_length=1, max_length=1000)


class ExceptionResolve(BaseModel):
    resolution: str = Field(..., min_length=1, max_length=2000)


class ExceptionResponse(BaseModel):
    """Schema for exception response."""
    id: int
    parcel_id: int
    type: ExceptionType
    status: ExceptionStatus
    description: str
    resolution: Optional[str]
    created_by_id: int
    handled_by_id: Optional[int]
    resolved_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ExceptionListResponse(BaseModel):
    exceptions: List[ExceptionResponse]
    total: int
    page: int
    page_size: int
