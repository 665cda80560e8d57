"""
Parcel Pydantic schemas.

Defines request and response models for parcel intake and lifecycle.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from warehouse_backend.app.models.parcel_enums import ParcelState

MEMBER_CODE_PATTERN = r"^PHW-[A-Z0-9]{6}$"


class ParcelIntake(BaseModel):
    """Schema for registering an arriving parcel."""
    tracking_code: str = Field(..., min_length=1, max_length=100, description="Carrier tracking code")
    member_code: Optional[str] = Field(None, max_length=10, description="Member code as written on the label")
    weight_kg: float = Field(..., ge=0.01, le=50.0, description="Weight in kilograms")
    description: Optional[str] = Field(None, max_length=500)


class ParcelStateUpdate(BaseModel):
    """Schema for moving a parcel to its next state."""
    state: ParcelState
    notes: Optional[str] = Field(None, max_length=500)


class OwnershipOverride(BaseModel):
    """Schema for an admin ownership correction. A null member code clears the owner."""
    member_code: Optional[str] = Field(None, pattern=MEMBER_CODE_PATTERN)
    reason: str = Field(..., min_length=10, max_length=500)


class ParcelResponse(BaseModel):
    """Schema for parcel response."""
    id: int
    tracking_code: str
    member_code: Optional[str]
    description: Optional[str]
    owner_id: Optional[int]
    registered_by_id: int
    weight_kg: float
    state: ParcelState
    has_exception: bool
    arrived_at: datetime
    stored_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ParcelListResponse(BaseModel):
    """Schema for paginated parcel list."""
    parcels: List[ParcelResponse]
    total: int
    page: int
    page_size: int


class StateHistoryResponse(BaseModel):
    id: int
    parcel_id: int
    from_state: Optional[ParcelState]
    to_state: ParcelState
    changed_by_id: int
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class NextStatesResponse(BaseModel):
    parcel_id: int
    current_state: ParcelState
    has_exception: bool
    next_states: List[ParcelState]
