"""
Delivery Pydantic schemas.

Defines request and response models for delivery fulfillment.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from warehouse_backend.app.models.delivery_enums import PaymentStatus


class DeliveryRequest(BaseModel):
    """Schema for requesting delivery of a stored parcel."""
    parcel_id: int
    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    province: str = Field(..., min_length=1, max_length=100)
    zip_code: str = Field(..., min_length=1, max_length=20)


class FeeEstimateResponse(BaseModel):
    """Fee preview before requesting delivery."""
    parcel_id: int
    weight_kg: float
    rounded_weight_kg: int
    base_fee: float
    per_kg_rate: float
    weight_fee: float
    total_fee: float


class DeliveryResponse(BaseModel):
    """Schema for delivery response."""
    id: int
    parcel_id: int
    recipient_id: int
    delivery_street: str
    delivery_city: str
    delivery_province: str
    delivery_zip_code: str
    weight_kg: float
    base_fee: float
    weight_fee: float
    total_fee: float
    payment_status: PaymentStatus
    payment_confirmed_at: Optional[datetime]
    payment_confirmed_by_id: Optional[int]
    requested_at: datetime
    dispatched_at: Optional[datetime]
    delivered_at: Optional[datetime]

    class Config:
        from_attributes = True


class DeliveryListResponse(BaseModel):
    deliveries: List[DeliveryResponse]
    total: int
    page: int
    page_size: int
