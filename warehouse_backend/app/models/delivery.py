"""
Delivery database model.

One delivery per parcel, carrying the fee snapshot computed at request time.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Enum, CheckConstraint
from warehouse_backend.app.db.session import Base
from warehouse_backend.app.models.delivery_enums import PaymentStatus
from warehouse_backend.app.core.clock import utcnow


class Delivery(Base):
    """
    Delivery model.

    Fees are frozen on creation so later fee configuration changes never
    alter what the recipient was quoted.
    """
    __tablename__ = "deliveries"
    __table_args__ = (
        CheckConstraint(
            "payment_status != 'CONFIRMED' OR "
            "(payment_confirmed_at IS NOT NULL AND payment_confirmed_by_id IS NOT NULL)",
            name="ck_deliveries_payment_confirmation_complete"
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    parcel_id = Column(Integer, ForeignKey('parcels.id'), unique=True, nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Destination
    delivery_street = Column(String(255), nullable=False)
    delivery_city = Column(String(100), nullable=False)
    delivery_province = Column(String(100), nullable=False)
    delivery_zip_code = Column(String(20), nullable=False)

    # Fee breakdown
    weight_kg = Column(Float, nullable=False)
    base_fee = Column(Float, nullable=False)
    weight_fee = Column(Float, nullable=False)
    total_fee = Column(Float, nullable=False)

    # Payment
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)
    payment_confirmed_at = Column(DateTime, nullable=True)
    payment_confirmed_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)

    # Progress
    requested_at = Column(DateTime, default=utcnow, nullable=False)
    dispatched_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Delivery(id={self.id}, parcel_id={self.parcel_id}, payment='{self.payment_status.value}')>"
