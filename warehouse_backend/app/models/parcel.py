"""
Parcel database model.

A parcel is registered at intake and moves through the lifecycle states
defined in `parcel_enums.ParcelState`.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Enum, Boolean, CheckConstraint
from warehouse_backend.app.db.session import Base
from warehouse_backend.app.models.parcel_enums import ParcelState
from warehouse_backend.app.core.clock import utcnow

MIN_PARCEL_WEIGHT_KG = 0.01
MAX_PARCEL_WEIGHT_KG = 50.0
MEMBER_CODE_MAX_LENGTH = 10


class Parcel(Base):
    """
    Parcel model for the warehouse.

    `has_exception` is a projection of the parcel's open exceptions and locks
    the parcel out of normal lifecycle transitions. An orphan parcel (no owner)
    is always locked; the check constraint backs this up at the storage layer.
    """
    __tablename__ = "parcels"
    __table_args__ = (
        CheckConstraint("owner_id IS NOT NULL OR has_exception", name="ck_parcels_orphan_must_be_exception"),
        CheckConstraint(
            f"weight_kg >= {MIN_PARCEL_WEIGHT_KG} AND weight_kg <= {MAX_PARCEL_WEIGHT_KG}",
            name="ck_parcels_weight_range"
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Parcel identification
    tracking_code = Column(String(100), unique=True, nullable=False, index=True)
    member_code = Column(String(MEMBER_CODE_MAX_LENGTH), nullable=True, index=True)
    description = Column(String(500), nullable=True)

    # Ownership - null owner means the parcel is an orphan
    owner_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    registered_by_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    # Physical properties
    weight_kg = Column(Float, nullable=False)

    # Lifecycle
    state = Column(Enum(ParcelState), default=ParcelState.ARRIVED, nullable=False, index=True)
    has_exception = Column(Boolean, default=False, nullable=False, index=True)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)

    # Timestamps
    arrived_at = Column(DateTime, default=utcnow, nullable=False)
    stored_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_orphan(self) -> bool:
        return self.owner_id is None

    def __repr__(self):
        return f"<Parcel(id={self.id}, tracking='{self.tracking_code}', state='{self.state.value}')>"
