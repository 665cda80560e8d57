"""
Parcel State History database model.

Append-only ledger of lifecycle transitions, independent of the audit log.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from warehouse_backend.app.db.session import Base
from warehouse_backend.app.models.parcel_enums import ParcelState
from warehouse_backend.app.core.clock import utcnow


class ParcelStateHistory(Base):
    """
    One row per transition. Read oldest-first it forms a gapless ledger whose
    last `to_state` equals the parcel's current state.
    """
    __tablename__ = "parcel_state_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    parcel_id = Column(Integer, ForeignKey('parcels.id'), nullable=False, index=True)
    from_state = Column(Enum(ParcelState), nullable=True)  # None for the intake entry
    to_state = Column(Enum(ParcelState), nullable=False)
    changed_by_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    notes = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        from_state = self.from_state.value if self.from_state else None
        return f"<ParcelStateHistory(parcel_id={self.parcel_id}, {from_state} -> {self.to_state.value})>"
