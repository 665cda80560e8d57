"""
Parcel Exception database model.

An exception pulls a parcel out of the normal flow until staff close it.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, CheckConstraint
from warehouse_backend.app.db.session import Base
from warehouse_backend.app.models.parcel_enums import ExceptionType, ExceptionStatus
from warehouse_backend.app.core.clock import utcnow


class ParcelException(Base):
    """
    Exception raised against a parcel.

    Created at intake for orphan parcels or reported by staff. Immutable once
    RESOLVED or CANCELLED.
    """
    __tablename__ = "parcel_exceptions"
    __table_args__ = (
        CheckConstraint(
            "status != 'RESOLVED' OR "
            "(resolution IS NOT NULL AND handled_by_id IS NOT NULL AND resolved_at IS NOT NULL)",
            name="ck_parcel_exceptions_resolution_complete"
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    parcel_id = Column(Integer, ForeignKey('parcels.id'), nullable=False, index=True)
    type = Column(Enum(ExceptionType), nullable=False, index=True)
    status = Column(Enum(ExceptionStatus), default=ExceptionStatus.OPEN, nullable=False, index=True)

    description = Column(String(1000), nullable=False)
    resolution = Column(Text, nullable=True)

    created_by_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    handled_by_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<ParcelException(id={self.id}, parcel_id={self.parcel_id}, type='{self.type.value}', status='{self.status.value}')>"
