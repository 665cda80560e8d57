"""
Audit Log Database Model.

Immutable record of every state-changing action in the warehouse.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Enum, ForeignKey
from warehouse_backend.app.db.session import Base
from warehouse_backend.app.models.enums import UserRole
from warehouse_backend.app.core.clock import utcnow


class AuditLog(Base):
    """
    Audit log model.

    Rows are written in the same transaction as the change they describe and
    are never updated or deleted (see `db/immutability.py`).
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action
    actor_id = Column(Integer, index=True, nullable=True)
    actor_role = Column(Enum(UserRole), nullable=True)

    # What action was performed, on which entity
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(Integer, nullable=False, index=True)

    # Snapshots
    previous_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)
    meta_data = Column(JSON, nullable=True)

    # Linked entities
    parcel_id = Column(Integer, ForeignKey('parcels.id'), nullable=True, index=True)
    delivery_id = Column(Integer, ForeignKey('deliveries.id'), nullable=True, index=True)
    exception_id = Column(Integer, ForeignKey('parcel_exceptions.id'), nullable=True, index=True)

    # Request context
    ip_address = Column(String(50), nullable=True)
    user_agent = Column(String(500), nullable=True)

    # Timestamp
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id}, actor={self.actor_id})>"
