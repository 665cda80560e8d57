"""
Idempotency Record database model.

Caches the response of a mutating request under its caller-supplied key.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from warehouse_backend.app.db.session import Base
from warehouse_backend.app.core.clock import utcnow


class IdempotencyRecord(Base):
    """
    Cached response for a mutating request.

    Identity is (key, endpoint, method) so the same key sent to two different
    endpoints never collides. Records are read-only until they expire.
    """
    __tablename__ = "idempotency_records"

    key = Column(String(64), primary_key=True)
    endpoint = Column(String(255), primary_key=True)
    method = Column(String(10), primary_key=True)

    user_id = Column(Integer, nullable=True, index=True)
    status_code = Column(Integer, nullable=False)
    response_body = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<IdempotencyRecord(key='{self.key}', {self.method} {self.endpoint}, status={self.status_code})>"
