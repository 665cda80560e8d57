"""
Idempotency service for critical mutating operations.

A client retrying a request with the same `Idempotency-Key` gets the first
response back verbatim instead of applying the effect twice.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from warehouse_backend.app.core.clock import utcnow
from warehouse_backend.app.core.config import settings
from warehouse_backend.app.core.exceptions import ValidationError, ConflictError
from warehouse_backend.app.models.idempotency_record import IdempotencyRecord

logger = logging.getLogger("warehouse.idempotency")

Operation = Callable[[], Awaitable[Tuple[int, Any]]]


@dataclass(frozen=True)
class IdempotentResult:
    status_code: int
    body: Any
    replayed: bool = False


class IdempotencyService:
    """
    Database-backed response cache keyed by (key, endpoint, method).

    Under a true race two first-time requests with the same key can both run
    the operation; the second insert loses and is logged. Effects are
    at-least-once in that window.
    """

    @staticmethod
    def validate_key(key: str) -> None:
        """
        Raises:
            ValidationError: If the key length is outside the configured bounds
        """
        min_length = settings.idempotency_key_min_length
        max_length = settings.idempotency_key_max_length
        if len(key) < min_length or len(key) > max_length:
            raise ValidationError(
                f"Idempotency-Key must be between {min_length} and {max_length} characters",
                details={"length": len(key)}
            )

    @staticmethod
    async def lookup(db: AsyncSession, key: str, endpoint: str, method: str) -> Optional[IdempotencyRecord]:
        """
        Return the live record for a key, or None.

        An expired record is deleted on sight.
        """
        result = await db.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.key == key,
                IdempotencyRecord.endpoint == endpoint,
                IdempotencyRecord.method == method
            )
        )
        record = result.scalar_one_or_none()

        if record is None:
            return None

        if record.expires_at <= utcnow():
            await db.delete(record)
            await db.commit()
            logger.info("Expired idempotency key removed", extra={"endpoint": endpoint, "method": method})
            return None

        return record

    @staticmethod
    async def store(
        db: AsyncSession,
        key: str,
        endpoint: str,
        method: str,
        user_id: Optional[int],
        status_code: int,
        body: Any
    ) -> None:
        """Persist a response. A concurrent duplicate insert is logged and ignored."""
        now = utcnow()
        record = IdempotencyRecord(
            key=key,
            endpoint=endpoint,
            method=method,
            user_id=user_id,
            status_code=status_code,
            response_body=body,
            created_at=now,
            expires_at=now + timedelta(hours=settings.idempotency_ttl_hours),
        )
        db.add(record)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.warning(
                "Idempotency key already stored by a concurrent request",
                extra={"endpoint": endpoint, "method": method}
            )

    @staticmethod
    async def execute(
        db: AsyncSession,
        key: Optional[str],
        endpoint: str,
        method: str,
        user_id: Optional[int],
        operation: Operation
    ) -> IdempotentResult:
        """
        Run `operation` at most once per key within the TTL.

        Args:
            db: Database session
            key: Client-supplied Idempotency-Key (None disables deduplication)
            endpoint: Request path
            method: HTTP method
            user_id: Calling user, stored for reference
            operation: Coroutine factory returning (status_code, json body)

        Returns:
            IdempotentResult, `replayed` set when served from the cache

        Raises:
            ValidationError: If the key is malformed, before the operation runs
            ConflictError: If the key is live for a different user, before the operation runs
        """
        if not key:
            status_code, body = await operation()
            return IdempotentResult(status_code, body)

        IdempotencyService.validate_key(key)

        existing = await IdempotencyService.lookup(db, key, endpoint, method)
        if existing:
            if existing.user_id != user_id:
                logger.warning(
                    "Idempotency key reused by another user",
                    extra={"endpoint": endpoint, "method": method, "user_id": user_id}
                )
                raise ConflictError(
                    "Idempotency-Key was already used by another caller",
                    details={"endpoint": endpoint, "method": method}
                )
            logger.info("Replaying cached response", extra={"endpoint": endpoint, "method": method})
            return IdempotentResult(existing.status_code, existing.response_body, replayed=True)

        status_code, body = await operation()

        if status_code < 400:
            await IdempotencyService.store(db, key, endpoint, method, user_id, status_code, body)

        return IdempotentResult(status_code, body)

    @staticmethod
    async def purge_expired(db: AsyncSession) -> int:
        """Delete every expired record. Returns the number removed."""
        result = await db.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= utcnow())
        )
        await db.commit()
        return result.rowcount or 0
