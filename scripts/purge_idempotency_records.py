"""
Idempotency record purge.

Deletes cached responses whose TTL has passed. Schedule periodically, e.g.
hourly from cron:

    python -m scripts.purge_idempotency_records
"""

import asyncio
import logging

from warehouse_backend.app.core.config import settings
from warehouse_backend.app.core.observability import configure_logging
from warehouse_backend.app.db.session import AsyncSessionLocal
from warehouse_backend.app.services.idempotency import IdempotencyService

logger = logging.getLogger("warehouse.maintenance")


async def purge_idempotency_records() -> int:
    async with AsyncSessionLocal() as db:
        removed = await IdempotencyService.purge_expired(db)
    logger.info("Purged expired idempotency records", extra={"removed": removed})
    return removed


if __name__ == "__main__":
    configure_logging(settings.log_level)
    asyncio.run(purge_idempotency_records())
