"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from warehouse_backend.app.api.v1.endpoints import parcels, parcel_exceptions, deliveries, audit

router = APIRouter()

# Parcel intake and lifecycle
router.include_router(parcels.router)

# Exception work queue
router.include_router(parcel_exceptions.router)

# Delivery fulfillment
router.include_router(deliveries.router)

# Audit trail (admin)
router.include_router(audit.router)
