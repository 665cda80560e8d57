"""
FastAPI Application Entry Point.

This is the main application file for the Parcel Warehouse Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from warehouse_backend.app.core.config import settings
from warehouse_backend.app.api.v1.router import router as api_v1_router
from warehouse_backend.app.db.session import engine, Base
from warehouse_backend.app.db.immutability import register_immutability_listeners
from warehouse_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from warehouse_backend.app.core.redis_client import ping_redis, close_redis
from warehouse_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from warehouse_backend.app.models.user import User
from warehouse_backend.app.models.parcel import Parcel
from warehouse_backend.app.models.parcel_state_history import ParcelStateHistory
from warehouse_backend.app.models.parcel_exception import ParcelException
from warehouse_backend.app.models.delivery import Delivery
from warehouse_backend.app.models.fee_configuration import FeeConfiguration
from warehouse_backend.app.models.audit_log import AuditLog
from warehouse_backend.app.models.idempotency_record import IdempotencyRecord

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Registers the append-only listeners for audit and history rows.
    2. Creates database tables on startup.
    3. Closes the Redis pool on shutdown.
    """
    register_immutability_listeners()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_redis()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Parcel lifecycle backend for a single warehouse",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Redis is reported but not required; notifications degrade silently.
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to Parcel Warehouse Backend API",
        "docs": "/docs",
        "health": "/health",
    }
