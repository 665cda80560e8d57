"""
ORM-level append-only enforcement.

Audit entries and parcel state history rows are written once and never
touched again. Listeners registered here fire before SQLAlchemy sends an
UPDATE or DELETE for those rows and abort the flush instead.
"""

import logging
from sqlalchemy import event

from warehouse_backend.app.core.exceptions import ImmutabilityViolationError
from warehouse_backend.app.models.audit_log import AuditLog
from warehouse_backend.app.models.parcel_state_history import ParcelStateHistory

logger = logging.getLogger("warehouse.db.immutability")


def _reject(entity_type: str, target, operation: str):
    logger.error(
        "Immutability violation blocked",
        extra={"entity_type": entity_type, "entity_id": target.id, "operation": operation},
    )
    verb = "modified" if operation == "UPDATE" else "deleted"
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=target.id,
        reason=f"{entity_type} records are append-only and cannot be {verb}",
    )


def _check_audit_log_update(mapper, connection, target):
    _reject("AuditLog", target, "UPDATE")


def _check_audit_log_delete(mapper, connection, target):
    _reject("AuditLog", target, "DELETE")


def _check_state_history_update(mapper, connection, target):
    _reject("ParcelStateHistory", target, "UPDATE")


def _check_state_history_delete(mapper, connection, target):
    _reject("ParcelStateHistory", target, "DELETE")


_LISTENERS = (
    (AuditLog, "before_update", _check_audit_log_update),
    (AuditLog, "before_delete", _check_audit_log_delete),
    (ParcelStateHistory, "before_update", _check_state_history_update),
    (ParcelStateHistory, "before_delete", _check_state_history_delete),
)


def register_immutability_listeners():
    """
    Register the append-only listeners.

    Safe to call more than once; call at application startup.
    """
    for model, identifier, fn in _LISTENERS:
        if not event.contains(model, identifier, fn):
            event.listen(model, identifier, fn)


def unregister_immutability_listeners():
    """Remove the listeners. Only tests should need this."""
    for model, identifier, fn in _LISTENERS:
        if event.contains(model, identifier, fn):
            event.remove(model, identifier, fn)
