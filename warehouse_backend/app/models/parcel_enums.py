"""
Parcel lifecycle enumerations.
"""

import enum


class ParcelState(str, enum.Enum):
    """
    Parcel lifecycle state.

    Status flow (one step at a time, DELIVERED is terminal):
        EXPECTED → ARRIVED → STORED → DELIVERY_REQUESTED → OUT_FOR_DELIVERY → DELIVERED
    """
    EXPECTED = "EXPECTED"
    ARRIVED = "ARRIVED"
    STORED = "STORED"
    DELIVERY_REQUESTED = "DELIVERY_REQUESTED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"


class ExceptionType(str, enum.Enum):
    """Reasons a parcel is pulled out of the normal flow."""
    MISSING_MEMBER_CODE = "MISSING_MEMBER_CODE"
    INVALID_MEMBER_CODE = "INVALID_MEMBER_CODE"
    ILLEGIBLE_LABEL = "ILLEGIBLE_LABEL"
    DAMAGED_PARCEL = "DAMAGED_PARCEL"
    DUPLICATE_TRACKING = "DUPLICATE_TRACKING"
    CONFLICTING_OWNERSHIP = "CONFLICTING_OWNERSHIP"
    OTHER = "OTHER"


class ExceptionStatus(str, enum.Enum):
    """
    Exception status.

    Status flow:
        OPEN → IN_PROGRESS → RESOLVED
        OPEN / IN_PROGRESS → CANCELLED
    RESOLVED and CANCELLED are final.
    """
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


OPEN_EXCEPTION_STATUSES = (ExceptionStatus.OPEN, ExceptionStatus.IN_PROGRESS)
CLOSED_EXCEPTION_STATUSES = (ExceptionStatus.RESOLVED, ExceptionStatus.CANCELLED)
