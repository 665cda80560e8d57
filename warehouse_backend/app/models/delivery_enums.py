"""
Delivery Payment Enumeration.
"""

import enum


class PaymentStatus(str, enum.Enum):
    """
    Payment status of a delivery.

    Status flow:
        PENDING → CONFIRMED | FAILED | REFUNDED
    The core only records a confirmation supplied by staff.
    """
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
