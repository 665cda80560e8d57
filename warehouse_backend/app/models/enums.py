"""
User roles enumeration.

Defines the role types for the parcel warehouse system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        USER: Member who receives parcels and requests deliveries (default role)
        WAREHOUSE_STAFF: Registers parcels, reports exceptions, runs deliveries
        ADMIN: Resolves exceptions and performs overrides
    """
    USER = "USER"
    WAREHOUSE_STAFF = "WAREHOUSE_STAFF"
    ADMIN = "ADMIN"
