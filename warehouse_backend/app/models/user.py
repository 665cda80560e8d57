"""
User database model.

Users double as the member directory: intake and ownership overrides
resolve parcel owners through the member code printed on the label.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from warehouse_backend.app.db.session import Base
from warehouse_backend.app.models.enums import UserRole
from warehouse_backend.app.core.clock import utcnow


class User(Base):
    """
    User model for members, warehouse staff and admins.

    Members are never hard-deleted; `is_deleted` hides them from the
    directory while keeping parcel and audit references intact.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(200), nullable=False)

    # Member code printed on parcel labels, format PHW-XXXXXX
    member_code = Column(String(10), unique=True, index=True, nullable=False)

    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)

    # Last delivery address used, saved on delivery request
    delivery_street = Column(String(255), nullable=True)
    delivery_city = Column(String(100), nullable=True)
    delivery_province = Column(String(100), nullable=True)
    delivery_zip_code = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, member_code='{self.member_code}', role='{self.role.value}')>"
