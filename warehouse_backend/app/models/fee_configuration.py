"""
Fee Configuration database model.

Defines weight-banded delivery fee rates.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, CheckConstraint
from warehouse_backend.app.db.session import Base
from warehouse_backend.app.core.clock import utcnow


class FeeConfiguration(Base):
    """
    Fee band covering weights in [min_weight_kg, max_weight_kg).

    A null `max_weight_kg` leaves the band unbounded. When several active
    bands match, the one with the highest minimum wins.
    """
    __tablename__ = "fee_configurations"
    __table_args__ = (
        CheckConstraint(
            "base_fee >= 0 AND per_kg_rate >= 0 AND min_weight_kg >= 0",
            name="ck_fee_configurations_positive_values"
        ),
        CheckConstraint(
            "max_weight_kg IS NULL OR max_weight_kg > min_weight_kg",
            name="ck_fee_configurations_weight_range"
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(100), nullable=False)
    base_fee = Column(Float, nullable=False)
    per_kg_rate = Column(Float, nullable=False)
    min_weight_kg = Column(Float, default=0.0, nullable=False)
    max_weight_kg = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<FeeConfiguration(id={self.id}, name='{self.name}', base={self.base_fee}, per_kg={self.per_kg_rate})>"
