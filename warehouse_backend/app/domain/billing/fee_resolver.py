"""
Delivery Fee Resolver.

Responsible for pricing a delivery by parcel weight.
Follows priority:
1. Active fee configuration whose [min, max) band contains the weight,
   highest minimum first
2. Configured default rates
"""

import math
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from warehouse_backend.app.core.config import settings
from warehouse_backend.app.models.fee_configuration import FeeConfiguration


@dataclass(frozen=True)
class FeeQuote:
    weight_kg: float
    rounded_weight_kg: int
    base_fee: float
    per_kg_rate: float
    weight_fee: float
    total_fee: float
    fee_configuration_id: Optional[int] = None


class FeeResolver:

    @staticmethod
    async def resolve_configuration(db: AsyncSession, weight_kg: float) -> Optional[FeeConfiguration]:
        """Find the active fee band for a weight, or None."""
        query = select(FeeConfiguration).where(
            FeeConfiguration.is_active == True,
            FeeConfiguration.min_weight_kg <= weight_kg,
            (FeeConfiguration.max_weight_kg.is_(None) | (FeeConfiguration.max_weight_kg > weight_kg))
        ).order_by(FeeConfiguration.min_weight_kg.desc(), FeeConfiguration.id.desc()).limit(1)

        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def calculate_fee(db: AsyncSession, weight_kg: float) -> FeeQuote:
        """
        Price a delivery.

        Weight is rounded up to the next whole kilogram:
            weight_fee = ceil(weight) * per_kg_rate
            total_fee = base_fee + weight_fee

        Example:
            3.5 kg at base 50 / 20 per kg -> 4 * 20 = 80, total 130
        """
        config = await FeeResolver.resolve_configuration(db, weight_kg)

        if config:
            base_fee = config.base_fee
            per_kg_rate = config.per_kg_rate
        else:
            base_fee = settings.default_base_fee
            per_kg_rate = settings.default_per_kg_rate

        rounded_weight = math.ceil(weight_kg)
        weight_fee = round(rounded_weight * per_kg_rate, 2)
        total_fee = round(base_fee + weight_fee, 2)

        return FeeQuote(
            weight_kg=weight_kg,
            rounded_weight_kg=rounded_weight,
            base_fee=base_fee,
            per_kg_rate=per_kg_rate,
            weight_fee=weight_fee,
            total_fee=total_fee,
            fee_configuration_id=config.id if config else None,
        )
