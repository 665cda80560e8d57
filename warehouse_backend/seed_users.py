"""
Database seeding script for development.

Creates an ADMIN, a WAREHOUSE_STAFF member and two USER members, plus the
standard fee configuration. Run after the database is set up:

    python -m warehouse_backend.seed_users
"""

import asyncio
from sqlalchemy import select

from warehouse_backend.app.db.session import AsyncSessionLocal, engine, Base
from warehouse_backend.app.models.user import User
from warehouse_backend.app.models.enums import UserRole
from warehouse_backend.app.models.fee_configuration import FeeConfiguration

SEED_USERS = [
    ("admin@warehouse.local", "Warehouse Admin", "PHW-ADMIN1", UserRole.ADMIN),
    ("staff@warehouse.local", "Intake Staff", "PHW-STAFF1", UserRole.WAREHOUSE_STAFF),
    ("juan@example.com", "Juan Dela Cruz", "PHW-JUAN01", UserRole.USER),
    ("maria@example.com", "Maria Santos", "PHW-MARIA1", UserRole.USER),
]


async def seed_users():
    """
    Seed initial users and the default fee band.

    Skips everything if the admin member code already exists.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("Starting seed...")

        result = await db.execute(select(User).where(User.member_code == "PHW-ADMIN1"))
        if result.scalar_one_or_none():
            print("Seed data already present, skipping")
            return

        for email, full_name, member_code, role in SEED_USERS:
            db.add(User(
                email=email,
                full_name=full_name,
                member_code=member_code,
                role=role,
                is_active=True,
                is_deleted=False,
            ))
            print(f"  - {role.value:<16} {member_code}  {email}")

        db.add(FeeConfiguration(
            name="standard",
            base_fee=100.0,
            per_kg_rate=50.0,
            min_weight_kg=0.0,
            max_weight_kg=None,
            is_active=True,
        ))
        print("  - fee band 'standard': 100.00 base + 50.00/kg")

        await db.commit()
        print("Seed completed.")


if __name__ == "__main__":
    asyncio.run(seed_users())
