"""
Member directory over the users table.

Resolves the member code printed on a parcel label to the owning user.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from warehouse_backend.app.models.user import User


class MemberDirectory:

    @staticmethod
    def normalize(member_code: Optional[str]) -> Optional[str]:
        """Uppercase and strip a member code; blank codes become None."""
        if member_code is None:
            return None
        member_code = member_code.strip().upper()
        return member_code or None

    @staticmethod
    async def lookup_by_member_code(db: AsyncSession, member_code: Optional[str]) -> Optional[User]:
        """Return the user carrying a member code, including inactive or deleted ones."""
        member_code = MemberDirectory.normalize(member_code)
        if not member_code:
            return None
        result = await db.execute(select(User).where(User.member_code == member_code))
        return result.scalar_one_or_none()

    @staticmethod
    def is_resolvable(member: Optional[User]) -> bool:
        """A member can own parcels only while active and not deleted."""
        return member is not None and member.is_active and not member.is_deleted

    @staticmethod
    def unresolvable_reason(member_code: Optional[str], member: Optional[User]) -> Optional[str]:
        """Human-readable reason a code does not resolve, or None if it does."""
        if not member_code:
            return "No member code on label"
        if member is None:
            return f"Member code {member_code} not found"
        if member.is_deleted:
            return f"Member {member_code} has been deleted"
        if not member.is_active:
            return f"Member {member_code} is inactive"
        return None

    @staticmethod
    async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def update_delivery_address(
        db: AsyncSession,
        user: User,
        street: str,
        city: str,
        province: str,
        zip_code: str
    ) -> User:
        """Remember the last address used. Caller owns the transaction."""
        user.delivery_street = street
        user.delivery_city = city
        user.delivery_province = province
        user.delivery_zip_code = zip_code
        await db.flush()
        return user
