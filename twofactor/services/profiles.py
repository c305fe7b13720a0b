from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from twofactor.database import persistence_guard
from twofactor.models.second_factor import SecondFactorProfile


async def get_profile(db: AsyncSession, user_id: int) -> SecondFactorProfile | None:
    async with persistence_guard(db, "load second-factor profile"):
        result = await db.execute(select(SecondFactorProfile).where(SecondFactorProfile.user_id == user_id))
        return result.scalar_one_or_none()


async def get_enabled_profile(db: AsyncSession, user_id: int) -> SecondFactorProfile | None:
    profile = await get_profile(db, user_id)
    if profile is None or not profile.enabled:
        return None
    return profile
