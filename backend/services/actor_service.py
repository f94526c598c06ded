"""Actor service — resolves a user's role and tenant placement."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.rbac import normalize_role
from db.models.actor_profile import ActorProfile
from services.base import BaseService


@dataclass
class ActorScope:
    """The calling actor as seen by the engine."""

    user_id: str
    role: str
    district_id: Optional[str] = None
    school_id: Optional[str] = None


class ActorService(BaseService[ActorProfile]):
    """Service for actor profile lookups."""

    def __init__(self, db: AsyncSession):
        super().__init__(ActorProfile, db)

    async def get_by_user_id(self, user_id: str) -> Optional[ActorProfile]:
        result = await self.db.execute(
            select(ActorProfile).where(ActorProfile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def resolve(self, user_id: str) -> ActorScope:
        """Role and scope for ``user_id``; users without a profile get the fallback role, unscoped."""
        profile = await self.get_by_user_id(user_id)
        if profile is None:
            return ActorScope(user_id=user_id, role=normalize_role(None))
        return ActorScope(
            user_id=user_id,
            role=normalize_role(profile.role),
            district_id=profile.district_id,
            school_id=profile.school_id,
        )
