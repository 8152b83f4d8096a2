"""Profile reads and edits."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import User
from ..models import ProfileUpdate
from .user_stats import StatsAggregator


class ProfileService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stats: StatsAggregator,
    ) -> None:
        self._session_factory = session_factory
        self._stats = stats

    async def get_profile(self, user_id: str) -> dict[str, Any]:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise KeyError("User not found")

        stats = await self._stats.get_user_stats(user_id)
        return {
            "username": user.username or "Movie Lover",
            "handle": user.handle or "@user",
            "bio": user.bio or "Passionate about cinema",
            "avatarUrl": user.avatar_url or "",
            "email": user.email,
            "displayName": user.display_name,
            "stats": stats.to_payload(),
        }

    async def update_profile(self, user_id: str, patch: ProfileUpdate) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await self.apply(session, user_id, patch)

    @staticmethod
    async def apply(session: AsyncSession, user_id: str, patch: ProfileUpdate) -> None:
        user = await session.get(User, user_id)
        if user is None:
            raise KeyError("User not found")
        for field, value in patch.changes().items():
            setattr(user, field, value)
        user.updated_at = datetime.utcnow()
