"""Recomputation of the denormalised per-user statistics row."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import insert_statement
from ..db_models import CustomList, DiaryEntry, Favorite, Movie, UserStats, WatchedItem

logger = logging.getLogger(__name__)


class StatsAggregator:
    """Full-recompute aggregator for :class:`UserStats` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def initialize_user_stats(
        self, user_id: str, *, session: AsyncSession | None = None
    ) -> None:
        """Seed a zeroed stats row; existing rows are left untouched."""

        if session is None:
            async with self._session_factory() as own_session:
                async with own_session.begin():
                    await self._initialize(own_session, user_id)
            return
        await self._initialize(session, user_id)

    async def update_user_stats(
        self, user_id: str, *, session: AsyncSession | None = None
    ) -> None:
        """Recompute every counter for ``user_id`` and upsert the result."""

        if session is None:
            async with self._session_factory() as own_session:
                async with own_session.begin():
                    await self._update(own_session, user_id)
            return
        await self._update(session, user_id)

    async def get_user_stats(self, user_id: str) -> UserStats:
        async with self._session_factory() as session:
            stats = await session.get(UserStats, user_id)
            if stats is not None:
                return stats

        async with self._session_factory() as session:
            async with session.begin():
                await self._initialize(session, user_id)
                await self._update(session, user_id)
            stats = await session.get(UserStats, user_id, populate_existing=True)
        if stats is None:  # pragma: no cover - upsert guarantees a row
            raise KeyError(f"Stats for user {user_id} could not be created")
        return stats

    @staticmethod
    async def _initialize(session: AsyncSession, user_id: str) -> None:
        stmt = (
            insert_statement(session, UserStats)
            .values(
                user_id=user_id,
                movies_watched=0,
                total_runtime_minutes=0,
                avg_rating=None,
                diary_entries_count=0,
                favorites_count=0,
                lists_count=0,
                last_updated_at=datetime.utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        await session.execute(stmt)

    @staticmethod
    async def _update(session: AsyncSession, user_id: str) -> None:
        # Each counter is an independent scalar subquery so collection sizes
        # never multiply into one another.
        favorites_count = (
            select(func.count())
            .select_from(Favorite)
            .where(Favorite.user_id == user_id)
            .scalar_subquery()
        )
        watched_count = (
            select(func.count())
            .select_from(WatchedItem)
            .where(WatchedItem.user_id == user_id)
            .scalar_subquery()
        )
        diary_count = (
            select(func.count())
            .select_from(DiaryEntry)
            .where(DiaryEntry.user_id == user_id)
            .scalar_subquery()
        )
        lists_count = (
            select(func.count())
            .select_from(CustomList)
            .where(CustomList.user_id == user_id)
            .scalar_subquery()
        )
        total_runtime = (
            select(func.coalesce(func.sum(Movie.runtime), 0))
            .select_from(WatchedItem)
            .join(Movie, Movie.id == WatchedItem.movie_id)
            .where(WatchedItem.user_id == user_id)
            .scalar_subquery()
        )
        avg_rating = (
            select(func.avg(DiaryEntry.rating))
            .where(DiaryEntry.user_id == user_id)
            .scalar_subquery()
        )

        result = await session.execute(
            select(
                favorites_count.label("favorites_count"),
                watched_count.label("watched_count"),
                diary_count.label("diary_count"),
                lists_count.label("lists_count"),
                total_runtime.label("total_runtime"),
                avg_rating.label("avg_rating"),
            )
        )
        row = result.one()

        values = {
            "movies_watched": int(row.watched_count or 0),
            "total_runtime_minutes": int(row.total_runtime or 0),
            "avg_rating": float(row.avg_rating) if row.avg_rating is not None else None,
            "diary_entries_count": int(row.diary_count or 0),
            "favorites_count": int(row.favorites_count or 0),
            "lists_count": int(row.lists_count or 0),
            "last_updated_at": datetime.utcnow(),
        }
        stmt = insert_statement(session, UserStats).values(user_id=user_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=values)
        await session.execute(stmt)
        logger.debug("Recomputed stats for user %s", user_id)
