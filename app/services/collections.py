"""Per-user movie sets: favorites, watchlist and watched history."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import insert_statement
from ..db_models import Favorite, Movie, WatchedItem, WatchlistItem
from ..models import MovieInput
from .movie_cache import MovieCache
from .user_stats import StatsAggregator

logger = logging.getLogger(__name__)

CollectionModel = type[Favorite] | type[WatchlistItem] | type[WatchedItem]


class CollectionStore:
    """A (user, movie) pair set backed by one join table."""

    def __init__(
        self,
        name: str,
        model: CollectionModel,
        session_factory: async_sessionmaker[AsyncSession],
        movie_cache: MovieCache,
        *,
        stats: StatsAggregator | None = None,
        fetch_extended: bool = False,
    ) -> None:
        self.name = name
        self._model = model
        self._session_factory = session_factory
        self._movie_cache = movie_cache
        self._stats = stats
        self._fetch_extended = fetch_extended
        self._timestamp_column = (
            model.watched_at if model is WatchedItem else model.created_at
        )

    async def list_movies(self, user_id: str) -> list[dict[str, Any]]:
        """Return cached movies in the collection, most recent first."""

        stmt = (
            select(Movie, self._timestamp_column)
            .join(self._model, self._model.movie_id == Movie.id)
            .where(self._model.user_id == user_id)
            .order_by(self._timestamp_column.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        movies: list[dict[str, Any]] = []
        for movie, added_at in rows:
            payload = movie.to_payload()
            payload["addedAt"] = added_at.isoformat() if added_at else None
            movies.append(payload)
        return movies

    async def contains(self, user_id: str, movie_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(self._model.movie_id).where(
                    self._model.user_id == user_id,
                    self._model.movie_id == movie_id,
                )
            )
            return result.first() is not None

    async def add(self, user_id: str, movie: MovieInput) -> None:
        """Cache ``movie`` and add it; re-adding an existing pair is a no-op."""

        async with self._session_factory() as session:
            async with session.begin():
                await self._movie_cache.ensure_movie_exists(
                    movie, fetch_extended=self._fetch_extended, session=session
                )
                await self.insert_many(session, user_id, [movie.id])
                if self._stats is not None:
                    await self._stats.update_user_stats(user_id, session=session)
        logger.info("Added movie %s to %s for user %s", movie.id, self.name, user_id)

    async def remove(self, user_id: str, movie_id: int) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(self._model).where(
                        self._model.user_id == user_id,
                        self._model.movie_id == movie_id,
                    )
                )
                if self._stats is not None:
                    await self._stats.update_user_stats(user_id, session=session)
        logger.info("Removed movie %s from %s for user %s", movie_id, self.name, user_id)

    async def insert_many(
        self, session: AsyncSession, user_id: str, movie_ids: Iterable[int]
    ) -> int:
        """Insert pairs for already cached movies, ignoring existing ones.

        Returns the number of pairs that were actually inserted.
        """

        ids = list(dict.fromkeys(movie_ids))
        if not ids:
            return 0
        now = datetime.utcnow()
        timestamp_key = self._timestamp_column.key
        stmt = (
            insert_statement(session, self._model)
            .values(
                [
                    {"user_id": user_id, "movie_id": movie_id, timestamp_key: now}
                    for movie_id in ids
                ]
            )
            .on_conflict_do_nothing(index_elements=["user_id", "movie_id"])
        )
        result = await session.execute(stmt)
        if result.rowcount is None or result.rowcount < 0:
            return len(ids)
        return result.rowcount
