"""Dated viewing logs with ratings, reviews and tags."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import DiaryEntry, Movie
from ..models import DiaryEntryCreate, DiaryEntryUpdate
from .movie_cache import MovieCache
from .user_stats import StatsAggregator

logger = logging.getLogger(__name__)


class DuplicateDiaryEntryError(ValueError):
    """Raised when a movie is already logged for the same user and date."""


class DiaryService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        movie_cache: MovieCache,
        stats: StatsAggregator,
    ) -> None:
        self._session_factory = session_factory
        self._movie_cache = movie_cache
        self._stats = stats

    async def list_entries(self, user_id: str) -> list[dict[str, Any]]:
        stmt = (
            select(DiaryEntry, Movie)
            .join(Movie, Movie.id == DiaryEntry.movie_id)
            .where(DiaryEntry.user_id == user_id)
            .order_by(DiaryEntry.watched_date.desc(), DiaryEntry.created_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [entry.to_payload(movie) for entry, movie in result.all()]

    async def create(self, user_id: str, payload: DiaryEntryCreate) -> dict[str, Any]:
        """Log a viewing; the (user, movie, date) triple must be new."""

        watched_date = _format_date(payload.watched_date)
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    if await self._exists(session, user_id, payload.movie.id, watched_date):
                        raise DuplicateDiaryEntryError(
                            "A diary entry for this movie and date already exists"
                        )
                    await self._movie_cache.ensure_movie_exists(
                        payload.movie, fetch_extended=True, session=session
                    )
                    entry = DiaryEntry(
                        user_id=user_id,
                        movie_id=payload.movie.id,
                        watched_date=watched_date,
                        rating=payload.rating,
                        review=payload.review,
                        tags=list(payload.tags),
                        rewatch=payload.rewatch,
                    )
                    session.add(entry)
                    await session.flush()
                    await self._stats.update_user_stats(user_id, session=session)
            except IntegrityError as exc:
                # Only a concurrent insert of the same triple counts as a duplicate.
                if await self._exists(session, user_id, payload.movie.id, watched_date):
                    raise DuplicateDiaryEntryError(
                        "A diary entry for this movie and date already exists"
                    ) from exc
                raise

        logger.info(
            "Logged movie %s on %s for user %s",
            entry.movie_id,
            entry.watched_date,
            user_id,
        )
        return entry.to_payload()

    async def update(self, user_id: str, patch: DiaryEntryUpdate) -> dict[str, Any]:
        changes = patch.changes()
        async with self._session_factory() as session:
            async with session.begin():
                entry = await self._get_owned(session, user_id, patch.id)
                for field, value in changes.items():
                    if field == "tags":
                        value = list(value or [])
                    setattr(entry, field, value)
                entry.updated_at = datetime.utcnow()
                await session.flush()
                await self._stats.update_user_stats(user_id, session=session)
        return entry.to_payload()

    async def delete(self, user_id: str, entry_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(DiaryEntry).where(
                        DiaryEntry.id == entry_id, DiaryEntry.user_id == user_id
                    )
                )
                if not result.rowcount:
                    raise KeyError("Diary entry not found")
                await self._stats.update_user_stats(user_id, session=session)

    @staticmethod
    async def _exists(
        session: AsyncSession, user_id: str, movie_id: int, watched_date: str
    ) -> bool:
        result = await session.execute(
            select(DiaryEntry.id).where(
                DiaryEntry.user_id == user_id,
                DiaryEntry.movie_id == movie_id,
                DiaryEntry.watched_date == watched_date,
            )
        )
        return result.first() is not None

    @staticmethod
    async def _get_owned(
        session: AsyncSession, user_id: str, entry_id: str
    ) -> DiaryEntry:
        result = await session.execute(
            select(DiaryEntry).where(
                DiaryEntry.id == entry_id, DiaryEntry.user_id == user_id
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise KeyError("Diary entry not found")
        return entry


def _format_date(value: date | str) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return str(value)
