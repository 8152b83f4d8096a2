"""Unified feed of a user's movie activity across every collection."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import DiaryEntry, Favorite, Movie, WatchedItem, WatchlistItem

ACTIVITY_SOURCES = (
    ("FAVORITE", Favorite, Favorite.created_at),
    ("WATCHLIST", WatchlistItem, WatchlistItem.created_at),
    ("WATCHED", WatchedItem, WatchedItem.watched_at),
)


class ActivityFeed:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def recent_activity(self, user_id: str, *, limit: int = 50) -> list[dict[str, Any]]:
        """Return the newest ``limit`` activities, newest first."""

        limit = max(1, min(limit, 200))
        events: list[dict[str, Any]] = []
        async with self._session_factory() as session:
            for activity_type, model, timestamp in ACTIVITY_SOURCES:
                result = await session.execute(
                    select(Movie, timestamp)
                    .join(model, model.movie_id == Movie.id)
                    .where(model.user_id == user_id)
                    .order_by(timestamp.desc())
                    .limit(limit)
                )
                for movie, occurred_at in result.all():
                    events.append(_event(activity_type, movie, occurred_at))

            result = await session.execute(
                select(DiaryEntry, Movie)
                .join(Movie, Movie.id == DiaryEntry.movie_id)
                .where(DiaryEntry.user_id == user_id)
                .order_by(DiaryEntry.created_at.desc())
                .limit(limit)
            )
            for entry, movie in result.all():
                event = _event("DIARY", movie, entry.created_at)
                event.update(
                    {
                        "diaryEntryId": entry.id,
                        "watchedDate": entry.watched_date,
                        "rating": entry.rating,
                        "review": entry.review,
                        "tags": list(entry.tags or []),
                        "rewatch": entry.rewatch,
                    }
                )
                events.append(event)

        events.sort(key=lambda event: event["_sort"], reverse=True)
        for event in events:
            event.pop("_sort")
        return events[:limit]


def _event(activity_type: str, movie: Movie, occurred_at: datetime | None) -> dict[str, Any]:
    return {
        "activityType": activity_type,
        "activityTimestamp": occurred_at.isoformat() if occurred_at else None,
        "movieId": movie.id,
        "movieTitle": movie.title,
        "moviePoster": movie.poster_path,
        "movieReleaseDate": movie.release_date,
        "_sort": occurred_at or datetime.min,
    }
