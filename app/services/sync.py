"""One-shot replay of a locally cached snapshot into the server store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import insert_statement
from ..db_models import DiaryEntry, new_id
from ..models import (
    ListCreate,
    MovieInput,
    ProfileUpdate,
    SyncDiaryEntry,
    SyncList,
    SyncPayload,
    validate_each,
)
from .collections import CollectionStore
from .lists import ListManager
from .movie_cache import MovieCache
from .profiles import ProfileService
from .user_stats import StatsAggregator

logger = logging.getLogger(__name__)

StepStatus = Literal["success", "partial", "failure"]


@dataclass(slots=True)
class StepResult:
    """Outcome of a single independently committed sync step."""

    name: str
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def status(self) -> StepStatus:
        if self.failed == 0:
            return "success"
        if self.succeeded == 0 and self.skipped == 0:
            return "failure"
        return "partial"

    def fail(self, message: str, count: int = 1) -> None:
        self.failed += count
        self.errors.append(message)

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class SyncReport:
    steps: list[StepResult] = field(default_factory=list)

    @property
    def status(self) -> StepStatus:
        statuses = {step.status for step in self.steps}
        if not statuses or statuses == {"success"}:
            return "success"
        if statuses == {"failure"}:
            return "failure"
        return "partial"

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.status == "success",
            "status": self.status,
            "steps": [step.to_payload() for step in self.steps],
        }


class SyncService:
    """Replays a snapshot step by step.

    Every step commits in its own transaction so one failing collection never
    rolls back another; the returned report tells full from partial success.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        movie_cache: MovieCache,
        stats: StatsAggregator,
        profiles: ProfileService,
        collections: dict[str, CollectionStore],
        lists: ListManager,
    ) -> None:
        self._session_factory = session_factory
        self._movie_cache = movie_cache
        self._stats = stats
        self._profiles = profiles
        self._collections = collections
        self._lists = lists

    async def sync(self, user_id: str, payload: SyncPayload) -> SyncReport:
        report = SyncReport()

        if payload.profile is not None:
            report.steps.append(await self._sync_profile(user_id, payload.profile))

        collections: list[tuple[str, list[MovieInput], list[str]]] = []
        for name, items in (
            ("favorites", payload.favorites),
            ("watchlist", payload.watchlist),
            ("watched", payload.watched),
        ):
            if items:
                collections.append((name, *validate_each(MovieInput, items)))
        diary_entries, diary_errors = validate_each(SyncDiaryEntry, payload.diary_entries)

        movies = [movie for _, valid, _ in collections for movie in valid]
        movies.extend(entry.movie for entry in diary_entries if entry.movie is not None)
        if movies:
            report.steps.append(await self._sync_movies(movies))

        for name, valid, errors in collections:
            report.steps.append(
                await self._sync_collection(
                    user_id, self._collections[name], valid, errors
                )
            )

        if payload.diary_entries:
            report.steps.append(
                await self._sync_diary(user_id, diary_entries, diary_errors)
            )

        for index, raw_list in enumerate(payload.custom_lists):
            report.steps.append(await self._sync_list(user_id, index, raw_list))

        try:
            await self._stats.update_user_stats(user_id)
        except Exception:
            logger.exception("Stats recompute after sync failed for user %s", user_id)

        logger.info("Sync for user %s finished with status %s", user_id, report.status)
        return report

    async def _sync_profile(self, user_id: str, raw_profile: Any) -> StepResult:
        step = StepResult(name="profile")
        try:
            profile = ProfileUpdate.model_validate(raw_profile)
        except ValidationError as exc:
            step.fail(f"profile: {exc.error_count()} invalid field(s)")
            return step
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._profiles.apply(session, user_id, profile)
            step.succeeded = 1
        except Exception as exc:
            logger.exception("Profile sync failed for user %s", user_id)
            step.fail(f"profile: {exc}")
        return step

    async def _sync_movies(self, movies: list[MovieInput]) -> StepResult:
        step = StepResult(name="movies")
        unique = list({movie.id: movie for movie in movies}.values())
        try:
            await self._movie_cache.ensure_movies_exist(unique)
            step.succeeded = len(unique)
            return step
        except Exception:
            logger.exception("Batch movie caching failed, retrying individually")

        for movie in unique:
            try:
                await self._movie_cache.ensure_movie_exists(movie)
                step.succeeded += 1
            except Exception as exc:
                logger.warning("Caching movie %s failed: %s", movie.id, exc)
                step.fail(f"movie {movie.id}: {exc}")
        return step

    async def _sync_collection(
        self,
        user_id: str,
        store: CollectionStore,
        items: list[MovieInput],
        invalid: list[str],
    ) -> StepResult:
        step = StepResult(name=store.name)
        for message in invalid:
            step.fail(message)
        requested = list(dict.fromkeys(movie.id for movie in items))
        if not requested:
            return step
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    cached = await self._movie_cache.existing_ids(
                        requested, session=session
                    )
                    present = [movie_id for movie_id in requested if movie_id in cached]
                    inserted = await store.insert_many(session, user_id, present)
            step.succeeded = inserted
            step.skipped = len(present) - inserted
            missing = [movie_id for movie_id in requested if movie_id not in cached]
            if missing:
                step.fail(f"movies not cached: {missing}", count=len(missing))
        except Exception as exc:
            logger.exception("%s sync failed for user %s", store.name, user_id)
            step = StepResult(name=store.name)
            step.fail(f"{store.name}: {exc}", count=len(requested) + len(invalid))
        return step

    async def _sync_diary(
        self, user_id: str, entries: list[SyncDiaryEntry], invalid: list[str]
    ) -> StepResult:
        step = StepResult(name="diary")
        for message in invalid:
            step.fail(message)
        if not entries:
            return step
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    cached = await self._movie_cache.existing_ids(
                        (entry.movie_id for entry in entries), session=session
                    )
                    for entry in entries:
                        if entry.movie_id not in cached:
                            step.fail(f"movie {entry.movie_id} not cached")
                            continue
                        stmt = (
                            insert_statement(session, DiaryEntry)
                            .values(
                                id=new_id(),
                                user_id=user_id,
                                movie_id=entry.movie_id,
                                watched_date=entry.watched_date.isoformat(),
                                rating=entry.rating,
                                review=entry.review,
                                tags=list(entry.tags),
                                rewatch=entry.rewatch,
                            )
                            .on_conflict_do_nothing(
                                index_elements=["user_id", "movie_id", "watched_date"]
                            )
                        )
                        result = await session.execute(stmt)
                        if result.rowcount:
                            step.succeeded += 1
                        else:
                            step.skipped += 1
        except Exception as exc:
            logger.exception("Diary sync failed for user %s", user_id)
            step = StepResult(name="diary")
            step.fail(f"diary: {exc}", count=len(entries) + len(invalid))
        return step

    async def _sync_list(self, user_id: str, index: int, raw_list: Any) -> StepResult:
        try:
            payload = SyncList.model_validate(raw_list)
        except ValidationError as exc:
            step = StepResult(name=f"list:{index}")
            step.fail(f"list {index}: {exc.error_count()} invalid field(s)")
            return step

        step = StepResult(name=f"list:{payload.name}")
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    cached = await self._movie_cache.existing_ids(
                        payload.movie_ids, session=session
                    )
                    members = [
                        movie_id
                        for movie_id in dict.fromkeys(payload.movie_ids)
                        if movie_id in cached
                    ]
                    await self._lists.create_with_movies(
                        session,
                        user_id,
                        ListCreate(
                            name=payload.name,
                            description=payload.description or "",
                            isPublic=payload.is_public,
                        ),
                        members,
                    )
            step.succeeded = 1 + len(members)
            missing = [
                movie_id for movie_id in dict.fromkeys(payload.movie_ids) if movie_id not in cached
            ]
            if missing:
                step.fail(f"movies not cached: {missing}", count=len(missing))
        except Exception as exc:
            logger.exception("List sync failed for user %s", user_id)
            step = StepResult(name=step.name)
            step.fail(f"list {payload.name!r}: {exc}")
        return step
