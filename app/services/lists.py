"""User curated movie lists with ordering and visibility."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..db_models import CustomList, ListMovie
from ..models import ListCreate, ListUpdate, MovieInput
from .movie_cache import MovieCache
from .user_stats import StatsAggregator

logger = logging.getLogger(__name__)


class ListManager:
    """Create, edit, reorder and delete a user's custom lists.

    Member positions are kept contiguous from zero: additions go to the tail,
    removals re-pack the remaining members and a reorder rewrites every
    position from the supplied ordering.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        movie_cache: MovieCache,
        stats: StatsAggregator,
    ) -> None:
        self._session_factory = session_factory
        self._movie_cache = movie_cache
        self._stats = stats

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        stmt = (
            select(CustomList)
            .where(CustomList.user_id == user_id)
            .options(selectinload(CustomList.members).selectinload(ListMovie.movie))
            .order_by(CustomList.created_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [custom_list.to_payload() for custom_list in result.scalars()]

    async def get_list(self, list_id: str, *, viewer_id: str | None) -> dict[str, Any]:
        """Return a list owned by ``viewer_id`` or any public list.

        Reads by anyone other than the owner count as a view.
        """

        async with self._session_factory() as session:
            async with session.begin():
                custom_list = await self._load(session, list_id)
                if custom_list is None or (
                    custom_list.user_id != viewer_id and not custom_list.is_public
                ):
                    raise KeyError("List not found")
                payload = custom_list.to_payload()
                if custom_list.user_id != viewer_id:
                    await session.execute(
                        update(CustomList)
                        .where(CustomList.id == list_id)
                        .values(view_count=CustomList.view_count + 1)
                        .execution_options(synchronize_session=False)
                    )
                    payload["viewCount"] += 1
        return payload

    async def create(self, user_id: str, payload: ListCreate) -> dict[str, Any]:
        async with self._session_factory() as session:
            async with session.begin():
                custom_list = CustomList(
                    user_id=user_id,
                    name=payload.name,
                    description=payload.description,
                    is_public=payload.is_public,
                    members=[],
                )
                session.add(custom_list)
                await session.flush()
                await self._stats.update_user_stats(user_id, session=session)
        logger.info("Created list %s for user %s", custom_list.id, user_id)
        return custom_list.to_payload()

    async def update(self, user_id: str, patch: ListUpdate) -> dict[str, Any]:
        """Apply a metadata patch and at most one membership operation."""

        async with self._session_factory() as session:
            async with session.begin():
                custom_list = await self._load(session, patch.list_id)
                if custom_list is None or custom_list.user_id != user_id:
                    raise KeyError("List not found")

                changes = patch.metadata_changes()
                if "name" in changes and changes["name"] is not None:
                    changes["name"] = str(changes["name"]).strip()
                    if not changes["name"]:
                        raise ValueError("List name may not be blank")
                for field, value in changes.items():
                    if field == "description" and value is None:
                        value = ""
                    if field in {"name", "is_public"} and value is None:
                        continue
                    setattr(custom_list, field, value)

                if patch.add_movie is not None:
                    await self._add_movie(session, custom_list, patch.add_movie)
                elif patch.remove_movie is not None:
                    await self._remove_movie(session, custom_list, patch.remove_movie)
                elif patch.reorder_movies is not None:
                    await self._reorder(session, custom_list, patch.reorder_movies)

                custom_list.updated_at = datetime.utcnow()
                await session.flush()

            refreshed = await self._load(session, patch.list_id, refresh=True)
            if refreshed is None:
                # Deleted by a concurrent request after the patch committed.
                raise KeyError("List not found")
            return refreshed.to_payload()

    async def delete(self, user_id: str, list_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(CustomList).where(
                        CustomList.id == list_id, CustomList.user_id == user_id
                    )
                )
                if not result.rowcount:
                    raise KeyError("List not found")
                await self._stats.update_user_stats(user_id, session=session)
        logger.info("Deleted list %s for user %s", list_id, user_id)

    async def like(self, list_id: str, *, viewer_id: str) -> int:
        return await self._adjust_likes(list_id, viewer_id=viewer_id, delta=1)

    async def unlike(self, list_id: str, *, viewer_id: str) -> int:
        return await self._adjust_likes(list_id, viewer_id=viewer_id, delta=-1)

    async def create_with_movies(
        self,
        session: AsyncSession,
        user_id: str,
        payload: ListCreate,
        movie_ids: Sequence[int],
    ) -> CustomList:
        """Create a list with members inside the caller's transaction."""

        custom_list = CustomList(
            user_id=user_id,
            name=payload.name,
            description=payload.description,
            is_public=payload.is_public,
            members=[
                ListMovie(movie_id=movie_id, position=position)
                for position, movie_id in enumerate(dict.fromkeys(movie_ids))
            ],
        )
        session.add(custom_list)
        await session.flush()
        return custom_list

    async def _add_movie(
        self, session: AsyncSession, custom_list: CustomList, movie: MovieInput
    ) -> None:
        await self._movie_cache.ensure_movie_exists(movie, session=session)
        if any(member.movie_id == movie.id for member in custom_list.members):
            return
        custom_list.members.append(
            ListMovie(movie_id=movie.id, position=len(custom_list.members))
        )

    async def _remove_movie(
        self, session: AsyncSession, custom_list: CustomList, movie_id: int
    ) -> None:
        target = next(
            (member for member in custom_list.members if member.movie_id == movie_id),
            None,
        )
        if target is None:
            return
        custom_list.members.remove(target)
        await session.flush()
        for position, member in enumerate(
            sorted(custom_list.members, key=lambda member: member.position)
        ):
            member.position = position

    async def _reorder(
        self, session: AsyncSession, custom_list: CustomList, ordering: Sequence[int]
    ) -> None:
        current = {member.movie_id: member for member in custom_list.members}
        if len(ordering) != len(set(ordering)) or set(ordering) != set(current):
            raise ValueError("reorderMovies must list every movie in the list exactly once")
        for position, movie_id in enumerate(ordering):
            current[movie_id].position = position

    async def _adjust_likes(self, list_id: str, *, viewer_id: str, delta: int) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                custom_list = await session.get(CustomList, list_id)
                if custom_list is None or (
                    custom_list.user_id != viewer_id and not custom_list.is_public
                ):
                    raise KeyError("List not found")
                custom_list.like_count = max(0, (custom_list.like_count or 0) + delta)
            return custom_list.like_count

    @staticmethod
    async def _load(
        session: AsyncSession, list_id: str, *, refresh: bool = False
    ) -> CustomList | None:
        stmt = (
            select(CustomList)
            .where(CustomList.id == list_id)
            .options(selectinload(CustomList.members).selectinload(ListMovie.movie))
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
