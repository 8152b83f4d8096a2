"""Local cache of catalog movie metadata referenced by user collections."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import insert_statement
from ..db_models import Movie
from ..models import MovieInput
from .tmdb import ExtendedMovieData, TMDBClient

logger = logging.getLogger(__name__)


class MovieCache:
    """Ensures movie rows exist before anything references them.

    Rows are inserted from the minimal record supplied by the caller. When
    extended data is requested the catalog is consulted once per movie and the
    director, cast and genre columns are filled in place; lookups are best
    effort and a failure leaves those columns null.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: TMDBClient | None = None,
        *,
        concurrency: int = 8,
    ) -> None:
        self._session_factory = session_factory
        self._catalog = catalog
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    @property
    def can_fetch_extended(self) -> bool:
        return self._catalog is not None

    async def ensure_movie_exists(
        self,
        movie: MovieInput,
        *,
        fetch_extended: bool = False,
        session: AsyncSession | None = None,
    ) -> int:
        """Insert ``movie`` if it is not cached yet and return its id."""

        ids = await self.ensure_movies_exist(
            [movie], fetch_extended=fetch_extended, session=session
        )
        return ids[0]

    async def ensure_movies_exist(
        self,
        movies: Sequence[MovieInput],
        *,
        fetch_extended: bool = False,
        session: AsyncSession | None = None,
    ) -> list[int]:
        """Batch variant of :meth:`ensure_movie_exists`.

        Missing movies are bulk inserted and cached movies lacking extended
        data are updated in place. Returns the de-duplicated ids in input
        order.
        """

        unique: dict[int, MovieInput] = {}
        for movie in movies:
            unique.setdefault(movie.id, movie)
        if not unique:
            return []

        async with self._scope(session) as active:
            result = await active.execute(
                select(Movie).where(Movie.id.in_(list(unique)))
            )
            existing = {row.id: row for row in result.scalars()}

            missing = [movie for movie_id, movie in unique.items() if movie_id not in existing]
            lookup_ids: list[int] = []
            if fetch_extended:
                lookup_ids = [movie.id for movie in missing] + [
                    row.id for row in existing.values() if row.needs_extended_data
                ]

            extended: dict[int, ExtendedMovieData] = {}
            if lookup_ids and self._catalog is not None:
                extended = await self._fetch_extended_many(self._catalog, lookup_ids)

            now = datetime.utcnow()
            if missing:
                # A concurrent request may cache the same movie first; its row wins.
                await active.execute(
                    insert_statement(active, Movie)
                    .values(
                        [
                            {
                                "id": movie.id,
                                "title": movie.title,
                                "poster_path": movie.poster_path,
                                "release_date": movie.release_date,
                                "overview": movie.overview,
                                "vote_average": movie.vote_average,
                                "runtime": movie.runtime,
                                "cached_at": now,
                            }
                            for movie in missing
                        ]
                    )
                    .on_conflict_do_nothing(index_elements=["id"])
                )

            if extended:
                result = await active.execute(
                    select(Movie)
                    .where(Movie.id.in_(list(extended)))
                    .execution_options(populate_existing=True)
                )
                for row in result.scalars():
                    if row.needs_extended_data:
                        self._apply_extended(row, extended[row.id], now)

            await active.flush()

        if missing:
            logger.debug("Cached %s new movies", len(missing))
        return list(unique)

    async def get_movie(self, movie_id: int) -> Movie | None:
        async with self._session_factory() as session:
            return await session.get(Movie, movie_id)

    async def existing_ids(
        self, movie_ids: Iterable[int], *, session: AsyncSession
    ) -> set[int]:
        ids = list(set(movie_ids))
        if not ids:
            return set()
        result = await session.execute(select(Movie.id).where(Movie.id.in_(ids)))
        return set(result.scalars())

    async def _fetch_extended_many(
        self, catalog: TMDBClient, movie_ids: Iterable[int]
    ) -> dict[int, ExtendedMovieData]:
        ids = list(dict.fromkeys(movie_ids))
        if not ids:
            return {}

        async def _lookup(movie_id: int) -> ExtendedMovieData | None:
            async with self._semaphore:
                return await catalog.fetch_extended(movie_id)

        results = await asyncio.gather(
            *(_lookup(movie_id) for movie_id in ids), return_exceptions=True
        )
        extended: dict[int, ExtendedMovieData] = {}
        for movie_id, result in zip(ids, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Skipping extended metadata for %s: %s", movie_id, result
                )
                continue
            if result is not None:
                extended[movie_id] = result
        return extended

    @staticmethod
    def _apply_extended(row: Movie, details: ExtendedMovieData, now: datetime) -> None:
        row.director_name = details.director_name
        row.primary_cast = list(details.primary_cast)
        row.genres = list(details.genres)
        if row.runtime is None and details.runtime is not None:
            row.runtime = details.runtime
        row.extended_cached_at = now

    @asynccontextmanager
    async def _scope(self, session: AsyncSession | None) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._session_factory() as own_session:
            async with own_session.begin():
                yield own_session
