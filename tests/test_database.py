from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, delete, func, inspect, select, text

from app.database import Database
from app.db_models import CustomList, DiaryEntry, Favorite, ListMovie, Movie, User, UserStats
from app.models import DiaryEntryCreate, ListCreate, ListUpdate


def _initialise_legacy_schema(database_path: str) -> None:
    """Create movie and list tables predating extended metadata and counters."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE movies (
                        id INTEGER PRIMARY KEY,
                        title VARCHAR(500),
                        poster_path VARCHAR(500),
                        release_date VARCHAR(50),
                        overview TEXT,
                        vote_average FLOAT,
                        runtime INTEGER,
                        cached_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    """
                    CREATE TABLE custom_lists (
                        id VARCHAR(36) PRIMARY KEY,
                        user_id VARCHAR(36),
                        name VARCHAR(200),
                        description TEXT,
                        is_public BOOLEAN,
                        created_at DATETIME,
                        updated_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    "INSERT INTO custom_lists (id, user_id, name, description, is_public) "
                    "VALUES ('legacy-list', 'legacy-user', 'Old list', '', 0)"
                )
            )
    finally:
        engine.dispose()


def test_create_all_adds_extended_movie_columns(tmp_path) -> None:
    """Schema migrations should backfill the extended metadata columns."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        movie_columns = {column["name"] for column in inspector.get_columns("movies")}
        list_columns = {
            column["name"] for column in inspector.get_columns("custom_lists")
        }
        with inspector_engine.connect() as connection:
            counters = connection.execute(
                text("SELECT view_count, like_count FROM custom_lists")
            ).one()
    finally:
        inspector_engine.dispose()

    assert {"director_name", "primary_cast", "genres", "extended_cached_at"} <= movie_columns
    assert {"view_count", "like_count"} <= list_columns
    assert tuple(counters) == (0, 0)


def test_create_all_is_idempotent(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'fresh.db'}")

    async def runner() -> None:
        await database.create_all()
        await database.create_all()
        await database.dispose()

    asyncio.run(runner())

    inspector_engine = create_engine(f"sqlite:///{tmp_path / 'fresh.db'}")
    try:
        tables = set(inspect(inspector_engine).get_table_names())
    finally:
        inspector_engine.dispose()

    assert {
        "users",
        "movies",
        "favorites",
        "watchlist",
        "watched",
        "diary_entries",
        "custom_lists",
        "list_movies",
        "user_stats",
    } <= tables


async def _row_counts(database: Database) -> dict[str, int]:
    counts: dict[str, int] = {}
    async with database.session() as session:
        for model in (Favorite, DiaryEntry, ListMovie, CustomList, UserStats, Movie):
            counts[model.__tablename__] = await session.scalar(
                select(func.count()).select_from(model)
            )
    return counts


async def _populate(services, user_id: str, movie) -> None:
    await services.collections["favorites"].add(user_id, movie)
    await services.diary.create(
        user_id,
        DiaryEntryCreate.model_validate({"movie": movie.model_dump(), "watchedDate": "2024-01-01"}),
    )
    created = await services.lists.create(user_id, ListCreate(name="Dreams"))
    await services.lists.update(
        user_id, ListUpdate.model_validate({"listId": created["id"], "addMovie": movie.model_dump()})
    )


def test_deleting_a_user_cascades_to_owned_rows(services, database, make_user, make_movie) -> None:
    user_id = make_user()

    async def runner() -> None:
        await _populate(services, user_id, make_movie())
        async with database.session() as session:
            await session.execute(delete(User).where(User.id == user_id))

        counts = await _row_counts(database)
        assert counts == {
            "favorites": 0,
            "diary_entries": 0,
            "list_movies": 0,
            "custom_lists": 0,
            "user_stats": 0,
            "movies": 1,
        }

    asyncio.run(runner())


def test_deleting_a_movie_cascades_to_references(services, database, make_user, make_movie) -> None:
    user_id = make_user()

    async def runner() -> None:
        await _populate(services, user_id, make_movie())
        async with database.session() as session:
            await session.execute(delete(Movie).where(Movie.id == 27205))

        counts = await _row_counts(database)
        assert counts["favorites"] == counts["diary_entries"] == counts["list_movies"] == 0
        assert counts["custom_lists"] == 1
        assert counts["user_stats"] == 1
        assert await services.lists.list_for_user(user_id) != []

    asyncio.run(runner())
