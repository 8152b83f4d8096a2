from __future__ import annotations

import asyncio

from sqlalchemy import func, select

from app.db_models import Movie


def test_adding_twice_keeps_a_single_pair(services, make_user, make_movie) -> None:
    user_id = make_user()
    watchlist = services.collections["watchlist"]

    async def runner() -> None:
        await watchlist.add(user_id, make_movie())
        await watchlist.add(user_id, make_movie())

        movies = await watchlist.list_movies(user_id)
        assert [movie["id"] for movie in movies] == [27205]
        assert movies[0]["title"] == "Inception"
        assert movies[0]["addedAt"] is not None
        assert await watchlist.contains(user_id, 27205)

    asyncio.run(runner())


def test_remove_is_a_noop_for_absent_movies(services, make_user, make_movie) -> None:
    user_id = make_user()
    favorites = services.collections["favorites"]

    async def runner() -> None:
        await favorites.add(user_id, make_movie())
        await favorites.remove(user_id, 603)
        assert await favorites.contains(user_id, 27205)

        await favorites.remove(user_id, 27205)
        assert await favorites.list_movies(user_id) == []
        # The cached movie row survives removal from a collection.
        assert await services.movie_cache.get_movie(27205) is not None

    asyncio.run(runner())


def test_collections_are_scoped_per_user(services, make_user, make_movie) -> None:
    alice = make_user("alice")
    bob = make_user("bob")
    watched = services.collections["watched"]

    async def runner() -> None:
        await watched.add(alice, make_movie())
        await watched.add(bob, make_movie(movie_id=603, title="The Matrix"))

        assert [movie["id"] for movie in await watched.list_movies(alice)] == [27205]
        assert [movie["id"] for movie in await watched.list_movies(bob)] == [603]
        assert not await services.collections["favorites"].contains(alice, 27205)

    asyncio.run(runner())


def test_concurrent_adds_of_an_uncached_movie_both_succeed(
    services, database, make_user, make_movie
) -> None:
    alice = make_user("alice")
    bob = make_user("bob")
    watchlist = services.collections["watchlist"]

    async def runner() -> None:
        await asyncio.gather(
            watchlist.add(alice, make_movie()),
            watchlist.add(bob, make_movie()),
        )

        assert await watchlist.contains(alice, 27205)
        assert await watchlist.contains(bob, 27205)
        async with database.session() as session:
            count = await session.scalar(select(func.count()).select_from(Movie))
        assert count == 1

    asyncio.run(runner())
