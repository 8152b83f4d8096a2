"""Tests for the movie catalog client."""

from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from app.config import Settings
from app.services.tmdb import CatalogUnavailableError, TMDBClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {"TMDB_API_KEY": "tmdb-key", "TMDB_API_URL": "https://tmdb.test/3"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def build_client(
    handler: Callable[[httpx.Request], httpx.Response],
) -> tuple[TMDBClient, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://tmdb.test/3"
    )
    return TMDBClient(build_settings(), http_client), http_client


def listing(*titles: str) -> dict[str, Any]:
    return {
        "page": 1,
        "results": [{"id": index + 1, "title": title} for index, title in enumerate(titles)],
        "total_pages": 3,
        "total_results": 60,
    }


def test_client_requires_api_key() -> None:
    with pytest.raises(ValueError, match="TMDB API key is required"):
        TMDBClient(Settings(_env_file=None, TMDB_API_KEY=""), httpx.AsyncClient())


@pytest.mark.anyio("asyncio")
async def test_popular_mood_uses_popular_listing() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=listing("Dune", "Barbie"))

    client, http_client = build_client(handler)
    async with http_client:
        payload = await client.browse(mood="popular", page=2)

    assert requests[0].url.path == "/3/movie/popular"
    assert requests[0].url.params["api_key"] == "tmdb-key"
    assert requests[0].url.params["page"] == "2"
    assert [item["title"] for item in payload["results"]] == ["Dune", "Barbie"]
    assert payload["total_pages"] == 3


@pytest.mark.anyio("asyncio")
async def test_mood_discovery_applies_genre_filters() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=listing("Manchester by the Sea"))

    client, http_client = build_client(handler)
    async with http_client:
        await client.discover("Sad")

    params = requests[0].url.params
    assert requests[0].url.path == "/3/discover/movie"
    assert params["with_genres"] == "18"
    assert params["vote_count.gte"] == "20"
    assert params["with_original_language"] == "en"
    assert params["sort_by"] == "vote_average.desc"


@pytest.mark.anyio("asyncio")
async def test_query_takes_precedence_over_mood() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=listing("Inception"))

    client, http_client = build_client(handler)
    async with http_client:
        await client.browse(mood="scared", query="  inception ")

    assert requests[0].url.path == "/3/search/movie"
    assert requests[0].url.params["query"] == "inception"


@pytest.mark.anyio("asyncio")
async def test_unknown_mood_is_rejected_without_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - not reached
        raise AssertionError("no request expected")

    client, http_client = build_client(handler)
    async with http_client:
        with pytest.raises(ValueError, match="Invalid mood selected"):
            await client.discover("grumpy")


@pytest.mark.anyio("asyncio")
async def test_catalog_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"status_message": "down"})

    client, http_client = build_client(handler)
    async with http_client:
        with pytest.raises(CatalogUnavailableError):
            await client.discover("popular")


@pytest.mark.anyio("asyncio")
async def test_fetch_extended_parses_director_cast_and_genres() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["append_to_response"] == "credits"
        return httpx.Response(
            200,
            json={
                "id": 27205,
                "runtime": 148,
                "genres": [{"id": 28, "name": "Action"}, {"id": 878, "name": "Science Fiction"}],
                "credits": {
                    "crew": [
                        {"job": "Producer", "name": "Emma Thomas"},
                        {"job": "Director", "name": "Christopher Nolan"},
                    ],
                    "cast": [
                        {"name": f"Actor {index}", "order": 6 - index}
                        for index in range(7)
                    ],
                },
            },
        )

    client, http_client = build_client(handler)
    async with http_client:
        extended = await client.fetch_extended(27205)

    assert extended is not None
    assert extended.director_name == "Christopher Nolan"
    assert extended.primary_cast == ["Actor 6", "Actor 5", "Actor 4", "Actor 3", "Actor 2"]
    assert extended.genres == ["Action", "Science Fiction"]
    assert extended.runtime == 148


@pytest.mark.anyio("asyncio")
async def test_fetch_extended_returns_none_on_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    client, http_client = build_client(handler)
    async with http_client:
        assert await client.fetch_extended(1) is None
