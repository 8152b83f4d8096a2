"""Tests for the presentation-side API client and its session cache."""

from __future__ import annotations

from collections import Counter

import httpx
import pytest

from app.client import NotSignedInError, ShaflixAPIError, ShaflixClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class FakeBackend:
    """Answers API routes from memory and counts GET requests per path."""

    def __init__(self) -> None:
        self.gets: Counter[str] = Counter()
        self.favorites: dict[str, list[dict[str, object]]] = {}
        self.authorizations: list[str | None] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("authorization")
        self.authorizations.append(token)
        user = (token or "").removeprefix("Bearer ")
        if request.method == "GET":
            self.gets[request.url.path] += 1
        if request.url.path == "/api/favorites" and request.method == "GET":
            return httpx.Response(200, json={"favorites": self.favorites.get(user, [])})
        if request.url.path == "/api/favorites" and request.method == "POST":
            self.favorites.setdefault(user, []).append({"id": 27205, "title": "Inception"})
            return httpx.Response(200, json={"success": True, "action": "added"})
        if request.url.path == "/api/profile":
            return httpx.Response(200, json={"profile": {"username": user}})
        if request.url.path == "/api/movies":
            return httpx.Response(200, json={"page": 1, "results": []})
        return httpx.Response(404, json={"detail": "List not found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler), base_url="https://shaflix.test"
        )


@pytest.mark.anyio("asyncio")
async def test_reads_are_cached_per_session() -> None:
    backend = FakeBackend()
    async with backend.client() as http_client:
        client = ShaflixClient(http_client)
        client.sign_in("alice")

        assert await client.favorites() == []
        assert await client.favorites() == []
        assert backend.gets["/api/favorites"] == 1
        assert client.cached("favorites") == {"favorites": []}


@pytest.mark.anyio("asyncio")
async def test_mutations_invalidate_dependent_resources() -> None:
    backend = FakeBackend()
    async with backend.client() as http_client:
        client = ShaflixClient(http_client)
        client.sign_in("alice")
        await client.favorites()
        await client.profile()

        await client.toggle("favorites", {"id": 27205, "title": "Inception"}, "add")

        assert client.cached("favorites") is None
        assert client.cached("profile") is None
        assert [movie["id"] for movie in await client.favorites()] == [27205]
        assert backend.gets["/api/favorites"] == 2


@pytest.mark.anyio("asyncio")
async def test_sign_out_discards_session_cache() -> None:
    backend = FakeBackend()
    async with backend.client() as http_client:
        client = ShaflixClient(http_client)
        client.sign_in("alice")
        assert (await client.profile())["username"] == "alice"

        client.sign_out()
        assert client.cached("profile") is None
        with pytest.raises(NotSignedInError):
            await client.profile()

        client.sign_in("bob")
        assert (await client.profile())["username"] == "bob"
        assert backend.gets["/api/profile"] == 2


@pytest.mark.anyio("asyncio")
async def test_browsing_is_anonymous_and_errors_carry_detail() -> None:
    backend = FakeBackend()
    async with backend.client() as http_client:
        client = ShaflixClient(http_client)

        await client.browse_movies(mood="happy")
        assert backend.authorizations == [None]

        client.sign_in("alice")
        with pytest.raises(ShaflixAPIError) as excinfo:
            await client.delete_list("missing")
        assert excinfo.value.status_code == 404
        assert excinfo.value.detail == "List not found"


@pytest.mark.anyio("asyncio")
async def test_sign_in_and_collection_names_are_validated() -> None:
    backend = FakeBackend()
    async with backend.client() as http_client:
        client = ShaflixClient(http_client)

        with pytest.raises(ValueError):
            client.sign_in("   ")

        client.sign_in("alice")
        with pytest.raises(ValueError, match="Unknown collection"):
            await client.toggle("seen", {"id": 1, "title": "Heat"}, "add")
        assert backend.authorizations == []
