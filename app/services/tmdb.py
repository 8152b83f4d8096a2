"""Client for the movie catalog exposed by The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import Settings
from ..moods import POPULAR_MOOD, get_mood

logger = logging.getLogger(__name__)

PRIMARY_CAST_LIMIT = 5


class CatalogUnavailableError(RuntimeError):
    """Raised when the catalog API cannot satisfy a request."""


@dataclass(slots=True)
class ExtendedMovieData:
    """Director, cast and genre details that need a detail lookup."""

    director_name: str | None
    primary_cast: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    runtime: int | None = None


class TMDBClient:
    """Client responsible for browsing and describing catalog movies."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    async def browse(
        self, *, mood: str | None = None, query: str | None = None, page: int = 1
    ) -> dict[str, Any]:
        """Return a listing page for a free-text query or, failing that, a mood."""

        if query and query.strip():
            return await self.search(query.strip(), page=page)
        return await self.discover(mood or POPULAR_MOOD, page=page)

    async def search(self, query: str, *, page: int = 1) -> dict[str, Any]:
        return await self._get_listing(
            "/search/movie",
            {"query": query, "include_adult": "false", "page": page},
        )

    async def discover(self, mood: str, *, page: int = 1) -> dict[str, Any]:
        """Return movies matching ``mood``; ``popular`` bypasses genre filters."""

        normalized = (mood or "").strip().lower() or POPULAR_MOOD
        if normalized == POPULAR_MOOD:
            return await self._get_listing("/movie/popular", {"page": page})

        definition = get_mood(normalized)
        if definition is None:
            raise ValueError("Invalid mood selected")
        params: dict[str, Any] = {**definition.discover_params(), "page": page}
        return await self._get_listing("/discover/movie", params)

    async def movie_details(
        self, movie_id: int, *, append_to_response: str | None = None
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"language": "en-US"}
        if append_to_response:
            params["append_to_response"] = append_to_response
        return await self._get_json(f"/movie/{movie_id}", params)

    async def movie_credits(self, movie_id: int) -> dict[str, Any]:
        payload = await self._get_json(
            f"/movie/{movie_id}/credits", {"language": "en-US"}
        )
        return {
            "id": payload.get("id", movie_id),
            "cast": payload.get("cast") or [],
            "crew": payload.get("crew") or [],
        }

    async def fetch_extended(self, movie_id: int) -> ExtendedMovieData | None:
        """Return director/cast/genre data, or ``None`` when the lookup fails."""

        try:
            payload = await self.movie_details(movie_id, append_to_response="credits")
        except CatalogUnavailableError as exc:
            logger.warning("Extended metadata lookup failed for %s: %s", movie_id, exc)
            return None
        return self.parse_extended(payload)

    @staticmethod
    def parse_extended(payload: dict[str, Any]) -> ExtendedMovieData:
        credits = payload.get("credits") or {}
        crew = credits.get("crew") or []
        cast = credits.get("cast") or []

        director_name: str | None = None
        for member in crew:
            if isinstance(member, dict) and member.get("job") == "Director":
                director_name = member.get("name") or None
                if director_name:
                    break

        ordered_cast = sorted(
            (member for member in cast if isinstance(member, dict)),
            key=lambda member: member.get("order", 0),
        )
        primary_cast = [
            str(member["name"]) for member in ordered_cast if member.get("name")
        ][:PRIMARY_CAST_LIMIT]

        genres = [
            str(genre["name"])
            for genre in payload.get("genres") or []
            if isinstance(genre, dict) and genre.get("name")
        ]

        runtime = payload.get("runtime")
        return ExtendedMovieData(
            director_name=director_name,
            primary_cast=primary_cast,
            genres=genres,
            runtime=int(runtime) if isinstance(runtime, (int, float)) and runtime > 0 else None,
        )

    async def _get_listing(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        payload = await self._get_json(path, params)
        return {
            "page": payload.get("page", params.get("page", 1)),
            "results": payload.get("results") or [],
            "total_pages": payload.get("total_pages", 0),
            "total_results": payload.get("total_results", 0),
        }

    async def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        request_params = {**params, "api_key": self._settings.tmdb_api_key}
        try:
            response = await self._client.get(path, params=request_params)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", path, exc)
            raise CatalogUnavailableError("Failed to reach the movie catalog") from exc

        if response.status_code >= 400:
            logger.warning(
                "TMDB request to %s returned %s: %s",
                path,
                response.status_code,
                response.text,
            )
            raise CatalogUnavailableError("Failed to fetch movies")

        try:
            data = response.json()
        except ValueError as exc:
            raise CatalogUnavailableError("Catalog returned an invalid payload") from exc
        if not isinstance(data, dict):
            raise CatalogUnavailableError("Catalog returned an invalid payload")
        return data
