"""HTTP client for the Shaflix API with a per-session response cache."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Resources whose cached reads become stale when another resource changes.
_DEPENDENT_RESOURCES: dict[str, tuple[str, ...]] = {
    "favorites": ("profile", "activity"),
    "watchlist": ("profile", "activity"),
    "watched": ("profile", "activity"),
    "diary": ("profile", "activity"),
    "lists": ("profile",),
    "profile": (),
    "sync": ("favorites", "watchlist", "watched", "diary", "lists", "profile", "activity"),
}


class ShaflixAPIError(RuntimeError):
    """Raised when the API answers with an error status."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"Shaflix API error {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class NotSignedInError(RuntimeError):
    """Raised when a user-scoped call is made without an active session."""


class ShaflixClient:
    """Presentation-side wrapper around the HTTP API.

    Reads are cached per signed-in session and resource. Mutations invalidate
    the resources they affect, and :meth:`sign_out` discards every entry that
    belonged to the session.
    """

    def __init__(self, http_client: httpx.AsyncClient):
        self._client = http_client
        self._token: str | None = None
        self._session_key: str | None = None
        self._cache: dict[tuple[str, str], Any] = {}

    @property
    def session_key(self) -> str | None:
        return self._session_key

    def sign_in(self, token: str) -> None:
        token = (token or "").strip()
        if not token:
            raise ValueError("A non-empty identity token is required")
        if self._session_key is not None:
            self.sign_out()
        self._token = token
        self._session_key = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]

    def sign_out(self) -> None:
        if self._session_key is not None:
            self._drop_session(self._session_key)
        self._token = None
        self._session_key = None

    def cached(self, resource: str) -> Any | None:
        if self._session_key is None:
            return None
        return self._cache.get((self._session_key, resource))

    def invalidate(self, *resources: str) -> None:
        if self._session_key is None:
            return
        for resource in resources:
            self._cache.pop((self._session_key, resource), None)
            for dependent in _DEPENDENT_RESOURCES.get(resource, ()):
                self._cache.pop((self._session_key, dependent), None)

    async def browse_movies(
        self, *, mood: str = "popular", query: str | None = None, page: int = 1
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"mood": mood, "page": page}
        if query and query.strip():
            params["query"] = query
        return await self._request("GET", "/api/movies", params=params, auth=False)

    async def favorites(self) -> list[dict[str, Any]]:
        payload = await self._cached_get("favorites", "/api/favorites")
        return payload["favorites"]

    async def watchlist(self) -> list[dict[str, Any]]:
        payload = await self._cached_get("watchlist", "/api/watchlist")
        return payload["watchlist"]

    async def watched(self) -> list[dict[str, Any]]:
        payload = await self._cached_get("watched", "/api/watched")
        return payload["watched"]

    async def toggle(
        self, collection: str, movie: dict[str, Any], action: str
    ) -> dict[str, Any]:
        if collection not in {"favorites", "watchlist", "watched"}:
            raise ValueError(f"Unknown collection: {collection}")
        result = await self._request(
            "POST", f"/api/{collection}", json={"movie": movie, "action": action}
        )
        self.invalidate(collection)
        return result

    async def diary(self) -> list[dict[str, Any]]:
        payload = await self._cached_get("diary", "/api/diary")
        return payload["entries"]

    async def log_diary_entry(self, entry: dict[str, Any]) -> dict[str, Any]:
        result = await self._request("POST", "/api/diary", json=entry)
        self.invalidate("diary")
        return result["entry"]

    async def update_diary_entry(self, patch: dict[str, Any]) -> dict[str, Any]:
        result = await self._request("PATCH", "/api/diary", json=patch)
        self.invalidate("diary")
        return result["entry"]

    async def delete_diary_entry(self, entry_id: str) -> None:
        await self._request("DELETE", "/api/diary", params={"id": entry_id})
        self.invalidate("diary")

    async def lists(self) -> list[dict[str, Any]]:
        payload = await self._cached_get("lists", "/api/lists")
        return payload["lists"]

    async def create_list(self, data: dict[str, Any]) -> dict[str, Any]:
        result = await self._request("POST", "/api/lists", json=data)
        self.invalidate("lists")
        return result["list"]

    async def update_list(self, patch: dict[str, Any]) -> dict[str, Any]:
        result = await self._request("PATCH", "/api/lists", json=patch)
        self.invalidate("lists")
        return result["list"]

    async def delete_list(self, list_id: str) -> None:
        await self._request("DELETE", "/api/lists", params={"id": list_id})
        self.invalidate("lists")

    async def profile(self) -> dict[str, Any]:
        payload = await self._cached_get("profile", "/api/profile")
        return payload["profile"]

    async def update_profile(self, patch: dict[str, Any]) -> None:
        await self._request("PATCH", "/api/profile", json=patch)
        self.invalidate("profile")

    async def sync(self, snapshot: dict[str, Any]) -> dict[str, Any]:
        result = await self._request("POST", "/api/auth/sync-user", json=snapshot)
        self.invalidate("sync")
        return result

    async def _cached_get(self, resource: str, path: str) -> Any:
        session_key = self._require_session()
        key = (session_key, resource)
        if key in self._cache:
            return self._cache[key]
        payload = await self._request("GET", path)
        # A sign-out while the request was in flight must not repopulate.
        if self._session_key == session_key:
            self._cache[key] = payload
        return payload

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        auth: bool = True,
    ) -> Any:
        headers: dict[str, str] = {}
        if auth:
            self._require_session()
            headers["Authorization"] = f"Bearer {self._token}"
        response = await self._client.request(
            method, path, params=params, json=json, headers=headers
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400:
            detail = data.get("detail") if isinstance(data, dict) else None
            logger.debug("%s %s failed with %s", method, path, response.status_code)
            raise ShaflixAPIError(response.status_code, detail or response.text)
        return data

    def _require_session(self) -> str:
        if self._session_key is None or self._token is None:
            raise NotSignedInError("Sign in before calling user-scoped endpoints")
        return self._session_key

    def _drop_session(self, session_key: str) -> None:
        for key in [key for key in self._cache if key[0] == session_key]:
            self._cache.pop(key, None)
