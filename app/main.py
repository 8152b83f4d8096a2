"""Entry point for the FastAPI-powered Shaflix API."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from .config import Settings, settings
from .database import Database
from .db_models import User, WatchedItem, WatchlistItem, Favorite
from .models import (
    DiaryEntryCreate,
    DiaryEntryUpdate,
    ListCreate,
    ListUpdate,
    ProfileUpdate,
    SyncPayload,
    ToggleRequest,
)
from .moods import MOODS, POPULAR_MOOD
from .services.activity import ActivityFeed
from .services.auth import AuthBridge, AuthenticationError, FirebaseTokenVerifier, TokenVerifier
from .services.collections import CollectionStore
from .services.diary import DiaryService, DuplicateDiaryEntryError
from .services.lists import ListManager
from .services.movie_cache import MovieCache
from .services.profiles import ProfileService
from .services.sync import SyncService
from .services.tmdb import CatalogUnavailableError, TMDBClient
from .services.user_stats import StatsAggregator

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(slots=True)
class ShaflixServices:
    """Everything the routes need, wired once per application."""

    catalog: TMDBClient | None
    movie_cache: MovieCache
    stats: StatsAggregator
    auth: AuthBridge
    collections: dict[str, CollectionStore]
    diary: DiaryService
    lists: ListManager
    profiles: ProfileService
    activity: ActivityFeed
    sync: SyncService


def build_services(
    config: Settings,
    database: Database,
    *,
    catalog: TMDBClient | None,
    verifier: TokenVerifier,
) -> ShaflixServices:
    session_factory = database.session_factory
    stats = StatsAggregator(session_factory)
    movie_cache = MovieCache(
        session_factory, catalog, concurrency=config.catalog_concurrency
    )
    collections = {
        "favorites": CollectionStore(
            "favorites",
            Favorite,
            session_factory,
            movie_cache,
            stats=stats,
            fetch_extended=True,
        ),
        "watchlist": CollectionStore(
            "watchlist", WatchlistItem, session_factory, movie_cache
        ),
        "watched": CollectionStore(
            "watched",
            WatchedItem,
            session_factory,
            movie_cache,
            stats=stats,
            fetch_extended=True,
        ),
    }
    lists = ListManager(session_factory, movie_cache, stats)
    profiles = ProfileService(session_factory, stats)
    return ShaflixServices(
        catalog=catalog,
        movie_cache=movie_cache,
        stats=stats,
        auth=AuthBridge(session_factory, verifier, stats),
        collections=collections,
        diary=DiaryService(session_factory, movie_cache, stats),
        lists=lists,
        profiles=profiles,
        activity=ActivityFeed(session_factory),
        sync=SyncService(
            session_factory, movie_cache, stats, profiles, collections, lists
        ),
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    catalog: TMDBClient | None = None
    if settings.tmdb_api_key:
        catalog = TMDBClient(settings, tmdb_http_client)
    else:
        logger.warning("TMDB_API_KEY is not set; catalog routes are disabled")
    if not settings.firebase_project_id:
        logger.warning("FIREBASE_PROJECT_ID is not set; authenticated routes will reject requests")

    fastapi_app.state.database = database
    fastapi_app.state.services = build_services(
        settings,
        database,
        catalog=catalog,
        verifier=FirebaseTokenVerifier(settings),
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Mood-driven movie discovery with favorites, diary and lists",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(app: FastAPI) -> ShaflixServices:
    services = getattr(app.state, "services", None)
    if not isinstance(services, ShaflixServices):
        raise RuntimeError("Services not initialised")
    return services


async def _parse_body(request: Request, model: type[ModelT]) -> ModelT:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    async def _authenticate(request: Request) -> User:
        services = get_services(fastapi_app)
        try:
            return await services.auth.authenticate(request.headers.get("authorization"))
        except AuthenticationError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc

    def _require_catalog() -> TMDBClient:
        catalog = get_services(fastapi_app).catalog
        if catalog is None:
            raise HTTPException(status_code=503, detail="Movie catalog is not configured")
        return catalog

    async def _list_collection(request: Request, name: str) -> dict[str, Any]:
        user = await _authenticate(request)
        store = get_services(fastapi_app).collections[name]
        return {name: await store.list_movies(user.id)}

    async def _toggle_collection(request: Request, name: str) -> dict[str, Any]:
        user = await _authenticate(request)
        body = await _parse_body(request, ToggleRequest)
        store = get_services(fastapi_app).collections[name]
        if body.action == "add":
            await store.add(user.id, body.movie)
            return {"success": True, "action": "added"}
        await store.remove(user.id, body.movie.id)
        return {"success": True, "action": "removed"}

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/moods")
    async def moods() -> dict[str, Any]:
        return {
            "default": settings.default_mood,
            "moods": [{"key": POPULAR_MOOD, "label": "Popular", "genreIds": []}]
            + [mood.to_payload() for mood in MOODS],
        }

    @fastapi_app.get("/api/movies")
    async def browse_movies(
        mood: str | None = None, query: str | None = None, page: int = 1
    ) -> dict[str, Any]:
        if page < 1 or page > 500:
            raise HTTPException(status_code=400, detail="page must be between 1 and 500")
        catalog = _require_catalog()
        try:
            return await catalog.browse(
                mood=mood or settings.default_mood, query=query, page=page
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except CatalogUnavailableError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @fastapi_app.get("/api/movies/{movie_id}")
    async def movie_details(movie_id: int) -> dict[str, Any]:
        catalog = _require_catalog()
        try:
            payload = await catalog.movie_details(movie_id, append_to_response="credits")
        except CatalogUnavailableError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        extended = catalog.parse_extended(payload)
        payload.pop("credits", None)
        payload.update(
            {
                "director_name": extended.director_name,
                "primary_cast": extended.primary_cast,
                "genres": extended.genres,
            }
        )
        return payload

    @fastapi_app.get("/api/movies/{movie_id}/credits")
    async def movie_credits(movie_id: int) -> dict[str, Any]:
        catalog = _require_catalog()
        try:
            return await catalog.movie_credits(movie_id)
        except CatalogUnavailableError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @fastapi_app.get("/api/favorites")
    async def list_favorites(request: Request) -> dict[str, Any]:
        return await _list_collection(request, "favorites")

    @fastapi_app.post("/api/favorites")
    async def toggle_favorite(request: Request) -> dict[str, Any]:
        return await _toggle_collection(request, "favorites")

    @fastapi_app.get("/api/watchlist")
    async def list_watchlist(request: Request) -> dict[str, Any]:
        return await _list_collection(request, "watchlist")

    @fastapi_app.post("/api/watchlist")
    async def toggle_watchlist(request: Request) -> dict[str, Any]:
        return await _toggle_collection(request, "watchlist")

    @fastapi_app.get("/api/watched")
    async def list_watched(request: Request) -> dict[str, Any]:
        return await _list_collection(request, "watched")

    @fastapi_app.post("/api/watched")
    async def toggle_watched(request: Request) -> dict[str, Any]:
        return await _toggle_collection(request, "watched")

    @fastapi_app.get("/api/diary")
    async def list_diary(request: Request) -> dict[str, Any]:
        user = await _authenticate(request)
        entries = await get_services(fastapi_app).diary.list_entries(user.id)
        return {"entries": entries}

    @fastapi_app.post("/api/diary")
    async def create_diary_entry(request: Request) -> dict[str, Any]:
        user = await _authenticate(request)
        body = await _parse_body(request, DiaryEntryCreate)
        try:
            entry = await get_services(fastapi_app).diary.create(user.id, body)
        except DuplicateDiaryEntryError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"success": True, "entry": entry}

    @fastapi_app.patch("/api/diary")
    async def update_diary_entry(request: Request) -> dict[str, Any]:
        user = await _authenticate(request)
        body = await _parse_body(request, DiaryEntryUpdate)
        try:
            entry = await get_services(fastapi_app).diary.update(user.id, body)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Diary entry not found") from exc
        return {"success": True, "entry": entry}

    @fastapi_app.delete("/api/diary")
    async def delete_diary_entry(request: Request, id: str | None = None) -> dict[str, Any]:
        user = await _authenticate(request)
        if not id:
            raise HTTPException(status_code=400, detail="Entry ID is required")
        try:
            await get_services(fastapi_app).diary.delete(user.id, id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Diary entry not found") from exc
        return {"success": True}

    @fastapi_app.get("/api/lists")
    async def list_lists(request: Request) -> dict[str, Any]:
        user = await _authenticate(request)
        return {"lists": await get_services(fastapi_app).lists.list_for_user(user.id)}

    @fastapi_app.post("/api/lists")
    async def create_list(request: Request) -> dict[str, Any]:
        user = await _authenticate(request)
        body = await _parse_body(request, ListCreate)
        custom_list = await get_services(fastapi_app).lists.create(user.id, body)
        return {"success": True, "list": custom_list}

    @fastapi_app.patch("/api/lists")
    async def update_list(request: Request) -> dict[str, Any]:
        user = await _authenticate(request)
        body = await _parse_body(request, ListUpdate)
        try:
            custom_list = await get_services(fastapi_app).lists.update(user.id, body)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="List not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, "list": custom_list}

    @fastapi_app.delete("/api/lists")
    async def delete_list(request: Request, id: str | None = None) -> dict[str, Any]:
        user = await _authenticate(request)
        if not id:
            raise HTTPException(status_code=400, detail="List ID is required")
        try:
            await get_services(fastapi_app).lists.delete(user.id, id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="List not found") from exc
        return {"success": True}

    @fastapi_app.get("/api/lists/{list_id}")
    async def get_list(request: Request, list_id: str) -> dict[str, Any]:
        user = await _authenticate(request)
        try:
            custom_list = await get_services(fastapi_app).lists.get_list(
                list_id, viewer_id=user.id
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="List not found") from exc
        return {"list": custom_list}

    @fastapi_app.post("/api/lists/{list_id}/like")
    async def like_list(request: Request, list_id: str) -> dict[str, Any]:
        user = await _authenticate(request)
        try:
            count = await get_services(fastapi_app).lists.like(list_id, viewer_id=user.id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="List not found") from exc
        return {"success": True, "likeCount": count}

    @fastapi_app.delete("/api/lists/{list_id}/like")
    async def unlike_list(request: Request, list_id: str) -> dict[str, Any]:
        user = await _authenticate(request)
        try:
            count = await get_services(fastapi_app).lists.unlike(list_id, viewer_id=user.id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="List not found") from exc
        return {"success": True, "likeCount": count}

    @fastapi_app.get("/api/profile")
    async def get_profile(request: Request) -> dict[str, Any]:
        user = await _authenticate(request)
        try:
            profile = await get_services(fastapi_app).profiles.get_profile(user.id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
        return {"profile": profile}

    @fastapi_app.patch("/api/profile")
    async def update_profile(request: Request) -> dict[str, Any]:
        user = await _authenticate(request)
        body = await _parse_body(request, ProfileUpdate)
        await get_services(fastapi_app).profiles.update_profile(user.id, body)
        return {"success": True}

    @fastapi_app.get("/api/activity")
    async def recent_activity(request: Request, limit: int = 50) -> dict[str, Any]:
        user = await _authenticate(request)
        activity = await get_services(fastapi_app).activity.recent_activity(
            user.id, limit=limit
        )
        return {"activity": activity}

    @fastapi_app.post("/api/auth/sync-user")
    async def sync_user(request: Request) -> dict[str, Any]:
        user = await _authenticate(request)
        body = await _parse_body(request, SyncPayload)
        report = await get_services(fastapi_app).sync.sync(user.id, body)
        return report.to_payload()


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
