"""Pytest configuration and test helpers."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.pool import NullPool  # noqa: E402

from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.models import MovieInput  # noqa: E402
from app.services.auth import AuthenticationError  # noqa: E402


class StubVerifier:
    """Token verifier accepting ``token-<name>`` for a fixed set of users."""

    users: dict[str, dict[str, Any]] = {
        "alice": {"uid": "uid-alice", "email": "alice@example.com", "name": "Alice"},
        "bob": {"uid": "uid-bob", "email": "bob@example.com"},
    }

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def __call__(self, token: str) -> Mapping[str, Any]:
        self.calls.append(token)
        name = token.removeprefix("token-")
        if name not in self.users:
            raise AuthenticationError("Invalid or expired token")
        return self.users[name]


@pytest.fixture
def database(tmp_path) -> Iterator[Database]:
    """A fresh SQLite database; connections are not shared across event loops."""

    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'shaflix.db'}", poolclass=NullPool)
    asyncio.run(db.create_all())
    try:
        yield db
    finally:
        asyncio.run(db.dispose())


@pytest.fixture
def verifier() -> StubVerifier:
    return StubVerifier()


@pytest.fixture
def services(database: Database, verifier: StubVerifier):
    from app.main import build_services

    return build_services(
        Settings(_env_file=None), database, catalog=None, verifier=verifier
    )


@pytest.fixture
def make_user(services) -> Callable[[str], str]:
    """Return a helper that signs a stub user in and yields the local id."""

    def _make(name: str = "alice") -> str:
        user = asyncio.run(services.auth.authenticate(f"Bearer token-{name}"))
        return user.id

    return _make


@pytest.fixture
def make_movie() -> Callable[..., MovieInput]:
    def _make(movie_id: int = 27205, title: str = "Inception", **extra: Any) -> MovieInput:
        payload: dict[str, Any] = {
            "id": movie_id,
            "title": title,
            "poster_path": f"/poster-{movie_id}.jpg",
            "release_date": "2010-07-15",
            "vote_average": 8.4,
        }
        payload.update(extra)
        return MovieInput.model_validate(payload)

    return _make
