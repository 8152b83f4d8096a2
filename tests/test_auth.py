"""Bearer credential handling and first sign-in user creation."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from app.config import Settings
from app.db_models import User, UserStats
from app.services.auth import (
    AuthBridge,
    AuthenticationError,
    FirebaseTokenVerifier,
    IdentityClaims,
)


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer   abc.def.ghi  ", "abc.def.ghi"),
    ],
)
def test_extract_token_accepts_bearer_scheme(header: str, expected: str) -> None:
    assert AuthBridge.extract_token(header) == expected


@pytest.mark.parametrize("header", [None, "", "Basic dXNlcjpwYXNz", "Bearer ", "abc.def.ghi"])
def test_extract_token_rejects_malformed_headers(header: str | None) -> None:
    with pytest.raises(AuthenticationError):
        AuthBridge.extract_token(header)


def test_claims_require_a_subject() -> None:
    with pytest.raises(AuthenticationError):
        IdentityClaims.from_token({"email": "nobody@example.com"})

    claims = IdentityClaims.from_token({"sub": "subject-1", "picture": "https://img/1.png"})
    assert claims.subject == "subject-1"
    assert claims.email == ""
    assert claims.avatar_url == "https://img/1.png"


def test_first_sign_in_creates_user_and_stats(services, database) -> None:
    async def runner() -> None:
        first = await services.auth.authenticate("Bearer token-bob")
        second = await services.auth.authenticate("Bearer token-bob")
        assert first.id == second.id
        assert first.firebase_uid == "uid-bob"
        assert first.username == "bob"
        assert first.handle == "@bob"

        async with database.session_factory() as session:
            users = (await session.execute(select(User))).scalars().all()
            stats = await session.get(UserStats, first.id)
        assert len(users) == 1
        assert stats is not None
        assert stats.favorites_count == 0

    asyncio.run(runner())


def test_display_name_seeds_username(services) -> None:
    user = asyncio.run(services.auth.authenticate("Bearer token-alice"))

    assert user.username == "Alice"
    assert user.display_name == "Alice"
    assert user.handle == "@alice"


def test_rejected_token_raises(services, verifier) -> None:
    with pytest.raises(AuthenticationError):
        asyncio.run(services.auth.authenticate("Bearer token-mallory"))
    assert verifier.calls == ["token-mallory"]


def test_firebase_verifier_requires_project_id() -> None:
    verifier = FirebaseTokenVerifier(Settings(_env_file=None, FIREBASE_PROJECT_ID=""))

    with pytest.raises(AuthenticationError, match="not configured"):
        asyncio.run(verifier("any-token"))
