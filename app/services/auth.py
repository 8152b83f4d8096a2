"""Bearer credential verification and local user resolution."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import User
from .user_stats import StatsAggregator

logger = logging.getLogger(__name__)

TokenVerifier = Callable[[str], Awaitable[Mapping[str, Any]]]


class AuthenticationError(Exception):
    """Raised when a request does not carry a valid bearer credential."""


@dataclass(slots=True)
class IdentityClaims:
    """Claims extracted from a verified identity token."""

    subject: str
    email: str
    display_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_token(cls, claims: Mapping[str, Any]) -> "IdentityClaims":
        subject = claims.get("uid") or claims.get("user_id") or claims.get("sub")
        if not subject:
            raise AuthenticationError("Token does not identify a user")
        return cls(
            subject=str(subject),
            email=str(claims.get("email") or ""),
            display_name=claims.get("name") or None,
            avatar_url=claims.get("picture") or None,
        )


class FirebaseTokenVerifier:
    """Verifies Firebase ID tokens against Google's published signing keys."""

    def __init__(self, settings: Settings) -> None:
        self._project_id = settings.firebase_project_id
        self._request = google_requests.Request()

    async def __call__(self, token: str) -> Mapping[str, Any]:
        if not self._project_id:
            raise AuthenticationError("Identity provider is not configured")
        try:
            return await asyncio.to_thread(
                id_token.verify_firebase_token,
                token,
                self._request,
                audience=self._project_id,
            )
        except ValueError as exc:
            logger.info("Rejected identity token: %s", exc)
            raise AuthenticationError("Invalid or expired token") from exc
        except Exception as exc:
            logger.exception("Identity provider verification failed")
            raise AuthenticationError("Invalid or expired token") from exc


class AuthBridge:
    """Turns an ``Authorization`` header into a local :class:`User` row."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        verifier: TokenVerifier,
        stats: StatsAggregator,
    ) -> None:
        self._session_factory = session_factory
        self._verifier = verifier
        self._stats = stats

    async def authenticate(self, authorization: str | None) -> User:
        token = self.extract_token(authorization)
        claims = IdentityClaims.from_token(await self._verifier(token))
        return await self.resolve_user(claims)

    @staticmethod
    def extract_token(authorization: str | None) -> str:
        if not authorization:
            raise AuthenticationError("Missing or invalid Authorization header")
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Missing or invalid Authorization header")
        return token.strip()

    async def resolve_user(self, claims: IdentityClaims) -> User:
        """Find the user for ``claims``, creating it on first sign in."""

        async with self._session_factory() as session:
            user = await self._find(session, claims.subject)
            if user is not None:
                if (not user.display_name and claims.display_name) or (
                    not user.avatar_url and claims.avatar_url
                ):
                    user.display_name = user.display_name or claims.display_name
                    user.avatar_url = user.avatar_url or claims.avatar_url
                    await session.commit()
                return user

            local_part = claims.email.split("@", 1)[0] if claims.email else ""
            user = User(
                firebase_uid=claims.subject,
                email=claims.email,
                display_name=claims.display_name,
                username=claims.display_name or local_part or None,
                handle=f"@{local_part}" if local_part else None,
                avatar_url=claims.avatar_url,
            )
            session.add(user)
            try:
                await session.flush()
                await self._stats.initialize_user_stats(user.id, session=session)
                await session.commit()
            except IntegrityError:
                # A concurrent first request created the row.
                await session.rollback()
                existing = await self._find(session, claims.subject)
                if existing is None:
                    raise
                return existing

            logger.info("Created user %s for subject %s", user.id, claims.subject)
            return user

    @staticmethod
    async def _find(session: AsyncSession, subject: str) -> User | None:
        result = await session.execute(
            select(User).where(User.firebase_uid == subject)
        )
        return result.scalar_one_or_none()
