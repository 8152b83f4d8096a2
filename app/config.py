"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .moods import MOOD_KEYS, POPULAR_MOOD


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Shaflix", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    catalog_concurrency: int = Field(
        default=8, alias="CATALOG_CONCURRENCY", ge=1, le=32
    )
    default_mood: str = Field(default=POPULAR_MOOD, alias="DEFAULT_MOOD")

    firebase_project_id: str | None = Field(
        default=None, alias="FIREBASE_PROJECT_ID"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./shaflix.db", alias="DATABASE_URL"
    )

    cors_origins: tuple[str, ...] = Field(default=("*",), alias="CORS_ORIGINS")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("default_mood", mode="before")
    @classmethod
    def _normalise_default_mood(cls, value: object) -> str:
        """Accept mood keys case-insensitively and reject unknown moods."""

        if value is None:
            return POPULAR_MOOD
        mood = str(value).strip().lower()
        if not mood:
            return POPULAR_MOOD
        if mood not in MOOD_KEYS:
            raise ValueError("Unknown default mood configured")
        return mood

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return ("*",)
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("CORS_ORIGINS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            origin = entry.rstrip("/")
            if origin and origin not in cleaned:
                cleaned.append(origin)
        return tuple(cleaned) or ("*",)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
