"""Pydantic models describing API request payloads."""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Literal, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

ToggleAction = Literal["add", "remove"]
ModelT = TypeVar("ModelT", bound=BaseModel)


def _date_prefix(value: object) -> object:
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


def _clean_tags(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set)):
        raise TypeError("tags must be a list of strings")
    cleaned: list[str] = []
    for entry in value:
        tag = str(entry).strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


class MovieInput(BaseModel):
    """Minimal movie record as returned by catalog listings."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(gt=0)
    title: str = Field(min_length=1)
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("poster_path", "posterPath")
    )
    release_date: str | None = Field(
        default=None, validation_alias=AliasChoices("release_date", "releaseDate")
    )
    overview: str | None = None
    vote_average: float | None = Field(
        default=None, validation_alias=AliasChoices("vote_average", "voteAverage")
    )
    runtime: int | None = None
    genre_ids: list[int] = Field(default_factory=list)

    @field_validator("release_date", "poster_path", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ToggleRequest(BaseModel):
    """Body of the favorites/watchlist/watched toggle endpoints."""

    movie: MovieInput
    action: ToggleAction


class DiaryEntryCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    movie: MovieInput
    watched_date: date = Field(alias="watchedDate")
    rating: float | None = Field(default=None, ge=0.5, le=5.0)
    review: str | None = None
    tags: list[str] = Field(default_factory=list)
    rewatch: bool = False

    @field_validator("watched_date", mode="before")
    @classmethod
    def _strip_time(cls, value: object) -> object:
        return _date_prefix(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value: object) -> list[str]:
        return _clean_tags(value)


class DiaryEntryUpdate(BaseModel):
    """Partial patch applied to an existing diary entry."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    rating: float | None = Field(default=None, ge=0.5, le=5.0)
    review: str | None = None
    tags: list[str] | None = None
    rewatch: bool | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value: object) -> list[str] | None:
        if value is None:
            return None
        return _clean_tags(value)

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude={"id"}, exclude_unset=True)


class ListCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    is_public: bool = Field(default=False, alias="isPublic")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("List name may not be blank")
        return stripped

    @field_validator("description", mode="before")
    @classmethod
    def _default_description(cls, value: object) -> object:
        return "" if value is None else value


class ListUpdate(BaseModel):
    """Metadata patch plus at most one membership operation."""

    model_config = ConfigDict(populate_by_name=True)

    list_id: str = Field(alias="listId", min_length=1)
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    is_public: bool | None = Field(default=None, alias="isPublic")
    add_movie: MovieInput | None = Field(default=None, alias="addMovie")
    remove_movie: int | None = Field(default=None, alias="removeMovie")
    reorder_movies: list[int] | None = Field(default=None, alias="reorderMovies")

    @model_validator(mode="after")
    def _single_membership_operation(self) -> "ListUpdate":
        requested = [
            operation
            for operation in (self.add_movie, self.remove_movie, self.reorder_movies)
            if operation is not None
        ]
        if len(requested) > 1:
            raise ValueError(
                "Only one of addMovie, removeMovie or reorderMovies may be supplied"
            )
        return self

    def metadata_changes(self) -> dict[str, object]:
        return self.model_dump(
            include={"name", "description", "is_public"}, exclude_unset=True
        )


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str | None = Field(default=None, max_length=100)
    handle: str | None = Field(default=None, max_length=100)
    bio: str | None = None
    avatar_url: str | None = Field(default=None, alias="avatarUrl", max_length=500)

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)


class SyncDiaryEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    movie_id: int = Field(alias="movieId")
    movie: MovieInput | None = None
    watched_date: date = Field(alias="watchedDate")
    rating: float | None = Field(default=None, ge=0.5, le=5.0)
    review: str | None = None
    tags: list[str] = Field(default_factory=list)
    rewatch: bool = False

    @field_validator("watched_date", mode="before")
    @classmethod
    def _strip_time(cls, value: object) -> object:
        return _date_prefix(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value: object) -> list[str]:
        return _clean_tags(value)


class SyncList(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1, max_length=200)
    description: str | None = ""
    is_public: bool = Field(default=False, alias="isPublic")
    movie_ids: list[int] = Field(default_factory=list, alias="movieIds")


class SyncPayload(BaseModel):
    """Snapshot of locally cached data replayed into the server store.

    Items are kept raw here; each sync step validates its own items so one
    malformed record only fails that record.
    """

    model_config = ConfigDict(populate_by_name=True)

    favorites: list[Any] = Field(default_factory=list)
    watchlist: list[Any] = Field(default_factory=list)
    watched: list[Any] = Field(default_factory=list)
    diary_entries: list[Any] = Field(default_factory=list, alias="diaryEntries")
    custom_lists: list[Any] = Field(default_factory=list, alias="customLists")
    profile: Any = None


def validate_each(
    model: type[ModelT], items: Iterable[Any]
) -> tuple[list[ModelT], list[str]]:
    """Validate ``items`` one by one, returning the valid models and error messages."""

    valid: list[ModelT] = []
    errors: list[str] = []
    for index, item in enumerate(items):
        try:
            valid.append(model.model_validate(item))
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'item'}: {error['msg']}"
                for error in exc.errors(include_url=False)
            )
            errors.append(f"item {index}: {details}")
    return valid, errors
