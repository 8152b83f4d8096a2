"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """A locally persisted account keyed by the identity provider subject."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    firebase_uid: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    username: Mapped[str | None] = mapped_column(String(100), nullable=True)
    handle: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Movie(Base):
    """Cached catalog metadata keyed by the catalog identifier."""

    __tablename__ = "movies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    title: Mapped[str] = mapped_column(String(500))
    poster_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    release_date: Mapped[str | None] = mapped_column(String(50), nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    vote_average: Mapped[float | None] = mapped_column(Float, nullable=True)
    runtime: Mapped[int | None] = mapped_column(Integer, nullable=True)
    director_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    primary_cast: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    cached_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    extended_cached_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )

    @property
    def needs_extended_data(self) -> bool:
        return (
            self.director_name is None
            and self.primary_cast is None
            and self.genres is None
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "poster_path": self.poster_path,
            "release_date": self.release_date,
            "overview": self.overview,
            "vote_average": self.vote_average,
            "runtime": self.runtime,
            "director_name": self.director_name,
            "primary_cast": self.primary_cast,
            "genres": self.genres,
        }


class Favorite(Base):
    __tablename__ = "favorites"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    movie_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )


class WatchlistItem(Base):
    __tablename__ = "watchlist"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    movie_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )


class WatchedItem(Base):
    __tablename__ = "watched"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    movie_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True
    )
    watched_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )


class DiaryEntry(Base):
    """A dated viewing log with an optional rating, review and tags."""

    __tablename__ = "diary_entries"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "movie_id", "watched_date", name="uq_diary_user_movie_date"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    movie_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("movies.id", ondelete="CASCADE"), index=True
    )
    watched_date: Mapped[str] = mapped_column(String(50), index=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    review: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    rewatch: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def to_payload(self, movie: Movie | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "movieId": self.movie_id,
            "watchedDate": self.watched_date,
            "rating": self.rating,
            "review": self.review,
            "tags": list(self.tags or []),
            "rewatch": self.rewatch,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if movie is not None:
            payload["movie"] = movie.to_payload()
        return payload


class CustomList(Base):
    """A user curated, ordered collection of movies."""

    __tablename__ = "custom_lists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    members: Mapped[list["ListMovie"]] = relationship(
        back_populates="custom_list",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ListMovie.position",
    )

    def to_payload(self) -> dict[str, Any]:
        members = sorted(self.members, key=lambda member: member.position)
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "isPublic": self.is_public,
            "viewCount": self.view_count,
            "likeCount": self.like_count,
            "movieIds": [member.movie_id for member in members],
            "movies": [member.movie.to_payload() for member in members],
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class ListMovie(Base):
    __tablename__ = "list_movies"

    list_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("custom_lists.id", ondelete="CASCADE"), primary_key=True
    )
    movie_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    custom_list: Mapped[CustomList] = relationship(back_populates="members")
    movie: Mapped[Movie] = relationship()


class UserStats(Base):
    """Denormalised per-user counters derived from the collection tables."""

    __tablename__ = "user_stats"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    movies_watched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_runtime_minutes: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    avg_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    diary_entries_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    favorites_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lists_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    def to_payload(self) -> dict[str, Any]:
        hours_watched = round((self.total_runtime_minutes or 0) / 60, 1)
        return {
            "moviesWatched": self.movies_watched,
            "diaryEntries": self.diary_entries_count,
            "favorites": self.favorites_count,
            "lists": self.lists_count,
            "hoursWatched": hours_watched,
            "avgRating": self.avg_rating,
        }
