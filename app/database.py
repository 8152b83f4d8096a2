"""Database utilities for the Shaflix service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def insert_statement(session: AsyncSession, table: Any):
    """Return a dialect-specific INSERT supporting ``ON CONFLICT`` clauses."""

    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(table)
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    raise RuntimeError(f"Unsupported database dialect: {dialect_name}")


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str, **engine_options: Any):
        self._engine: AsyncEngine = create_async_engine(
            database_url, future=True, **engine_options
        )
        if self._engine.dialect.name == "sqlite":
            event.listen(
                self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys
            )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Registers the mapped tables on Base.metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        table_names = set(inspector.get_table_names())

        def _ensure_column(
            table: str, name: str, ddl: str, init_sql: str | None = None
        ) -> None:
            if table not in table_names:
                return
            existing_columns = {
                column["name"] for column in inspector.get_columns(table)
            }
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))

        _ensure_column(
            "movies",
            "director_name",
            "ALTER TABLE movies ADD COLUMN director_name VARCHAR(255)",
        )
        _ensure_column(
            "movies",
            "primary_cast",
            "ALTER TABLE movies ADD COLUMN primary_cast JSON",
        )
        _ensure_column(
            "movies",
            "genres",
            "ALTER TABLE movies ADD COLUMN genres JSON",
        )
        _ensure_column(
            "movies",
            "extended_cached_at",
            "ALTER TABLE movies ADD COLUMN extended_cached_at DATETIME",
        )
        _ensure_column(
            "custom_lists",
            "view_count",
            "ALTER TABLE custom_lists ADD COLUMN view_count INTEGER DEFAULT 0",
            "UPDATE custom_lists SET view_count = 0 WHERE view_count IS NULL",
        )
        _ensure_column(
            "custom_lists",
            "like_count",
            "ALTER TABLE custom_lists ADD COLUMN like_count INTEGER DEFAULT 0",
            "UPDATE custom_lists SET like_count = 0 WHERE like_count IS NULL",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            async with session.begin():
                yield session
