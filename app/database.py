"""Database utilities for the VaroLogs service."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import MetaData, event, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

# Columns added to ``items`` after the first release.
ITEM_COLUMN_MIGRATIONS: tuple[tuple[str, str], ...] = (
    ("platform", "TEXT"),
    ("developer", "TEXT"),
    ("publisher", "TEXT"),
    ("duration_min", "INTEGER"),
    ("pages", "INTEGER"),
    ("episodes", "INTEGER"),
    ("seasons", "INTEGER"),
    ("isbn", "TEXT"),
    ("metadata", "JSON"),
    ("status", "TEXT"),
)


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        url = make_url(database_url)
        self._is_sqlite = url.get_backend_name() == "sqlite"
        if self._is_sqlite and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        if self._is_sqlite:
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

        async with self._engine.begin() as connection:
            await connection.run_sync(self._apply_schema_migrations)
            await connection.run_sync(Base.metadata.create_all)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced item columns exist on older databases."""

        inspector = inspect(sync_connection)
        if "items" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("items")
        }
        for name, ddl_type in ITEM_COLUMN_MIGRATIONS:
            if name in existing_columns:
                continue
            sync_connection.execute(
                text(f"ALTER TABLE items ADD COLUMN {name} {ddl_type}")
            )
            existing_columns.add(name)

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()
