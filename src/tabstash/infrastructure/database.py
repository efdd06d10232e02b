"""SQLite schema lifecycle: lazy open, versioning, migrations, and teardown."""

from __future__ import annotations

import asyncio
import atexit
import enum
import sqlite3
from collections.abc import Callable, Mapping
from pathlib import Path

from tabstash.infrastructure.config import DB_PATH, SCHEMA_VERSION, STATEMENT_CACHE_SIZE
from tabstash.infrastructure.errors import DatabaseOpenError, SchemaVersionError
from tabstash.infrastructure.logger import logger
from tabstash.infrastructure.query import QueryExecutor

TABLES: dict[str, str] = {
    "sessions": """
        CREATE TABLE sessions (
            id INTEGER PRIMARY KEY,
            timestamp INTEGER NOT NULL,
            name TEXT
        )""",
    "domains": """
        CREATE TABLE domains (
            id INTEGER PRIMARY KEY,
            name TEXT UNIQUE
        )""",
    "tabs": """
        CREATE TABLE tabs (
            id INTEGER PRIMARY KEY,
            session_id INTEGER NOT NULL,
            domain_id INTEGER NOT NULL,
            url TEXT NOT NULL,
            title TEXT NOT NULL,
            FOREIGN KEY (session_id) REFERENCES sessions(id),
            FOREIGN KEY (domain_id) REFERENCES domains(id)
        )""",
}

INDICES: dict[str, tuple[str, list[str]]] = {
    "tabstash_domains_name_index": ("domains", ["name"]),
    "tabstash_sessions_timestamp_index": ("sessions", ["timestamp"]),
}

Migration = Callable[[QueryExecutor], None]

# Forward migrations keyed by the version they upgrade to. Add one entry per
# schema change and bump SCHEMA_VERSION.
MIGRATIONS: dict[int, Migration] = {}


class ConnectionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    OPENING = "opening"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


def create_schema(executor: QueryExecutor, version: int = SCHEMA_VERSION) -> None:
    """Create all tables and indexes and stamp the schema version in one transaction."""
    with executor.transaction():
        for statement in TABLES.values():
            executor.run(statement)
        for name, (table, columns) in INDICES.items():
            executor.run(f"CREATE INDEX IF NOT EXISTS {name} ON {table}({', '.join(columns)})")
        set_schema_version(executor, version)


def migrate_schema(
    executor: QueryExecutor,
    from_version: int,
    to_version: int = SCHEMA_VERSION,
    migrations: Mapping[int, Migration] = MIGRATIONS,
) -> None:
    """Run each forward migration step after ``from_version`` in order, then re-stamp."""
    with executor.transaction():
        for target in range(from_version + 1, to_version + 1):
            step = migrations.get(target)
            if step is None:
                logger.warning("No migration registered for schema version", version=target)
                continue
            logger.info("Migrating schema", to_version=target)
            step(executor)
        set_schema_version(executor, to_version)


def get_schema_version(executor: QueryExecutor) -> int:
    return executor.execute("PRAGMA user_version", columns="user_version")[0]


def set_schema_version(executor: QueryExecutor, version: int) -> None:
    executor.run(f"PRAGMA user_version = {int(version)}")


class SchemaManager:
    """Owns the single archive connection and its schema lifecycle.

    ``connection_ready()`` hands every caller the same memoized future; the
    first call triggers the open. A failed open is final for this manager.
    """

    def __init__(
        self,
        db_path: str | Path = DB_PATH,
        *,
        schema_version: int = SCHEMA_VERSION,
        migrations: Mapping[int, Migration] | None = None,
    ) -> None:
        self._db_path = db_path
        self._schema_version = schema_version
        self._migrations = MIGRATIONS if migrations is None else migrations
        self._db: sqlite3.Connection | None = None
        self._ready: asyncio.Future[sqlite3.Connection] | None = None
        self.state = ConnectionState.UNINITIALIZED
        self.was_migrated = False

    @property
    def db(self) -> sqlite3.Connection:
        assert self._db is not None and self.state is ConnectionState.READY, "Database not ready."
        return self._db

    def connection_ready(self) -> asyncio.Future[sqlite3.Connection]:
        """Return the shared readiness future, opening the database on first use."""
        if self._ready is None:
            self._ready = asyncio.ensure_future(self._open_async())
        return self._ready

    async def _open_async(self) -> sqlite3.Connection:
        return self.open()

    def open(self) -> sqlite3.Connection:
        """Open the database and bring its schema up to date."""
        if self.state is ConnectionState.READY:
            return self.db
        if self.state is not ConnectionState.UNINITIALIZED:
            raise DatabaseOpenError(f"Cannot open database in state {self.state.value}")

        self.state = ConnectionState.OPENING
        try:
            db = self._connect()
        except sqlite3.Error as err:
            self.state = ConnectionState.FAILED
            logger.error("Failed to open archive database", path=str(self._db_path), error=str(err))
            raise DatabaseOpenError(f"Cannot open {self._db_path}: {err}") from err

        try:
            self.was_migrated = self._init_schema(QueryExecutor(db))
        except Exception as err:
            db.close()
            self.state = ConnectionState.FAILED
            logger.error("Failed to initialize archive schema", path=str(self._db_path), error=str(err))
            if isinstance(err, DatabaseOpenError):
                raise
            raise DatabaseOpenError(f"Cannot initialize schema in {self._db_path}: {err}") from err

        self._db = db
        self.state = ConnectionState.READY
        atexit.register(self.close)
        logger.info("Archive database ready", path=str(self._db_path), migrated=self.was_migrated)
        return db

    def _connect(self) -> sqlite3.Connection:
        if str(self._db_path) != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        db = sqlite3.connect(
            str(self._db_path),
            isolation_level=None,
            cached_statements=STATEMENT_CACHE_SIZE,
        )
        db.row_factory = sqlite3.Row
        db.execute("PRAGMA foreign_keys = ON")
        return db

    def _init_schema(self, executor: QueryExecutor) -> bool:
        version = get_schema_version(executor)
        if version == 0:
            logger.info("Creating archive schema", version=self._schema_version)
            create_schema(executor, self._schema_version)
            return True
        if version < self._schema_version:
            migrate_schema(executor, version, self._schema_version, self._migrations)
            return True
        if version > self._schema_version:
            raise SchemaVersionError(version, self._schema_version)
        return False

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self.state is not ConnectionState.READY:
            return
        atexit.unregister(self.close)
        assert self._db is not None
        self._db.close()
        self._db = None
        self.state = ConnectionState.CLOSED
        logger.debug("Archive database closed", path=str(self._db_path))


# Singleton instance
database = SchemaManager()
