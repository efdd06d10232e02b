"""Exception hierarchy for the archive engine."""

from __future__ import annotations


class TabstashError(Exception):
    """Base class for all archive engine errors."""


class DatabaseOpenError(TabstashError):
    """The archive database could not be opened or initialized."""


class SchemaVersionError(DatabaseOpenError):
    """The stored schema was written by a newer version of tabstash."""

    def __init__(self, stored: int, supported: int) -> None:
        super().__init__(f"Stored schema version {stored} is newer than supported version {supported}")
        self.stored = stored
        self.supported = supported


class QueryError(TabstashError):
    """A statement failed to execute."""

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql


class InvalidUrlError(TabstashError, ValueError):
    """A URL has no host to derive a domain from."""


class InvalidGroupError(TabstashError, ValueError):
    """A group id does not fit its grouping mode."""
