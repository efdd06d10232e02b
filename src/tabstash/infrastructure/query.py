"""Parameterized statement runner with list-parameter expansion and result shaping."""

from __future__ import annotations

import re
import sqlite3
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from functools import lru_cache
from typing import Any

from tabstash.infrastructure.errors import QueryError

Row = dict[str, Any]
Params = Mapping[str, Any]
ListParams = Mapping[str, Sequence[Any]]


def _placeholder(name: str) -> re.Pattern[str]:
    # Match ":name" only as a whole token so ":name" never rewrites ":names" or ":name_2".
    return re.compile(rf":{re.escape(name)}(?![A-Za-z0-9_])")


@lru_cache(maxsize=256)
def _expand_sql(sql: str, shape: tuple[tuple[str, int], ...]) -> str:
    counts = dict(shape)
    # One pass over the statement so generated identifiers are never rewritten again.
    names = "|".join(re.escape(name) for name in sorted(counts, key=len, reverse=True))
    pattern = re.compile(rf":({names})(?![A-Za-z0-9_])")

    def identifiers(match: re.Match[str]) -> str:
        name = match.group(1)
        return ", ".join(f":{name}_{i}" for i in range(counts[name])) or "NULL"

    return pattern.sub(identifiers, sql)


def expand_list_params(
    sql: str, params: Params | None = None, list_params: ListParams | None = None
) -> tuple[str, dict[str, Any]]:
    """Rewrite each ``:name`` list placeholder into ``:name_0, :name_1, ...``.

    Every list value is bound individually under its suffixed name. An empty
    list expands to ``NULL`` so that ``IN (NULL)`` matches nothing.
    """
    bound: dict[str, Any] = dict(params or {})
    if not list_params:
        return sql, bound

    for name in list_params:
        for other in list_params:
            if other != name and re.fullmatch(rf"{re.escape(other)}_\d+", name):
                raise QueryError(f"List parameter {name!r} collides with expanded names of {other!r}", sql)

    shape: list[tuple[str, int]] = []
    for name, values in list_params.items():
        if isinstance(values, (str, bytes)):
            raise QueryError(f"List parameter {name!r} must be a sequence of values, not a string", sql)
        if not _placeholder(name).search(sql):
            raise QueryError(f"List parameter {name!r} has no placeholder in statement", sql)
        values = list(values)
        for i, value in enumerate(values):
            param_name = f"{name}_{i}"
            if param_name in bound:
                raise QueryError(f"Expanded parameter {param_name!r} collides with an existing parameter", sql)
            bound[param_name] = value
        shape.append((name, len(values)))

    return _expand_sql(sql, tuple(shape)), bound


class QueryExecutor:
    """Runs statements against the shared connection.

    Result shaping is chosen per call and the modes are mutually exclusive:

    - ``on_row``: callback invoked with each materialized row, returns None
    - ``columns`` as a string: list of that column's values
    - ``columns`` as a sequence: list of row dicts restricted to those columns
    - ``key``: dict mapping ``row[key]`` to the row dict, last row wins

    Identical statement text (after list expansion) is prepared once by the
    connection's statement cache and reused.
    """

    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db

    @property
    def db(self) -> sqlite3.Connection:
        return self._db

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed statements in one write transaction.

        Nested use joins the outer transaction.
        """
        if self._db.in_transaction:
            yield
            return
        self._db.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            self._db.execute("ROLLBACK")
            raise
        else:
            self._db.execute("COMMIT")

    def execute(
        self,
        sql: str,
        *,
        params: Params | None = None,
        list_params: ListParams | None = None,
        columns: str | Sequence[str] | None = None,
        key: str | None = None,
        on_row: Callable[[Any], None] | None = None,
    ) -> list[Any] | dict[Any, Any] | None:
        if on_row is not None and key is not None:
            raise QueryError("on_row and key result modes are mutually exclusive", sql)

        if on_row is not None:
            for row in self.iter_rows(sql, params=params, list_params=list_params):
                on_row(_pick(row, columns))
            return None

        if key is not None:
            keyed: dict[Any, Any] = {}
            for row in self.iter_rows(sql, params=params, list_params=list_params):
                if key not in row:
                    raise QueryError(f"Key column {key!r} not in result", sql)
                keyed[row[key]] = _pick(row, columns)
            return keyed

        if columns is not None:
            return [_pick(row, columns) for row in self.iter_rows(sql, params=params, list_params=list_params)]

        self.run(sql, params=params, list_params=list_params)
        return None

    def run(self, sql: str, *, params: Params | None = None, list_params: ListParams | None = None) -> int:
        """Execute a write statement and return the number of affected rows."""
        expanded, bound = expand_list_params(sql, params, list_params)
        try:
            cursor = self._db.execute(expanded, bound)
            cursor.fetchall()
        except sqlite3.Error as err:
            raise QueryError(str(err), expanded) from err
        return cursor.rowcount

    def iter_rows(
        self, sql: str, *, params: Params | None = None, list_params: ListParams | None = None
    ) -> Iterator[Row]:
        """Lazily yield one dict per result row. Single pass; re-run the query to restart."""
        expanded, bound = expand_list_params(sql, params, list_params)
        try:
            cursor = self._db.execute(expanded, bound)
            for row in cursor:
                yield dict(row)
        except sqlite3.Error as err:
            raise QueryError(str(err), expanded) from err

    @staticmethod
    def expansion_cache_info() -> Any:
        return _expand_sql.cache_info()


def _pick(row: Row, columns: str | Sequence[str] | None) -> Any:
    if columns is None:
        return row
    try:
        if isinstance(columns, str):
            return row[columns]
        return {column: row[column] for column in columns}
    except KeyError as err:
        raise QueryError(f"Column {err.args[0]!r} not in result") from err
