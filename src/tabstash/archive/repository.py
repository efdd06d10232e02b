"""Session, domain, and tab persistence."""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterable, Sequence
from urllib.parse import urlsplit

import tldextract

from tabstash.archive.types import Domain, GroupingMode, Session, Tab
from tabstash.infrastructure.errors import InvalidGroupError, InvalidUrlError
from tabstash.infrastructure.logger import logger
from tabstash.infrastructure.query import QueryExecutor

# Bundled public suffix snapshot only; never fetched over the network.
_tld_extract = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)

SQL = {
    "create_tab": """INSERT INTO tabs (url, title, session_id, domain_id)
                     VALUES (:url, :title, :session_id, :domain_id)""",
    "get_tabs_for_sessions": """SELECT id, url, title, session_id, domain_id
                                FROM tabs WHERE session_id IN (:session_ids)
                                ORDER BY id DESC""",
    "get_tabs_for_domains": """SELECT tabs.id, tabs.url, tabs.title, tabs.session_id, tabs.domain_id,
                                      domains.name AS domain_name
                               FROM tabs JOIN domains ON domains.id = tabs.domain_id
                               WHERE domains.name IN (:names)
                               ORDER BY tabs.id DESC""",
    "get_tabs": "SELECT id, url, title, session_id, domain_id FROM tabs WHERE id IN (:ids)",
    "delete_tabs": "DELETE FROM tabs WHERE id IN (:ids)",
    "delete_all_tabs": "DELETE FROM tabs",
    "get_sessions": """SELECT id, timestamp, name FROM sessions
                       ORDER BY id DESC LIMIT :limit OFFSET :offset""",
    "create_session": "INSERT INTO sessions (timestamp, name) VALUES (:timestamp, :name) RETURNING id",
    "delete_session": "DELETE FROM sessions WHERE id = :id",
    "delete_all_sessions": "DELETE FROM sessions",
    "create_domain": "INSERT OR IGNORE INTO domains (name) VALUES (:name)",
    "get_domain": "SELECT id, name FROM domains WHERE name = :name",
    "get_domains": "SELECT id, name FROM domains ORDER BY name",
    "delete_domain": "DELETE FROM domains WHERE name = :name",
    "delete_all_domains": "DELETE FROM domains",
}

TAB_COLUMNS = ["id", "url", "title", "session_id", "domain_id"]


def base_domain(url: str) -> str:
    """Effective top-level domain plus one label (eTLD+1) of a URL's host.

    Hosts without a public suffix, such as IP addresses or ``localhost``,
    are returned as they are.
    """
    host = urlsplit(url).hostname
    if not host:
        raise InvalidUrlError(f"URL has no host: {url!r}")
    extracted = _tld_extract(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}"
    return host


def parse_group_id(group_id: int | str, grouping_mode: GroupingMode) -> int | str:
    """Session ids are integers, domain ids are names."""
    if grouping_mode == "domain":
        return str(group_id)
    if grouping_mode != "session":
        raise InvalidGroupError(f"Unknown grouping mode: {grouping_mode!r}")
    try:
        return int(group_id)
    except ValueError as err:
        raise InvalidGroupError(f"Session id must be an integer, got {group_id!r}") from err


class TabStore:
    def __init__(self, db: sqlite3.Connection) -> None:
        self._query = QueryExecutor(db)

    @property
    def query(self) -> QueryExecutor:
        return self._query

    # --- Domains ---

    def create_domain(self, name: str) -> int:
        """Get-or-create a domain by name and return its id."""
        with self._query.transaction():
            self._query.run(SQL["create_domain"], params={"name": name})
            return self._query.execute(SQL["get_domain"], params={"name": name}, columns="id")[0]

    def get_domain_by_name(self, name: str) -> Domain | None:
        rows = self._query.execute(SQL["get_domain"], params={"name": name}, columns=["id", "name"])
        return Domain(**rows[0]) if rows else None

    def get_domains(self) -> list[Domain]:
        return [Domain(**row) for row in self._query.iter_rows(SQL["get_domains"])]

    def delete_domain_by_name(self, name: str) -> None:
        self._query.run(SQL["delete_domain"], params={"name": name})

    # --- Sessions ---

    def create_session(self, name: str | None = None) -> int:
        with self._query.transaction():
            rows = self._query.execute(
                SQL["create_session"],
                params={"timestamp": int(time.time() * 1000), "name": name},
                columns="id",
            )
        session_id = rows[0]
        logger.debug("Session created", session_id=session_id)
        return session_id

    def get_sessions(self, limit: int = -1, offset: int = 0) -> list[Session]:
        rows = self._query.execute(
            SQL["get_sessions"],
            params={"limit": limit, "offset": offset},
            columns=["id", "timestamp", "name"],
        )
        return [Session(**row) for row in rows]

    def delete_session(self, id: int) -> None:
        self._query.run(SQL["delete_session"], params={"id": id})

    # --- Tabs ---

    def create_tab(self, url: str, title: str, session_id: int) -> None:
        domain = base_domain(url)
        with self._query.transaction():
            domain_id = self.create_domain(domain)
            self._insert_tab(url, title, session_id, domain_id)

    def save_tabs(self, rows: Iterable[tuple[str, str, str]], session_id: int | None = None) -> int:
        """Insert ``(url, title, domain)`` rows in order in one transaction.

        A new session is created when ``session_id`` is None. Returns the session id.
        """
        with self._query.transaction():
            if session_id is None:
                session_id = self.create_session()
            domain_ids: dict[str, int] = {}
            for url, title, domain in rows:
                if domain not in domain_ids:
                    domain_ids[domain] = self.create_domain(domain)
                self._insert_tab(url, title, session_id, domain_ids[domain])
        return session_id

    def _insert_tab(self, url: str, title: str, session_id: int, domain_id: int) -> None:
        self._query.run(
            SQL["create_tab"],
            params={"url": url, "title": title, "session_id": session_id, "domain_id": domain_id},
        )

    def get_tabs_for_sessions(self, session_ids: Sequence[int]) -> dict[int, list[Tab]]:
        """Tabs grouped by session, newest first. Every requested id is present."""
        grouped: dict[int, list[Tab]] = {session_id: [] for session_id in session_ids}
        if not grouped:
            return grouped
        self._query.execute(
            SQL["get_tabs_for_sessions"],
            list_params={"session_ids": list(grouped)},
            columns=TAB_COLUMNS,
            on_row=lambda row: grouped[row["session_id"]].append(Tab(**row)),
        )
        return grouped

    def get_tabs_for_domains(self, names: Sequence[str]) -> dict[str, list[Tab]]:
        """Tabs grouped by domain name, newest first. Every requested name is present."""
        grouped: dict[str, list[Tab]] = {name: [] for name in names}
        if not grouped:
            return grouped
        for row in self._query.iter_rows(SQL["get_tabs_for_domains"], list_params={"names": list(grouped)}):
            name = row.pop("domain_name")
            grouped[name].append(Tab(**row))
        return grouped

    def get_tabs(self, ids: Sequence[int]) -> list[Tab]:
        """Tabs by id, in the order asked for. Unknown ids are skipped."""
        if not ids:
            return []
        found = self._query.execute(SQL["get_tabs"], list_params={"ids": list(ids)}, columns=TAB_COLUMNS, key="id")
        return [Tab(**found[id]) for id in ids if id in found]

    def delete_tabs(self, ids: Sequence[int]) -> None:
        if not ids:
            return
        self._query.run(SQL["delete_tabs"], list_params={"ids": list(ids)})

    # --- Bulk deletes ---

    def delete_group(self, group_id: int | str, tab_ids: Sequence[int], grouping_mode: GroupingMode) -> None:
        """Delete the given tabs, then the session or domain that grouped them."""
        group_id = parse_group_id(group_id, grouping_mode)
        with self._query.transaction():
            self.delete_tabs(tab_ids)
            if grouping_mode == "session":
                self.delete_session(group_id)
            else:
                self.delete_domain_by_name(group_id)
        logger.debug("Group deleted", grouping=grouping_mode, group_id=group_id, tabs=len(tab_ids))

    def delete_all(self) -> None:
        with self._query.transaction():
            self._query.run(SQL["delete_all_tabs"])
            self._query.run(SQL["delete_all_sessions"])
            self._query.run(SQL["delete_all_domains"])
        logger.info("Archive cleared")
