"""Readiness-gated entry point for archiving and retrieving tabs."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from typing import Any, Union

from tabstash.archive.favicons import FaviconEnricher, FaviconLookup, no_favicon_lookup
from tabstash.archive.repository import TabStore, base_domain, parse_group_id
from tabstash.archive.tab_list import TabList
from tabstash.archive.types import ArchiveView, GroupDeletion, RestoreRequest, Tab, TabEntry
from tabstash.infrastructure.config import ArchivePreferences
from tabstash.infrastructure.database import SchemaManager, database
from tabstash.infrastructure.logger import logger

TabEntryLike = Union[TabEntry, Mapping[str, str], tuple[str, str]]


def _as_entry(entry: TabEntryLike) -> TabEntry:
    if isinstance(entry, TabEntry):
        return entry
    if isinstance(entry, tuple):
        url, title = entry
        return TabEntry(url=url, title=title)
    return TabEntry.model_validate(entry)


class ArchiveController:
    """The only component external collaborators call.

    Every public operation awaits the readiness future once before touching
    storage. A failed open surfaces from every operation and is not retried.
    """

    def __init__(
        self,
        schema: SchemaManager | None = None,
        *,
        lookup: FaviconLookup = no_favicon_lookup,
        preferences: ArchivePreferences | None = None,
    ) -> None:
        self._schema = schema or database
        self._preferences = preferences or ArchivePreferences()
        self._enricher = FaviconEnricher(
            lookup,
            max_concurrency=self._preferences.favicon_concurrency,
            timeout_s=self._preferences.favicon_timeout,
        )
        self._ready: asyncio.Future[TabStore] | None = None

    @property
    def preferences(self) -> ArchivePreferences:
        return self._preferences

    @property
    def ready(self) -> asyncio.Future[TabStore]:
        if self._ready is None:
            self._ready = asyncio.ensure_future(self._init())
        return self._ready

    async def _init(self) -> TabStore:
        db = await self._schema.connection_ready()
        return TabStore(db)

    # --- Reads ---

    async def get_archive(self) -> ArchiveView:
        """All sessions, newest first, with their favicon-decorated tabs."""
        store = await self.ready
        sessions = store.get_sessions()
        tabs = store.get_tabs_for_sessions([session.id for session in sessions])
        decorated = await self._enricher.enrich_groups(tabs)
        return ArchiveView(groups=sessions, tabs=decorated, grouping_mode="session")

    async def get_archive_by_domain(self) -> ArchiveView:
        store = await self.ready
        domains = store.get_domains()
        tabs = store.get_tabs_for_domains([domain.name for domain in domains])
        decorated = await self._enricher.enrich_groups(tabs)
        return ArchiveView(groups=domains, tabs=decorated, grouping_mode="domain")

    # --- Writes ---

    async def create_session(self, name: str | None = None) -> int:
        store = await self.ready
        return store.create_session(name)

    async def create_tab(self, url: str, title: str, session_id: int) -> None:
        store = await self.ready
        store.create_tab(url, title, session_id)

    async def save_tab_list(
        self, entries: Iterable[TabEntryLike] | TabList, existing_session_id: int | None = None
    ) -> int | None:
        """Archive tabs into a session, creating one unless an id is supplied.

        Each tab's domain is derived in a worker thread, at most
        ``save_concurrency`` at a time. The session, domains and tabs are then
        written in one transaction, in input order. Returns the session id, or
        None if there was nothing to save.
        """
        store = await self.ready
        if isinstance(entries, TabList) and existing_session_id is None:
            existing_session_id = entries.session_id
        tabs = [_as_entry(entry) for entry in entries]
        if not tabs:
            return existing_session_id

        semaphore = asyncio.Semaphore(self._preferences.save_concurrency)

        async def resolve(url: str) -> str:
            async with semaphore:
                return await asyncio.to_thread(base_domain, url)

        domains = await asyncio.gather(*(resolve(tab.url) for tab in tabs))
        session_id = store.save_tabs(
            ((tab.url, tab.title, domain) for tab, domain in zip(tabs, domains)),
            existing_session_id,
        )

        logger.info("Tabs archived", session_id=session_id, count=len(tabs))
        return session_id

    # --- Deletes ---

    async def delete_all(self) -> None:
        store = await self.ready
        store.delete_all()

    async def delete_tab(self, id: int) -> None:
        store = await self.ready
        store.delete_tabs([id])

    async def delete_group(self, data: GroupDeletion | Mapping[str, Any]) -> None:
        store = await self.ready
        group = GroupDeletion.model_validate(data)
        store.delete_group(group.id, group.tab_ids, group.grouping)

    # --- Restore ---

    async def restore_tab(self, id: int) -> RestoreRequest:
        """URL to reopen for one archived tab.

        The tab is dropped from the archive only when ``remove_after_restore``
        is set and the tab exists.
        """
        store = await self.ready
        tabs = store.get_tabs([id])
        request = self._restore_request(tabs, remove=bool(tabs))
        if request.removed:
            store.delete_tabs([id])
        return request

    async def restore_group(self, data: GroupDeletion | Mapping[str, Any]) -> RestoreRequest:
        store = await self.ready
        group = GroupDeletion.model_validate(data)
        parse_group_id(group.id, group.grouping)
        request = self._restore_request(store.get_tabs(group.tab_ids), remove=True)
        if request.removed:
            store.delete_group(group.id, group.tab_ids, group.grouping)
        return request

    def _restore_request(self, tabs: list[Tab], *, remove: bool) -> RestoreRequest:
        return RestoreRequest(
            urls=[tab.url for tab in tabs],
            in_background=self._preferences.open_in_background,
            removed=remove and self._preferences.remove_after_restore,
        )

    def close(self) -> None:
        self._schema.close()
