"""Favicon enrichment: bounded fan-out lookups joined before results are returned."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TypeVar, Union
from urllib.parse import urlsplit

from tabstash.archive.types import ArchivedTab, Tab
from tabstash.infrastructure.config import FAVICON_CONCURRENCY, FAVICON_FALLBACK_URL, FAVICON_TIMEOUT
from tabstash.infrastructure.logger import logger

K = TypeVar("K")


@dataclass(frozen=True)
class IconData:
    mime_type: str
    data: bytes


FaviconResult = Union[IconData, str, None]
FaviconLookup = Callable[[str], Awaitable[FaviconResult]]


async def no_favicon_lookup(url: str) -> FaviconResult:
    """Lookup used when no favicon source is wired in; every tab gets the fallback."""
    return None


def fallback_favicon(url: str) -> str:
    """Icon-by-domain service URL for the tab's ASCII host."""
    host = urlsplit(url).hostname or ""
    try:
        host = host.encode("idna").decode("ascii")
    except UnicodeError:
        pass
    return FAVICON_FALLBACK_URL + host


def to_data_uri(icon: IconData) -> str:
    return f"data:{icon.mime_type};base64,{base64.b64encode(icon.data).decode('ascii')}"


class FaviconEnricher:
    """Attaches a favicon to every tab without letting one failed lookup abort the batch."""

    def __init__(
        self,
        lookup: FaviconLookup = no_favicon_lookup,
        *,
        max_concurrency: int = FAVICON_CONCURRENCY,
        timeout_s: float = FAVICON_TIMEOUT,
    ) -> None:
        self._lookup = lookup
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._timeout = timeout_s

    async def favicon_for(self, url: str) -> str:
        """Resolve one favicon, falling back on error, timeout, or empty data."""
        async with self._semaphore:
            try:
                result = await asyncio.wait_for(self._lookup(url), timeout=self._timeout)
            except asyncio.TimeoutError:
                logger.debug("Favicon lookup timed out", url=url, timeout_s=self._timeout)
                return fallback_favicon(url)
            except Exception as err:
                logger.debug("Favicon lookup failed", url=url, error=str(err))
                return fallback_favicon(url)

        if isinstance(result, IconData) and result.data:
            return to_data_uri(result)
        if isinstance(result, str) and result:
            return result
        return fallback_favicon(url)

    async def enrich(self, tabs: Sequence[Tab]) -> list[ArchivedTab]:
        favicons = await asyncio.gather(*(self.favicon_for(tab.url) for tab in tabs))
        return [
            ArchivedTab(id=tab.id, url=tab.url, title=tab.title, session_id=tab.session_id, favicon=favicon)
            for tab, favicon in zip(tabs, favicons)
        ]

    async def enrich_groups(self, groups: Mapping[K, Sequence[Tab]]) -> dict[K, list[ArchivedTab]]:
        """Enrich each group independently; return once every group has finished."""
        keys = list(groups)
        enriched = await asyncio.gather(*(self.enrich(groups[key]) for key in keys))
        return dict(zip(keys, enriched))
