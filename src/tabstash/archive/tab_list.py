"""Collect open browser tabs into a de-duplicated list ready for archiving."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator

from tabstash.archive.types import TabEntry
from tabstash.infrastructure.config import ArchivePreferences

SKIP_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^about:"),
    re.compile(r"^resource:"),
    re.compile(r"^chrome:"),
    re.compile(r"^(moz|chrome)-extension:"),
]


def should_skip_url(url: str) -> bool:
    """Browser-internal pages are never archived."""
    return any(pattern.match(url) for pattern in SKIP_PATTERNS)


class TabList:
    """Ordered tab entries with an explicit duplicate-URL policy."""

    def __init__(self, session_id: int | None = None, allow_duplicate_urls: bool = False) -> None:
        self.session_id = session_id
        self.allow_duplicate_urls = allow_duplicate_urls
        self.tabs: list[TabEntry] = []
        self._urls: set[str] = set()

    def __len__(self) -> int:
        return len(self.tabs)

    def __iter__(self) -> Iterator[TabEntry]:
        return iter(self.tabs)

    def push(self, url: str, title: str) -> bool:
        """Append a tab. Returns False if it was dropped as a duplicate."""
        if not self.allow_duplicate_urls and url in self._urls:
            return False
        self._urls.add(url)
        self.tabs.append(TabEntry(url=url, title=title))
        return True

    @classmethod
    def from_browser_tabs(
        cls,
        tabs: Iterable[tuple[str, str]],
        preferences: ArchivePreferences | None = None,
        session_id: int | None = None,
    ) -> TabList:
        preferences = preferences or ArchivePreferences()
        tab_list = cls(session_id=session_id, allow_duplicate_urls=preferences.allow_duplicate_urls)
        for url, title in tabs:
            if not should_skip_url(url):
                tab_list.push(url, title)
        return tab_list
