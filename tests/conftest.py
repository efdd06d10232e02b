import pytest

from tabstash.archive.favicons import IconData
from tabstash.archive.repository import TabStore
from tabstash.infrastructure.config import ArchivePreferences
from tabstash.infrastructure.database import SchemaManager


@pytest.fixture
def schema() -> SchemaManager:
    """An opened in-memory database for testing."""
    manager = SchemaManager(":memory:")
    manager.open()
    yield manager
    manager.close()


@pytest.fixture
def store(schema: SchemaManager) -> TabStore:
    return TabStore(schema.db)


class FakeFaviconLookup:
    """Returns icon bytes for every URL except those configured to fail."""

    def __init__(self, failing: set[str] | None = None, missing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.missing = missing or set()
        self.calls: list[str] = []

    async def __call__(self, url: str):
        self.calls.append(url)
        if url in self.failing:
            raise RuntimeError(f"lookup failed for {url}")
        if url in self.missing:
            return None
        return IconData(mime_type="image/png", data=b"icon")


@pytest.fixture
def lookup() -> FakeFaviconLookup:
    return FakeFaviconLookup()


@pytest.fixture
def preferences() -> ArchivePreferences:
    return ArchivePreferences(
        allow_duplicate_urls=False,
        remove_after_restore=False,
        save_concurrency=4,
        favicon_concurrency=4,
        favicon_timeout=1.0,
    )
