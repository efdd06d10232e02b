"""Configuration constants, .env parsing, and archive preferences."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel


def read_env_file(keys: list[str], env_file: Path | None = None) -> dict[str, str]:
    """Values for ``keys`` from ``.env`` in the working directory.

    The file is only read; nothing is exported to os.environ.
    """
    path = env_file or Path.cwd() / ".env"
    try:
        lines = path.read_text().splitlines()
    except OSError:
        return {}

    wanted = set(keys)
    result: dict[str, str] = {}
    for line in lines:
        line = line.strip()
        if line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key, value = key.strip(), value.strip()
        if key not in wanted:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        if value:
            result[key] = value
    return result


_ENV_KEYS = [
    "TABSTASH_STORE_DIR",
    "FAVICON_CONCURRENCY",
    "FAVICON_TIMEOUT",
    "SAVE_CONCURRENCY",
    "ALLOW_DUPLICATE_URLS",
    "REMOVE_AFTER_RESTORE",
    "OPEN_IN_BACKGROUND",
]

# os.environ wins over .env.
_env_config = read_env_file(_ENV_KEYS)


def _setting(name: str, default: str) -> str:
    return os.environ.get(name) or _env_config.get(name, default)


def _flag(name: str) -> bool:
    return _setting(name, "").lower() in ("1", "true", "yes")


# Absolute paths
PROJECT_ROOT: Path = Path.cwd()
STORE_DIR: Path = Path(_setting("TABSTASH_STORE_DIR", str(PROJECT_ROOT / "store"))).resolve()
DB_PATH: Path = STORE_DIR / "tabstash.sqlite"

SCHEMA_VERSION: int = 1
STATEMENT_CACHE_SIZE: int = 128

FAVICON_CONCURRENCY: int = max(1, int(_setting("FAVICON_CONCURRENCY", "8")))
FAVICON_TIMEOUT: float = float(_setting("FAVICON_TIMEOUT", "5.0"))  # seconds
FAVICON_FALLBACK_URL: str = "https://www.google.com/s2/favicons?domain="
SAVE_CONCURRENCY: int = max(1, int(_setting("SAVE_CONCURRENCY", "4")))

ALLOW_DUPLICATE_URLS: bool = _flag("ALLOW_DUPLICATE_URLS")
REMOVE_AFTER_RESTORE: bool = _flag("REMOVE_AFTER_RESTORE")
OPEN_IN_BACKGROUND: bool = _flag("OPEN_IN_BACKGROUND")


class ArchivePreferences(BaseModel):
    """User preferences passed explicitly into the controller and tab lists."""

    allow_duplicate_urls: bool = ALLOW_DUPLICATE_URLS
    remove_after_restore: bool = REMOVE_AFTER_RESTORE
    open_in_background: bool = OPEN_IN_BACKGROUND
    save_concurrency: int = SAVE_CONCURRENCY
    favicon_concurrency: int = FAVICON_CONCURRENCY
    favicon_timeout: float = FAVICON_TIMEOUT
