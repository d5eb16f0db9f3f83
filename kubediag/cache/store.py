"""Explanation cache.

Responses from AI providers are stored base64-encoded under a fingerprint
of (provider, language, failure text). Caching is strictly an optimization:
callers log cache errors and carry on.

Backends:
  - FileCache    one file per key under a local directory (default)
  - SQLiteCache  one row per key in an aiosqlite database

A disabled cache reports every key absent and ignores every store.
"""

from __future__ import annotations

import hashlib
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Final

import aiosqlite

from kubediag.errors import CacheConfigError
from kubediag.models.config import CacheConfig
from kubediag.observability.logging import get_logger

_logger = get_logger("cache")

_SCHEMA_DDL: Final[str] = """
CREATE TABLE IF NOT EXISTS explanations (
    key       TEXT PRIMARY KEY,
    value     TEXT NOT NULL,
    stored_at REAL NOT NULL
);
"""


def cache_key(provider: str, language: str, input_key: str) -> str:
    """Deterministic fingerprint of everything that defines a request."""
    # TODO: include the provider's model; two models of one provider share keys today.
    data = f"{provider}-{language}-{input_key}"
    return hashlib.sha256(data.encode()).hexdigest()


def default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base) / "kubediag"


class Cache(ABC):
    """Key/value store for encoded provider responses."""

    name: str = "cache"

    def __init__(self) -> None:
        self._disabled = False

    def is_disabled(self) -> bool:
        return self._disabled

    def disable(self) -> None:
        self._disabled = True

    async def exists(self, key: str) -> bool:
        if self._disabled:
            return False
        return await self._exists(key)

    async def load(self, key: str) -> str:
        """Return the stored value. Raises KeyError for a missing key."""
        if self._disabled:
            raise KeyError(key)
        return await self._load(key)

    async def store(self, key: str, value: str) -> None:
        if self._disabled:
            return
        await self._store(key, value)

    async def close(self) -> None:  # noqa: B027
        """Release backend resources. Safe to call more than once."""

    @abstractmethod
    async def _exists(self, key: str) -> bool: ...

    @abstractmethod
    async def _load(self, key: str) -> str: ...

    @abstractmethod
    async def _store(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def purge(self) -> int:
        """Delete every entry; return how many were removed."""


class FileCache(Cache):
    """One file per key. Keys are hex digests, so they are safe file names."""

    name = "file"

    def __init__(self, directory: str | Path) -> None:
        super().__init__()
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        return self._directory / key

    async def _exists(self, key: str) -> bool:
        return self._path(key).is_file()

    async def _load(self, key: str) -> str:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise KeyError(key) from exc

    async def _store(self, key: str, value: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        tmp = self._path(key).with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(self._path(key))

    async def purge(self) -> int:
        if not self._directory.is_dir():
            return 0
        removed = 0
        for entry in self._directory.iterdir():
            if entry.is_file():
                entry.unlink()
                removed += 1
        return removed


class SQLiteCache(Cache):
    """aiosqlite-backed cache; the connection opens on first use."""

    name = "sqlite"

    def __init__(self, db_path: str | Path) -> None:
        super().__init__()
        self._db_path = str(db_path)
        self._db: aiosqlite.Connection | None = None

    async def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._db_path)
            await self._db.executescript(_SCHEMA_DDL)
            await self._db.commit()
            _logger.debug("sqlite_cache_opened", path=self._db_path)
        return self._db

    async def _exists(self, key: str) -> bool:
        db = await self._connection()
        async with db.execute("SELECT 1 FROM explanations WHERE key = ?", (key,)) as cursor:
            return await cursor.fetchone() is not None

    async def _load(self, key: str) -> str:
        db = await self._connection()
        async with db.execute("SELECT value FROM explanations WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise KeyError(key)
        return str(row[0])

    async def _store(self, key: str, value: str) -> None:
        db = await self._connection()
        await db.execute(
            "INSERT OR REPLACE INTO explanations (key, value, stored_at) VALUES (?, ?, ?)",
            (key, value, time.time()),
        )
        await db.commit()

    async def purge(self) -> int:
        db = await self._connection()
        cursor = await db.execute("DELETE FROM explanations")
        await db.commit()
        return cursor.rowcount

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None


def get_cache(config: CacheConfig, *, disabled: bool = False) -> Cache:
    """Build the configured cache backend; ``disabled`` turns it into a no-op."""
    if config.backend == "file":
        cache: Cache = FileCache(config.path or default_cache_dir())
    elif config.backend == "sqlite":
        cache = SQLiteCache(config.path or default_cache_dir() / "cache.db")
    else:
        raise CacheConfigError(f"unknown cache backend {config.backend!r}")
    if disabled:
        cache.disable()
    _logger.debug("cache_configured", backend=cache.name, disabled=cache.is_disabled())
    return cache
