"""Version-keyed cache for generated search specs.

Entries are keyed by ``search_spec:{user_id}:v{profile_version}``, so a
version bump makes the old entry unreachable without an explicit purge.
Caches are constructed by the caller and injected; there is no shared
module-level instance.
"""

import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict

from src.core import db
from src.core.schemas import SearchSpec

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def _expires_at(clock: Clock, ttl_seconds: int | None) -> float | None:
    if ttl_seconds is None:
        return None
    if ttl_seconds <= 0:
        msg = f"ttl_seconds must be positive, got {ttl_seconds}"
        raise ValueError(msg)
    return clock() + ttl_seconds


class CacheStorage(ABC):
    """Key/value backend for SearchSpecCache."""

    @abstractmethod
    async def get(self, key: str) -> SearchSpec | None:
        """Return the stored spec, or None if missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: SearchSpec, ttl_seconds: int | None = None) -> None:
        """Store a spec, replacing any previous value for the key."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""


class InMemoryCacheStorage(CacheStorage):
    """Dict-backed storage for development and single-process use.

    Expiry is lazy: an expired entry is dropped the next time it is read.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[SearchSpec, float | None]] = {}

    async def get(self, key: str) -> SearchSpec | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: SearchSpec, ttl_seconds: int | None = None) -> None:
        self._entries[key] = (value, _expires_at(self._clock, ttl_seconds))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)


class SqliteCacheStorage(CacheStorage):
    """Storage in the ``search_spec_cache`` table, shared across processes."""

    def __init__(self, conn: sqlite3.Connection, clock: Clock = time.time) -> None:
        self._conn = conn
        self._clock = clock

    async def get(self, key: str) -> SearchSpec | None:
        row = db.cache_get(self._conn, key)
        if row is None:
            return None
        value_json, expires_at = row
        if expires_at is not None and self._clock() >= expires_at:
            db.cache_delete(self._conn, key)
            return None
        return SearchSpec.model_validate_json(value_json)

    async def set(self, key: str, value: SearchSpec, ttl_seconds: int | None = None) -> None:
        db.cache_put(self._conn, key, value.model_dump_json(), _expires_at(self._clock, ttl_seconds))

    async def delete(self, key: str) -> None:
        db.cache_delete(self._conn, key)

    def purge_expired(self) -> int:
        """Delete every expired row. Returns the number removed."""
        removed = db.cache_purge_expired(self._conn, self._clock())
        if removed:
            logger.info("Purged %d expired search-spec cache entries", removed)
        return removed


class SearchSpecCache:
    """Search-spec lookups by (user_id, profile_version)."""

    def __init__(self, storage: CacheStorage) -> None:
        self._storage = storage

    @staticmethod
    def cache_key(user_id: str, profile_version: int) -> str:
        return f"search_spec:{user_id}:v{profile_version}"

    async def get(self, user_id: str, profile_version: int) -> SearchSpec | None:
        return await self._storage.get(self.cache_key(user_id, profile_version))

    async def set(self, spec: SearchSpec, ttl_seconds: int | None = None) -> None:
        key = self.cache_key(spec.user_id, spec.profile_version)
        await self._storage.set(key, spec, ttl_seconds)
        logger.debug("Cached search spec %s", key)

    async def invalidate(self, user_id: str, profile_version: int) -> None:
        await self._storage.delete(self.cache_key(user_id, profile_version))

    async def has(self, user_id: str, profile_version: int) -> bool:
        return await self.get(user_id, profile_version) is not None


class CacheResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    hit: bool
    spec: SearchSpec | None
    key: str


async def check_cache(cache: SearchSpecCache, user_id: str, profile_version: int) -> CacheResult:
    key = SearchSpecCache.cache_key(user_id, profile_version)
    spec = await cache.get(user_id, profile_version)
    return CacheResult(hit=spec is not None, spec=spec, key=key)
