"""Content-addressed cache of generated MCQ sets."""

from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timedelta
from typing import Callable, Protocol, Sequence

from redis.asyncio import Redis

from mcq_gateway.domain.models import MCQ, CacheEntry, Material
from mcq_gateway.logging import logger
from mcq_gateway.utils.datetime import utc_now

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_MAX_ENTRIES = 1000


def fingerprint(material: Material, mcq_count: int | None = None) -> str:
    """Stable key for identical submissions; not a security boundary."""

    digest = hashlib.blake2b(digest_size=16)
    digest.update(material.content_key().encode("utf-8"))
    if mcq_count is not None:
        digest.update(f"|count={mcq_count}".encode("ascii"))
    return digest.hexdigest()


class ContentCache(Protocol):
    async def lookup(self, key: str) -> CacheEntry | None: ...

    async def store(self, key: str, mcqs: Sequence[MCQ]) -> None: ...


class InMemoryContentCache:
    """Bounded TTL map guarded by an asyncio lock."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._lock = asyncio.Lock()
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def lookup(self, key: str) -> CacheEntry | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not self._is_live(entry, self._clock()):
                del self._entries[key]
                return None
            return entry

    async def store(self, key: str, mcqs: Sequence[MCQ]) -> None:
        async with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(fingerprint=key, mcqs=list(mcqs), created_at=now)
            if len(self._entries) > self.max_entries:
                self._evict(now)

    def _is_live(self, entry: CacheEntry, now: datetime) -> bool:
        return now - entry.created_at < self.ttl

    def _evict(self, now: datetime) -> None:
        expired = [key for key, entry in self._entries.items() if not self._is_live(entry, now)]
        for key in expired:
            del self._entries[key]
        # Still over the ceiling with only live entries: drop the oldest inserts.
        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            for key in list(self._entries)[:overflow]:
                del self._entries[key]
        logger.info(
            "content_cache_evicted",
            expired=len(expired),
            overflow=max(overflow, 0),
            size=len(self._entries),
        )


class RedisContentCache:
    """Shared cache for multi-instance deployments; Redis enforces the TTL."""

    def __init__(
        self,
        client: Redis,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        key_prefix: str = "mcq",
    ) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:cache:{key}"

    async def lookup(self, key: str) -> CacheEntry | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        return CacheEntry.model_validate_json(raw)

    async def store(self, key: str, mcqs: Sequence[MCQ]) -> None:
        entry = CacheEntry(fingerprint=key, mcqs=list(mcqs), created_at=utc_now())
        await self._client.set(self._key(key), entry.model_dump_json(), ex=self.ttl_seconds)


__all__ = [
    "ContentCache",
    "InMemoryContentCache",
    "RedisContentCache",
    "fingerprint",
]
