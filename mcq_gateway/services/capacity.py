"""Process-wide ceiling on generations per rolling window."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Protocol

from redis.asyncio import Redis

from mcq_gateway.domain.models import CapacityDecision
from mcq_gateway.logging import logger
from mcq_gateway.utils.datetime import utc_now

DEFAULT_MAX_GENERATIONS = 500_000
DEFAULT_WINDOW_DAYS = 30


class CapacityGuard(Protocol):
    async def check_global(self) -> CapacityDecision: ...

    async def increment(self) -> CapacityDecision: ...


def _decision(count: int, ceiling: int, reset_at: datetime) -> CapacityDecision:
    return CapacityDecision(
        allowed=count < ceiling,
        remaining=max(0, ceiling - count),
        reset_at=reset_at,
    )


class InMemoryCapacityGuard:
    """Single shared counter with lazy window reset."""

    def __init__(
        self,
        max_generations: int = DEFAULT_MAX_GENERATIONS,
        window_days: int = DEFAULT_WINDOW_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.max_generations = max_generations
        self.window = timedelta(days=window_days)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._count = 0
        self._reset_at = self._clock() + self.window

    async def check_global(self) -> CapacityDecision:
        async with self._lock:
            self._maybe_reset()
            return _decision(self._count, self.max_generations, self._reset_at)

    async def increment(self) -> CapacityDecision:
        async with self._lock:
            self._maybe_reset()
            self._count += 1
            logger.info("global_usage", count=self._count, ceiling=self.max_generations)
            return _decision(self._count, self.max_generations, self._reset_at)

    def _maybe_reset(self) -> None:
        now = self._clock()
        if now >= self._reset_at:
            self._count = 0
            self._reset_at = now + self.window


class RedisCapacityGuard:
    """Counter shared across instances; the key's expiry is the window."""

    def __init__(
        self,
        client: Redis,
        max_generations: int = DEFAULT_MAX_GENERATIONS,
        window_days: int = DEFAULT_WINDOW_DAYS,
        key_prefix: str = "mcq",
    ) -> None:
        self._client = client
        self.max_generations = max_generations
        self.window = timedelta(days=window_days)
        self.key = f"{key_prefix}:global:count"

    async def check_global(self) -> CapacityDecision:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.get(self.key)
            pipe.pttl(self.key)
            raw_count, ttl_ms = await pipe.execute()
        count = int(raw_count) if raw_count is not None else 0
        return _decision(count, self.max_generations, self._reset_at(ttl_ms))

    async def increment(self) -> CapacityDecision:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(self.key)
            pipe.expire(self.key, int(self.window.total_seconds()), nx=True)
            pipe.pttl(self.key)
            count, _, ttl_ms = await pipe.execute()
        logger.info("global_usage", count=count, ceiling=self.max_generations)
        return _decision(int(count), self.max_generations, self._reset_at(ttl_ms))

    def _reset_at(self, ttl_ms: int | None) -> datetime:
        if ttl_ms is None or ttl_ms < 0:
            return utc_now() + self.window
        return utc_now() + timedelta(milliseconds=ttl_ms)


__all__ = ["CapacityGuard", "InMemoryCapacityGuard", "RedisCapacityGuard"]
