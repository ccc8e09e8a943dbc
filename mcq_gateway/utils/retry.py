"""Async retry helpers used by upstream clients."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")
AsyncFactory = Callable[[], Awaitable[T]]
RetryPredicate = Callable[[BaseException], bool]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    jitter: float = 0.0

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * attempt
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay


def _always(_: BaseException) -> bool:
    return True


async def retry_async(
    operation: AsyncFactory[T],
    *,
    policy: RetryPolicy | None = None,
    retry_if: RetryPredicate = _always,
    logger=None,
    operation_name: str = "operation",
) -> T:
    """Retry an async operation with linear backoff.

    Exceptions rejected by ``retry_if`` propagate immediately; the last
    exception is re-raised once ``policy.max_attempts`` is exhausted.
    """

    policy = policy or RetryPolicy()
    attempt = 1
    while attempt <= policy.max_attempts:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= policy.max_attempts or not retry_if(exc):
                raise
            delay = policy.delay_for(attempt)
            if logger is not None:
                logger.warning(
                    "retrying_operation",
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay=delay,
                    error=str(exc),
                )
            await asyncio.sleep(delay)
            attempt += 1

    # This point is never reached but keeps type-checkers happy.
    raise RuntimeError(f"{operation_name} failed after {policy.max_attempts} attempts")


__all__ = ["RetryPolicy", "retry_async"]
