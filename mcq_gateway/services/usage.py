"""Per-user daily upload counters with lazy UTC-midnight reset."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mcq_gateway.db.models.core import UserUsageStats
from mcq_gateway.db.session import SessionScope
from mcq_gateway.domain.models import UsageSnapshot
from mcq_gateway.logging import logger
from mcq_gateway.services.exceptions import UsageCommitFailed
from mcq_gateway.utils.datetime import ensure_utc, next_utc_midnight, utc_now


class UsageStore(Protocol):
    async def get_snapshot(self, user_id: str) -> UsageSnapshot: ...

    async def increment(self, user_id: str) -> UsageSnapshot: ...


def _reset_view(uploads_today: int, daily_reset_at: datetime | None, now: datetime) -> UsageSnapshot:
    if daily_reset_at is None or now >= ensure_utc(daily_reset_at):
        return UsageSnapshot(uploads_today=0, daily_reset_at=next_utc_midnight(now))
    return UsageSnapshot(uploads_today=uploads_today, daily_reset_at=ensure_utc(daily_reset_at))


class SqlUsageStore:
    """Usage counters stored in ``user_usage_stats``.

    Reads are plain selects in their own short transaction; a pending reset
    is applied to the returned view only. ``increment`` locks the user's row
    (``SELECT ... FOR UPDATE``) and commits before returning, so the count a
    caller reports is already durable and concurrent increments serialize on
    the database for the length of that one statement group.
    """

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def get_snapshot(self, user_id: str) -> UsageSnapshot:
        now = utc_now()
        async with self._session_scope() as session:
            stats = await self._find(session, user_id)
        if stats is None:
            return _reset_view(0, None, now)
        return _reset_view(stats.uploads_today or 0, stats.daily_reset_at, now)

    async def increment(self, user_id: str) -> UsageSnapshot:
        try:
            try:
                return await self._increment_once(user_id)
            except IntegrityError:
                # A concurrent first request provisioned the row; it exists now.
                logger.info("usage_row_provision_race", user_id=user_id)
                return await self._increment_once(user_id)
        except SQLAlchemyError as exc:
            raise self._commit_failed(user_id, exc) from exc

    async def _increment_once(self, user_id: str) -> UsageSnapshot:
        now = utc_now()
        async with self._session_scope() as session:
            stats = await self._find(session, user_id, lock=True)
            if stats is None:
                stats = UserUsageStats(
                    user_id=user_id,
                    uploads_today=0,
                    daily_reset_at=next_utc_midnight(now),
                    last_login_at=now,
                    created_at=now,
                    updated_at=now,
                )
                session.add(stats)
                await session.flush()
            view = _reset_view(stats.uploads_today or 0, stats.daily_reset_at, now)
            stats.uploads_today = view.uploads_today + 1
            stats.daily_reset_at = view.daily_reset_at
            stats.updated_at = now
            await session.flush()
            snapshot = UsageSnapshot(
                uploads_today=stats.uploads_today, daily_reset_at=view.daily_reset_at
            )
        return snapshot

    @staticmethod
    async def _find(session: AsyncSession, user_id: str, lock: bool = False) -> UserUsageStats | None:
        stmt = select(UserUsageStats).where(UserUsageStats.user_id == user_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _commit_failed(user_id: str, exc: Exception) -> UsageCommitFailed:
        logger.error("usage_commit_failed", user_id=user_id, error=str(exc))
        return UsageCommitFailed(f"Failed to record usage: {exc}")


class InMemoryUsageStore:
    """Process-local usage counters for single-instance deployments and tests."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._stats: dict[str, UsageSnapshot] = {}

    async def get_snapshot(self, user_id: str) -> UsageSnapshot:
        async with self._lock:
            return self._current(user_id)

    async def increment(self, user_id: str) -> UsageSnapshot:
        async with self._lock:
            current = self._current(user_id)
            updated = UsageSnapshot(
                uploads_today=current.uploads_today + 1,
                daily_reset_at=current.daily_reset_at,
            )
            self._stats[user_id] = updated
            return updated

    def seed(self, user_id: str, snapshot: UsageSnapshot) -> None:
        self._stats[user_id] = snapshot

    def _current(self, user_id: str) -> UsageSnapshot:
        now = self._clock()
        snapshot = self._stats.get(user_id)
        if snapshot is None or now >= ensure_utc(snapshot.daily_reset_at):
            snapshot = UsageSnapshot(uploads_today=0, daily_reset_at=next_utc_midnight(now))
            self._stats[user_id] = snapshot
        return snapshot


__all__ = ["InMemoryUsageStore", "SqlUsageStore", "UsageStore"]
