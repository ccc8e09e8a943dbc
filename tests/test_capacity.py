"""Global generation ceiling."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mcq_gateway.services.capacity import InMemoryCapacityGuard


@pytest.mark.asyncio
async def test_ceiling_blocks_after_last_generation():
    guard = InMemoryCapacityGuard(max_generations=2)

    assert (await guard.check_global()).allowed is True
    await guard.increment()
    decision = await guard.check_global()
    assert (decision.allowed, decision.remaining) == (True, 1)

    await guard.increment()
    decision = await guard.check_global()
    assert (decision.allowed, decision.remaining) == (False, 0)


@pytest.mark.asyncio
async def test_window_resets_lazily():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    guard = InMemoryCapacityGuard(max_generations=1, window_days=30, clock=lambda: now)
    await guard.increment()
    assert (await guard.check_global()).allowed is False

    now = now + timedelta(days=30)
    decision = await guard.check_global()

    assert decision.allowed is True
    assert decision.reset_at == now + timedelta(days=30)
