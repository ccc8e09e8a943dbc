"""Content cache keys, expiry and bounds."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mcq_gateway.domain.models import MCQ, Material
from mcq_gateway.services.cache import InMemoryContentCache, fingerprint


def _mcqs() -> list[MCQ]:
    return [MCQ(question="Q?", options=("A", "B", "C", "D"), answer_index=1)]


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_fingerprint_is_stable_and_count_sensitive():
    material = Material(text="photosynthesis converts light")

    assert fingerprint(material, 10) == fingerprint(Material(text="photosynthesis converts light"), 10)
    assert fingerprint(material, 10) != fingerprint(material, 20)
    assert fingerprint(material, 10) != fingerprint(Material(text="other notes"), 10)


def test_fingerprint_uses_file_data_for_binary_material():
    pdf = Material(file_data="JVBERi0xLjQK", mime_type="application/pdf")

    assert fingerprint(pdf) == fingerprint(Material(file_data="JVBERi0xLjQK", mime_type="image/png"))
    assert fingerprint(pdf) != fingerprint(Material(text="JVBERi0xLjQ="))


@pytest.mark.asyncio
async def test_lookup_returns_stored_entry():
    cache = InMemoryContentCache()

    await cache.store("key", _mcqs())
    entry = await cache.lookup("key")

    assert entry is not None
    assert entry.mcqs == _mcqs()
    assert await cache.lookup("missing") is None


@pytest.mark.asyncio
async def test_entry_expires_after_ttl():
    clock = _Clock()
    cache = InMemoryContentCache(ttl_seconds=60, clock=clock)
    await cache.store("key", _mcqs())

    clock.now += timedelta(seconds=59)
    assert await cache.lookup("key") is not None

    clock.now += timedelta(seconds=1)
    assert await cache.lookup("key") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_store_evicts_expired_then_oldest_entries():
    clock = _Clock()
    cache = InMemoryContentCache(ttl_seconds=60, max_entries=2, clock=clock)
    await cache.store("stale", _mcqs())
    clock.now += timedelta(seconds=61)
    await cache.store("first", _mcqs())
    await cache.store("second", _mcqs())

    assert len(cache) == 2
    assert await cache.lookup("stale") is None

    await cache.store("third", _mcqs())

    assert len(cache) == 2
    assert await cache.lookup("first") is None
    assert await cache.lookup("third") is not None
