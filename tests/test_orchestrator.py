"""Request lifecycle: gating order, usage accounting and cache behaviour."""

from __future__ import annotations

from datetime import timedelta

import pytest

from mcq_gateway.config import GenerationSettings
from mcq_gateway.domain.models import SubscriptionTier, UsageSnapshot
from mcq_gateway.services.cache import InMemoryContentCache
from mcq_gateway.services.capacity import InMemoryCapacityGuard
from mcq_gateway.services.exceptions import (
    GlobalCapacityExceeded,
    InvalidInput,
    MalformedGenerationOutput,
    Unauthorized,
    UpstreamUnavailable,
    UsageCommitFailed,
    UserQuotaExceeded,
)
from mcq_gateway.services.normalizer import ResponseNormalizer
from mcq_gateway.services.orchestrator import GenerationOrchestrator, parse_generation_request
from mcq_gateway.services.quota import QuotaGate
from mcq_gateway.services.usage import InMemoryUsageStore
from mcq_gateway.utils.datetime import utc_now

from tests.fakes import FakeAuthenticator, FakeGenerationClient, FakeResolver

AUTH = "Bearer good-token"
BODY = {"text_content": "Photosynthesis turns light into chemical energy.", "mcq_count": 5}


class _Harness:
    def __init__(
        self,
        *,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        client: FakeGenerationClient | None = None,
        capacity: int = 100,
    ) -> None:
        self.store = InMemoryUsageStore()
        self.cache = InMemoryContentCache()
        self.capacity = InMemoryCapacityGuard(max_generations=capacity)
        self.client = client or FakeGenerationClient()
        self.orchestrator = GenerationOrchestrator(
            authenticator=FakeAuthenticator(),
            resolver=FakeResolver(tier),
            quota_gate=QuotaGate(self.store),
            capacity_guard=self.capacity,
            cache=self.cache,
            client=self.client,
            normalizer=ResponseNormalizer(),
        )

    async def uploads(self) -> int:
        return (await self.store.get_snapshot("user-1")).uploads_today

    def seed_usage(self, uploads_today: int) -> None:
        self.store.seed(
            "user-1",
            UsageSnapshot(uploads_today=uploads_today, daily_reset_at=utc_now() + timedelta(hours=5)),
        )


@pytest.mark.asyncio
async def test_successful_generation_commits_usage_once():
    harness = _Harness()

    response = await harness.orchestrator.run(AUTH, BODY)

    assert response["ok"] is True
    assert response["cached"] is False
    assert response["count"] == 1
    assert response["mcqs"][0]["answer_index"] == 0
    assert response["user_limits"]["subscription"] == "FREE"
    assert response["user_limits"]["remaining"] == 4
    assert isinstance(response["user_limits"]["reset_time"], int)
    assert await harness.uploads() == 1
    assert (await harness.capacity.check_global()).remaining == 99


@pytest.mark.asyncio
async def test_cache_hit_skips_provider_and_usage():
    harness = _Harness()
    await harness.orchestrator.run(AUTH, BODY)

    response = await harness.orchestrator.run(AUTH, dict(BODY))

    assert response["cached"] is True
    assert len(harness.client.calls) == 1
    assert await harness.uploads() == 1
    assert response["user_limits"]["remaining"] == 4


@pytest.mark.asyncio
async def test_different_count_is_a_cache_miss():
    harness = _Harness()
    await harness.orchestrator.run(AUTH, BODY)

    await harness.orchestrator.run(AUTH, {**BODY, "mcq_count": 6})

    assert len(harness.client.calls) == 2


@pytest.mark.asyncio
async def test_exhausted_quota_rejects_without_side_effects():
    harness = _Harness()
    harness.seed_usage(5)

    with pytest.raises(UserQuotaExceeded) as exc_info:
        await harness.orchestrator.run(AUTH, BODY)

    limits = exc_info.value.extra["user_limits"]
    assert limits["remaining"] == 0
    assert limits["limit_type"] == "daily"
    assert "hours" in str(exc_info.value)
    assert harness.client.calls == []
    assert await harness.uploads() == 5


@pytest.mark.asyncio
async def test_pro_tier_has_room_where_free_does_not():
    harness = _Harness(tier=SubscriptionTier.PRO)
    harness.seed_usage(5)

    response = await harness.orchestrator.run(AUTH, BODY)

    assert response["user_limits"] == {
        "subscription": "PRO",
        "remaining": 44,
        "reset_time": response["user_limits"]["reset_time"],
    }


@pytest.mark.asyncio
async def test_global_ceiling_is_checked_before_user_quota():
    harness = _Harness(capacity=1)
    await harness.capacity.increment()
    harness.seed_usage(5)

    with pytest.raises(GlobalCapacityExceeded) as exc_info:
        await harness.orchestrator.run(AUTH, BODY)

    assert exc_info.value.extra["global_usage"]["remaining"] == 0
    assert harness.client.calls == []


@pytest.mark.asyncio
async def test_upstream_failure_leaves_usage_untouched():
    harness = _Harness(client=FakeGenerationClient(error=UpstreamUnavailable("down")))

    with pytest.raises(UpstreamUnavailable):
        await harness.orchestrator.run(AUTH, BODY)

    assert await harness.uploads() == 0
    assert (await harness.capacity.check_global()).remaining == 100
    assert len(harness.cache) == 0


@pytest.mark.asyncio
async def test_unparseable_output_leaves_usage_untouched():
    harness = _Harness(client=FakeGenerationClient(text="I am unable to comply."))

    with pytest.raises(MalformedGenerationOutput):
        await harness.orchestrator.run(AUTH, BODY)

    assert await harness.uploads() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("authorization", [None, "", "Token abc", "Bearer ", "Bearer wrong"])
async def test_bad_credentials_are_rejected(authorization):
    harness = _Harness()

    with pytest.raises(Unauthorized):
        await harness.orchestrator.run(authorization, BODY)

    assert harness.client.calls == []


@pytest.mark.asyncio
async def test_cache_failure_does_not_fail_the_request():
    harness = _Harness()

    async def _broken(*args, **kwargs):
        raise ConnectionError("redis down")

    harness.cache.lookup = _broken
    harness.cache.store = _broken

    response = await harness.orchestrator.run(AUTH, BODY)

    assert response["ok"] is True
    assert await harness.uploads() == 1


def test_parse_request_prefers_chunks_and_clamps_count():
    request = parse_generation_request(
        {"text_chunks": ["alpha", " ", "beta"], "text_content": "ignored", "mcq_count": 500},
        GenerationSettings(),
    )

    assert request.material.text == "STUDY MATERIAL SECTION 1:\nalpha\n\nSTUDY MATERIAL SECTION 2:\nbeta"
    assert request.mcq_count == 50


def test_parse_request_defaults_count():
    request = parse_generation_request({"text_content": "notes"})

    assert request.mcq_count == 20


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {},
        {"text_content": "   "},
        {"file_data": "aGVsbG8="},
        {"text_content": "notes", "mcq_count": "ten"},
        {"text_content": "notes", "mcq_count": True},
    ],
)
def test_parse_request_rejects_bad_payloads(payload):
    with pytest.raises(InvalidInput):
        parse_generation_request(payload)


@pytest.mark.asyncio
async def test_failed_usage_commit_takes_no_global_capacity(monkeypatch):
    harness = _Harness()

    async def _fail(user_id):
        raise UsageCommitFailed("Failed to record usage: connection lost")

    monkeypatch.setattr(harness.store, "increment", _fail)

    with pytest.raises(UsageCommitFailed):
        await harness.orchestrator.run(AUTH, BODY)

    assert len(harness.client.calls) == 1
    assert (await harness.capacity.check_global()).remaining == 100
    assert len(harness.cache) == 0
