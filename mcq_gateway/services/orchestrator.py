"""Request lifecycle for quota-gated MCQ generation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from mcq_gateway.config import GenerationSettings
from mcq_gateway.domain.models import (
    MCQ,
    CapacityDecision,
    Material,
    QuotaDecision,
    SubscriptionTier,
    UserIdentity,
)
from mcq_gateway.logging import logger
from mcq_gateway.services.auth import Authenticator, extract_bearer_token
from mcq_gateway.services.cache import ContentCache, fingerprint
from mcq_gateway.services.capacity import CapacityGuard
from mcq_gateway.services.exceptions import (
    GlobalCapacityExceeded,
    InvalidInput,
    ServiceError,
    UserQuotaExceeded,
)
from mcq_gateway.services.generation import GenerationClient
from mcq_gateway.services.normalizer import ResponseNormalizer
from mcq_gateway.services.prompts import build_prompt, render_sections
from mcq_gateway.services.quota import QuotaGate
from mcq_gateway.services.subscriptions import SubscriptionResolver
from mcq_gateway.utils.datetime import to_epoch_millis, utc_now


class GenerationStage(str, Enum):
    AUTH = "auth"
    VALIDATE_INPUT = "validate_input"
    GLOBAL_CHECK = "global_check"
    TIER_RESOLVE = "tier_resolve"
    USER_CHECK = "user_check"
    CACHE_LOOKUP = "cache_lookup"
    CACHE_HIT = "cache_hit"
    PROVIDER_CALL = "provider_call"
    NORMALIZE = "normalize"
    COMMIT_USAGE = "commit_usage"
    CACHE_STORE = "cache_store"
    RESPOND = "respond"


@dataclass(slots=True)
class GenerationRequest:
    material: Material
    mcq_count: int


def parse_generation_request(
    payload: Any, settings: GenerationSettings | None = None
) -> GenerationRequest:
    """Validate the JSON body into study material and a question count."""

    settings = settings or GenerationSettings()
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")

    file_data = payload.get("file_data")
    mime_type = payload.get("mime_type")
    if file_data and not mime_type:
        raise InvalidInput("mime_type is required when file_data is provided")
    if file_data is not None and not isinstance(file_data, str):
        raise InvalidInput("file_data must be a base64 string")

    raw_chunks = payload.get("text_chunks")
    chunks: list[str] = []
    if isinstance(raw_chunks, list):
        chunks = [chunk.strip() for chunk in raw_chunks if isinstance(chunk, str)]
        chunks = [chunk for chunk in chunks if chunk]
    text_content = payload.get("text_content")
    text = text_content.strip() if isinstance(text_content, str) else ""

    if chunks:
        material = Material(text=render_sections(chunks))
    elif text:
        material = Material(text=text)
    elif file_data:
        material = Material(file_data=file_data, mime_type=str(mime_type))
    else:
        raise InvalidInput("Either file_data, text_content or text_chunks is required")

    count = payload.get("mcq_count")
    if count is None:
        count = settings.default_mcq_count
    elif isinstance(count, bool) or not isinstance(count, int):
        raise InvalidInput("mcq_count must be an integer")
    count = min(max(count, 1), settings.max_mcq_count)
    return GenerationRequest(material=material, mcq_count=count)


def _enter(stage: GenerationStage) -> GenerationStage:
    logger.debug("generation_stage", stage=stage.value)
    return stage


def _user_limits(tier: SubscriptionTier, decision: QuotaDecision) -> dict[str, Any]:
    return {
        "subscription": tier.value,
        "remaining": decision.remaining,
        "reset_time": to_epoch_millis(decision.reset_at),
    }


def _global_usage(decision: CapacityDecision) -> dict[str, Any]:
    return {
        "remaining": decision.remaining,
        "reset_time": to_epoch_millis(decision.reset_at),
    }


class GenerationOrchestrator:
    """Compose auth, quotas, cache, provider and normalizer into one request.

    Usage is committed only after a successful normalize, so provider or parse
    failures never consume quota. The per-user commit is durable before the
    response is built, and global capacity is taken only after it succeeds.
    Cache hits skip both the provider call and the usage commit.
    """

    def __init__(
        self,
        *,
        authenticator: Authenticator,
        resolver: SubscriptionResolver,
        quota_gate: QuotaGate,
        capacity_guard: CapacityGuard,
        cache: ContentCache,
        client: GenerationClient,
        normalizer: ResponseNormalizer,
        settings: GenerationSettings | None = None,
    ) -> None:
        self.authenticator = authenticator
        self.resolver = resolver
        self.quota_gate = quota_gate
        self.capacity_guard = capacity_guard
        self.cache = cache
        self.client = client
        self.normalizer = normalizer
        self.settings = settings or GenerationSettings()

    async def run(self, authorization: str | None, payload: Any) -> dict[str, Any]:
        stage = GenerationStage.AUTH
        user: UserIdentity | None = None
        try:
            user = await self.authenticator.authenticate(extract_bearer_token(authorization))
            log = logger.bind(user_id=user.id)

            stage = _enter(GenerationStage.VALIDATE_INPUT)
            request = parse_generation_request(payload, self.settings)

            stage = _enter(GenerationStage.GLOBAL_CHECK)
            global_decision = await self.capacity_guard.check_global()
            if not global_decision.allowed:
                raise self._capacity_exceeded(global_decision)

            stage = _enter(GenerationStage.TIER_RESOLVE)
            tier = await self.resolver.resolve_tier(user.id)

            stage = _enter(GenerationStage.USER_CHECK)
            admission = await self.quota_gate.check_and_admit(user.id, tier)
            if not admission.allowed:
                raise self._quota_exceeded(tier, admission)

            stage = _enter(GenerationStage.CACHE_LOOKUP)
            key = fingerprint(request.material, request.mcq_count)
            cached = await self._cache_lookup(key)
            if cached is not None:
                stage = _enter(GenerationStage.CACHE_HIT)
                log.info("generation_cache_hit", fingerprint=key, count=len(cached))
                return self._response(cached, True, tier, admission, global_decision)

            stage = _enter(GenerationStage.PROVIDER_CALL)
            prompt = build_prompt(request.mcq_count, wrapped_output=self.client.wants_wrapped_output)
            result = await self.client.generate(request.material, prompt)

            stage = _enter(GenerationStage.NORMALIZE)
            mcqs = self.normalizer.normalize(result.text)

            stage = _enter(GenerationStage.COMMIT_USAGE)
            user_after = await self.quota_gate.commit(user.id, tier)
            global_after = await self.capacity_guard.increment()

            stage = _enter(GenerationStage.CACHE_STORE)
            await self._cache_store(key, mcqs)

            stage = _enter(GenerationStage.RESPOND)
            log.info(
                "generation_completed",
                fingerprint=key,
                count=len(mcqs),
                tier=tier.value,
                remaining=user_after.remaining,
            )
            return self._response(mcqs, False, tier, user_after, global_after)
        except ServiceError as exc:
            logger.info(
                "generation_failed",
                stage=stage.value,
                kind=type(exc).__name__,
                user_id=user.id if user else None,
                error=str(exc),
            )
            raise
        except Exception:
            logger.exception(
                "generation_crashed", stage=stage.value, user_id=user.id if user else None
            )
            raise

    async def _cache_lookup(self, key: str) -> list[MCQ] | None:
        try:
            entry = await self.cache.lookup(key)
        except Exception:
            logger.exception("content_cache_lookup_failed", fingerprint=key)
            return None
        return entry.mcqs if entry is not None else None

    async def _cache_store(self, key: str, mcqs: list[MCQ]) -> None:
        try:
            await self.cache.store(key, mcqs)
        except Exception:
            logger.exception("content_cache_store_failed", fingerprint=key)

    @staticmethod
    def _response(
        mcqs: list[MCQ],
        cached: bool,
        tier: SubscriptionTier,
        user_decision: QuotaDecision,
        global_decision: CapacityDecision,
    ) -> dict[str, Any]:
        return {
            "ok": True,
            "mcqs": [mcq.model_dump() for mcq in mcqs],
            "generated_at": utc_now().isoformat(),
            "count": len(mcqs),
            "cached": cached,
            "user_limits": _user_limits(tier, user_decision),
            "global_usage": _global_usage(global_decision),
        }

    @staticmethod
    def _capacity_exceeded(decision: CapacityDecision) -> GlobalCapacityExceeded:
        seconds = (decision.reset_at - utc_now()).total_seconds()
        days = max(1, math.ceil(seconds / 86400))
        return GlobalCapacityExceeded(
            f"Service temporarily unavailable. Monthly limit reached. Resets in {days} days.",
            global_usage={"remaining": 0, "reset_time": to_epoch_millis(decision.reset_at)},
        )

    @staticmethod
    def _quota_exceeded(tier: SubscriptionTier, decision: QuotaDecision) -> UserQuotaExceeded:
        seconds = (decision.reset_at - utc_now()).total_seconds()
        hours = max(1, math.ceil(seconds / 3600))
        limits = _user_limits(tier, decision)
        limits["limit_type"] = "daily"
        return UserQuotaExceeded(
            f"Daily limit reached. You can generate MCQs again in {hours} hours.",
            user_limits=limits,
        )


__all__ = [
    "GenerationOrchestrator",
    "GenerationRequest",
    "GenerationStage",
    "parse_generation_request",
]
