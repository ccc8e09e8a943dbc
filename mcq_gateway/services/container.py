"""Process-wide service singletons shared by every request."""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
from redis.asyncio import Redis, from_url

from mcq_gateway.config import GatewaySettings
from mcq_gateway.db.session import Database, SessionScope
from mcq_gateway.domain.models import SubscriptionTier
from mcq_gateway.logging import logger
from mcq_gateway.services.auth import Authenticator, SupabaseAuthenticator
from mcq_gateway.services.cache import ContentCache, InMemoryContentCache, RedisContentCache
from mcq_gateway.services.capacity import (
    CapacityGuard,
    InMemoryCapacityGuard,
    RedisCapacityGuard,
)
from mcq_gateway.services.generation import GenerationClient, build_generation_client
from mcq_gateway.services.normalizer import ResponseNormalizer
from mcq_gateway.services.quota import TierLimit, build_tier_limits
from mcq_gateway.services.subscriptions import SubscriptionResolver
from mcq_gateway.services.usage import SqlUsageStore, UsageStore


@dataclass(slots=True)
class GatewayServices:
    settings: GatewaySettings
    http_client: httpx.AsyncClient
    database: Database
    authenticator: Authenticator
    cache: ContentCache
    capacity_guard: CapacityGuard
    generation_client: GenerationClient
    normalizer: ResponseNormalizer
    session_scope: SessionScope
    usage_store: UsageStore
    subscription_resolver: SubscriptionResolver
    tier_limits: dict[SubscriptionTier, TierLimit] = field(default_factory=build_tier_limits)
    redis: Redis | None = None

    async def aclose(self) -> None:
        await self.http_client.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        await self.database.dispose()


def build_services(settings: GatewaySettings) -> GatewayServices:
    http_client = httpx.AsyncClient()
    redis_client: Redis | None = None

    if settings.redis.url:
        redis_client = from_url(settings.redis.url, decode_responses=True)
        prefix = settings.redis.key_prefix
        cache: ContentCache = RedisContentCache(
            redis_client, ttl_seconds=settings.cache.ttl_seconds, key_prefix=prefix
        )
        capacity_guard: CapacityGuard = RedisCapacityGuard(
            redis_client,
            max_generations=settings.capacity.max_generations,
            window_days=settings.capacity.window_days,
            key_prefix=prefix,
        )
    else:
        cache = InMemoryContentCache(
            ttl_seconds=settings.cache.ttl_seconds, max_entries=settings.cache.max_entries
        )
        capacity_guard = InMemoryCapacityGuard(
            max_generations=settings.capacity.max_generations,
            window_days=settings.capacity.window_days,
        )

    logger.info(
        "services_built",
        provider=settings.llm.provider,
        shared_state="redis" if redis_client is not None else "memory",
    )
    database = Database(settings=settings)
    return GatewayServices(
        settings=settings,
        http_client=http_client,
        database=database,
        authenticator=SupabaseAuthenticator(http_client, settings.supabase),
        cache=cache,
        capacity_guard=capacity_guard,
        generation_client=build_generation_client(settings, http_client),
        normalizer=ResponseNormalizer(strict=settings.generation.strict_validation),
        session_scope=database.session,
        usage_store=SqlUsageStore(database.session),
        subscription_resolver=SubscriptionResolver(database.session),
        tier_limits=build_tier_limits(settings.quota),
        redis=redis_client,
    )


__all__ = ["GatewayServices", "build_services"]
