"""Tier-based daily quota decisions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from mcq_gateway.config import QuotaSettings
from mcq_gateway.domain.models import QuotaDecision, SubscriptionTier
from mcq_gateway.logging import logger
from mcq_gateway.services.usage import UsageStore


@dataclass(frozen=True, slots=True)
class TierLimit:
    daily_limit: int


def build_tier_limits(settings: QuotaSettings | None = None) -> dict[SubscriptionTier, TierLimit]:
    settings = settings or QuotaSettings()
    return {
        SubscriptionTier.FREE: TierLimit(daily_limit=settings.free_daily_limit),
        SubscriptionTier.PRO: TierLimit(daily_limit=settings.pro_daily_limit),
    }


class QuotaGate:
    """Advisory admission check plus the authoritative usage commit.

    ``check_and_admit`` reads the snapshot before any provider work. ``commit``
    increments through the store and recomputes the remaining quota from the
    post-increment count; two requests that both passed the check may push a
    user slightly past the limit, which is logged rather than prevented.
    """

    def __init__(
        self,
        store: UsageStore,
        limits: Mapping[SubscriptionTier, TierLimit] | None = None,
    ) -> None:
        self.store = store
        self.limits = dict(limits or build_tier_limits())

    def daily_limit(self, tier: SubscriptionTier) -> int:
        return self.limits.get(tier, self.limits[SubscriptionTier.FREE]).daily_limit

    async def check_and_admit(self, user_id: str, tier: SubscriptionTier) -> QuotaDecision:
        limit = self.daily_limit(tier)
        snapshot = await self.store.get_snapshot(user_id)
        if snapshot.uploads_today >= limit:
            return QuotaDecision(
                allowed=False, limit=limit, remaining=0, reset_at=snapshot.daily_reset_at
            )
        return QuotaDecision(
            allowed=True,
            limit=limit,
            remaining=limit - snapshot.uploads_today,
            reset_at=snapshot.daily_reset_at,
        )

    async def commit(self, user_id: str, tier: SubscriptionTier) -> QuotaDecision:
        limit = self.daily_limit(tier)
        snapshot = await self.store.increment(user_id)
        if snapshot.uploads_today > limit:
            logger.warning(
                "daily_quota_overshoot",
                user_id=user_id,
                tier=tier.value,
                uploads_today=snapshot.uploads_today,
                limit=limit,
            )
        return QuotaDecision(
            allowed=snapshot.uploads_today <= limit,
            limit=limit,
            remaining=max(0, limit - snapshot.uploads_today),
            reset_at=snapshot.daily_reset_at,
        )


__all__ = ["QuotaGate", "TierLimit", "build_tier_limits"]
