"""Subscription tier resolution and record updates."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mcq_gateway.db.models.core import UserSubscription
from mcq_gateway.db.session import SessionScope
from mcq_gateway.domain.models import SubscriptionTier
from mcq_gateway.logging import logger
from mcq_gateway.utils.datetime import utc_now

PLAN_TIERS = {
    "free": SubscriptionTier.FREE,
    "pro": SubscriptionTier.PRO,
}


class SubscriptionResolver:
    """Map a user to a tier, falling back to FREE whenever the answer is unclear.

    The lookup runs in its own transaction, so a failed query is rolled back
    there and never poisons the usage store's session.
    """

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def resolve_tier(self, user_id: str) -> SubscriptionTier:
        try:
            rows = await self._active_subscriptions(user_id)
        except Exception:
            logger.exception("subscription_lookup_failed", user_id=user_id)
            return SubscriptionTier.FREE

        if not rows:
            return SubscriptionTier.FREE
        if len(rows) > 1:
            logger.warning("subscription_ambiguous", user_id=user_id, count=len(rows))
            return SubscriptionTier.FREE
        return PLAN_TIERS.get((rows[0].plan_type or "").lower(), SubscriptionTier.FREE)

    async def _active_subscriptions(self, user_id: str) -> list[UserSubscription]:
        stmt = select(UserSubscription).where(
            UserSubscription.user_id == user_id,
            UserSubscription.status == "active",
        )
        async with self._session_scope() as session:
            result = await session.execute(stmt)
            return list(result.scalars())


class SubscriptionService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_subscription(self, user_id: str) -> UserSubscription | None:
        stmt = select(UserSubscription).where(UserSubscription.user_id == user_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_default_subscription(self, user_id: str) -> UserSubscription:
        """Make sure the user always has a subscription record (free/active)."""

        subscription = await self.get_subscription(user_id)
        if subscription is None:
            now = utc_now()
            subscription = UserSubscription(
                user_id=user_id,
                plan_type="free",
                is_active=True,
                status="active",
                created_at=now,
                updated_at=now,
            )
            self.session.add(subscription)
            await self.session.flush()
        return subscription

    async def apply_entitlement(
        self,
        user_id: str,
        *,
        is_pro_active: bool,
        customer_id: str,
        subscription_id: str | None = None,
    ) -> UserSubscription:
        subscription = await self.ensure_default_subscription(user_id)
        subscription.plan_type = "pro" if is_pro_active else "free"
        subscription.status = "active" if is_pro_active else "cancelled"
        subscription.is_active = is_pro_active
        subscription.revenue_cat_customer_id = customer_id
        subscription.revenue_cat_subscription_id = subscription_id
        subscription.updated_at = utc_now()
        await self.session.flush()
        logger.info(
            "subscription_synced",
            user_id=user_id,
            plan_type=subscription.plan_type,
            status=subscription.status,
        )
        return subscription


__all__ = ["PLAN_TIERS", "SubscriptionResolver", "SubscriptionService"]
