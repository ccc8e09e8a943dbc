"""Tier resolution and entitlement updates."""

from __future__ import annotations

import pytest
from sqlalchemy import text

from mcq_gateway.db.models.core import UserSubscription
from mcq_gateway.domain.models import SubscriptionTier
from mcq_gateway.services.subscriptions import SubscriptionResolver, SubscriptionService
from mcq_gateway.services.usage import SqlUsageStore


def _subscription(user_id: str, plan_type: str, status: str = "active") -> UserSubscription:
    return UserSubscription(
        user_id=user_id,
        plan_type=plan_type,
        status=status,
        is_active=status == "active",
    )


@pytest.mark.asyncio
async def test_user_without_subscription_is_free(session_scope):
    tier = await SubscriptionResolver(session_scope).resolve_tier("nobody")

    assert tier is SubscriptionTier.FREE


@pytest.mark.asyncio
async def test_active_pro_subscription_resolves_to_pro(session, session_scope):
    session.add(_subscription("user-1", "pro"))
    await session.flush()

    assert await SubscriptionResolver(session_scope).resolve_tier("user-1") is SubscriptionTier.PRO


@pytest.mark.asyncio
async def test_cancelled_pro_subscription_falls_back_to_free(session, session_scope):
    session.add(_subscription("user-1", "pro", status="cancelled"))
    await session.flush()

    assert await SubscriptionResolver(session_scope).resolve_tier("user-1") is SubscriptionTier.FREE


@pytest.mark.asyncio
async def test_ambiguous_rows_fall_back_to_free(session_scope, monkeypatch):
    resolver = SubscriptionResolver(session_scope)

    async def _two_rows(user_id):
        return [_subscription(user_id, "pro"), _subscription(user_id, "pro")]

    monkeypatch.setattr(resolver, "_active_subscriptions", _two_rows)

    assert await resolver.resolve_tier("user-1") is SubscriptionTier.FREE


@pytest.mark.asyncio
async def test_lookup_error_falls_back_to_free(session_scope, monkeypatch):
    resolver = SubscriptionResolver(session_scope)

    async def _boom(user_id):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(resolver, "_active_subscriptions", _boom)

    assert await resolver.resolve_tier("user-1") is SubscriptionTier.FREE


@pytest.mark.asyncio
async def test_apply_entitlement_creates_and_downgrades(session, session_scope):
    service = SubscriptionService(session)

    upgraded = await service.apply_entitlement(
        "user-1", is_pro_active=True, customer_id="rc-1", subscription_id="sub-1"
    )
    assert (upgraded.plan_type, upgraded.status, upgraded.is_active) == ("pro", "active", True)

    downgraded = await service.apply_entitlement("user-1", is_pro_active=False, customer_id="rc-1")
    assert downgraded.id == upgraded.id
    assert (downgraded.plan_type, downgraded.status) == ("free", "cancelled")
    assert await SubscriptionResolver(session_scope).resolve_tier("user-1") is SubscriptionTier.FREE


@pytest.mark.asyncio
async def test_failed_lookup_is_rolled_back_before_usage_accounting(session, session_scope):
    await session.execute(text("DROP TABLE user_subscriptions"))
    await session.commit()
    rollbacks_before = session.rollbacks

    tier = await SubscriptionResolver(session_scope).resolve_tier("user-1")
    snapshot = await SqlUsageStore(session_scope).increment("user-1")

    assert tier is SubscriptionTier.FREE
    assert session.rollbacks == rollbacks_before + 1
    assert snapshot.uploads_today == 1
