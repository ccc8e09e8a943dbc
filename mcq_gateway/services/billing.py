"""Best-effort subscription sync with the RevenueCat entitlement API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

import httpx
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from mcq_gateway.config import BillingSettings
from mcq_gateway.db.session import SessionScope
from mcq_gateway.logging import logger
from mcq_gateway.services.exceptions import InvalidInput, SubscriptionSyncError
from mcq_gateway.services.subscriptions import SubscriptionService
from mcq_gateway.utils.datetime import ensure_utc, utc_now

PRO_ENTITLEMENT_KEYS = ("pro", "Pro", "PRO")


class EntitlementData(BaseModel):
    identifier: str | None = None
    will_renew: bool | str | None = None
    expiration_date: str | None = None


class SyncRequest(BaseModel):
    revenue_cat_customer_id: str = Field(min_length=1)
    revenue_cat_subscription_id: str | None = None
    entitlement_data: EntitlementData | None = None


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def entitlement_is_active(entitlement: Mapping[str, Any], now: datetime | None = None) -> bool:
    """Active when it will renew or has not expired yet."""

    now = now or utc_now()
    will_renew = entitlement.get("will_renew") in (True, "true")
    expires_at = _parse_timestamp(
        entitlement.get("expires_date") or entitlement.get("expiration_date")
    )
    return will_renew or (expires_at is not None and expires_at > now)


def find_pro_entitlement(subscriber: Mapping[str, Any]) -> Mapping[str, Any] | None:
    entitlements = subscriber.get("entitlements") or {}
    for key in PRO_ENTITLEMENT_KEYS:
        if isinstance(entitlements.get(key), Mapping):
            return entitlements[key]
    for candidate in entitlements.values():
        if not isinstance(candidate, Mapping):
            continue
        identifier = str(candidate.get("identifier") or "").lower()
        product = str(candidate.get("product_identifier") or "").lower()
        if "pro" in identifier or "pro" in product:
            return candidate
    return None


class SubscriptionSyncService:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: BillingSettings,
        session_scope: SessionScope,
    ) -> None:
        self._client = http_client
        self._settings = settings
        self._session_scope = session_scope

    @staticmethod
    def parse_request(payload: Any) -> SyncRequest:
        if not isinstance(payload, dict) or not payload.get("revenue_cat_customer_id"):
            raise InvalidInput("revenue_cat_customer_id is required")
        try:
            return SyncRequest.model_validate(payload)
        except ValidationError as exc:
            raise InvalidInput(f"Invalid request: {exc.errors()[0]['msg']}") from exc

    async def sync(self, user_id: str, request: SyncRequest) -> dict[str, Any]:
        verified = await self._verify_with_revenuecat(request.revenue_cat_customer_id)
        if verified is None:
            source = "client"
            entitlement = request.entitlement_data
            is_pro_active = entitlement is not None and entitlement_is_active(
                entitlement.model_dump()
            )
        else:
            source = "revenuecat"
            is_pro_active = verified

        try:
            async with self._session_scope() as session:
                subscription = await SubscriptionService(session).apply_entitlement(
                    user_id,
                    is_pro_active=is_pro_active,
                    customer_id=request.revenue_cat_customer_id,
                    subscription_id=request.revenue_cat_subscription_id,
                )
        except SQLAlchemyError as exc:
            logger.exception("subscription_sync_failed", user_id=user_id)
            raise SubscriptionSyncError(f"Failed to sync subscription: {exc}") from exc
        return {
            "plan_type": subscription.plan_type,
            "status": subscription.status,
            "revenue_cat_customer_id": subscription.revenue_cat_customer_id,
            "revenue_cat_subscription_id": subscription.revenue_cat_subscription_id,
            "verified_by": source,
        }

    async def _verify_with_revenuecat(self, customer_id: str) -> bool | None:
        """Return the verified pro flag, or ``None`` when RevenueCat cannot answer."""

        secret = self._settings.revenuecat_secret_key
        if secret is None:
            logger.warning("revenuecat_not_configured")
            return None

        url = f"{str(self._settings.revenuecat_base_url).rstrip('/')}/subscribers/{customer_id}"
        headers = {
            "Authorization": f"Bearer {secret.get_secret_value()}",
            "X-Platform": self._settings.platform,
        }
        try:
            response = await self._client.get(
                url, headers=headers, timeout=self._settings.request_timeout_seconds
            )
        except httpx.RequestError as exc:
            logger.warning("revenuecat_request_failed", error=str(exc))
            return None
        if response.status_code != 200:
            logger.warning("revenuecat_unexpected_status", status_code=response.status_code)
            return None

        try:
            body = response.json()
        except ValueError:
            body = None
        subscriber = (body.get("subscriber") or {}) if isinstance(body, Mapping) else None
        if not isinstance(subscriber, Mapping):
            logger.warning("revenuecat_unreadable_body", body=response.text[:200])
            return None
        entitlement = find_pro_entitlement(subscriber)
        is_pro_active = entitlement is not None and entitlement_is_active(entitlement)
        logger.info("revenuecat_verified", is_pro_active=is_pro_active)
        return is_pro_active


__all__ = [
    "EntitlementData",
    "SubscriptionSyncService",
    "SyncRequest",
    "entitlement_is_active",
    "find_pro_entitlement",
]
