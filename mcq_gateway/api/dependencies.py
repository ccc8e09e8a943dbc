"""FastAPI dependencies wiring per-request services."""

from __future__ import annotations

from fastapi import Depends, Request

from mcq_gateway.services.billing import SubscriptionSyncService
from mcq_gateway.services.container import GatewayServices
from mcq_gateway.services.orchestrator import GenerationOrchestrator
from mcq_gateway.services.quota import QuotaGate


def get_services(request: Request) -> GatewayServices:
    return request.app.state.services


def get_orchestrator(services: GatewayServices = Depends(get_services)) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        authenticator=services.authenticator,
        resolver=services.subscription_resolver,
        quota_gate=QuotaGate(services.usage_store, services.tier_limits),
        capacity_guard=services.capacity_guard,
        cache=services.cache,
        client=services.generation_client,
        normalizer=services.normalizer,
        settings=services.settings.generation,
    )


def get_sync_service(services: GatewayServices = Depends(get_services)) -> SubscriptionSyncService:
    return SubscriptionSyncService(
        services.http_client,
        services.settings.billing,
        services.session_scope,
    )


__all__ = ["get_orchestrator", "get_services", "get_sync_service"]
