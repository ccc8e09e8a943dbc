"""HTTP endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from mcq_gateway.api.dependencies import get_orchestrator, get_services, get_sync_service
from mcq_gateway.services.auth import extract_bearer_token
from mcq_gateway.services.billing import SubscriptionSyncService
from mcq_gateway.services.container import GatewayServices
from mcq_gateway.services.orchestrator import GenerationOrchestrator
from mcq_gateway.utils.datetime import utc_now

router = APIRouter()


async def _read_json(request: Request) -> Any:
    # Malformed bodies surface as InvalidInput after authentication.
    try:
        return await request.json()
    except ValueError:
        return None


@router.get("/health")
async def health() -> dict[str, Any]:
    return {"ok": True, "status": "running", "timestamp": utc_now().isoformat()}


@router.post("/generate-mcqs")
async def generate_mcqs(
    request: Request,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    payload = await _read_json(request)
    return await orchestrator.run(request.headers.get("Authorization"), payload)


@router.post("/sync-subscription")
async def sync_subscription(
    request: Request,
    services: GatewayServices = Depends(get_services),
    sync_service: SubscriptionSyncService = Depends(get_sync_service),
) -> dict[str, Any]:
    token = extract_bearer_token(request.headers.get("Authorization"))
    user = await services.authenticator.authenticate(token)
    sync_request = sync_service.parse_request(await _read_json(request))
    data = await sync_service.sync(user.id, sync_request)
    return {"ok": True, "data": data}


__all__ = ["router"]
