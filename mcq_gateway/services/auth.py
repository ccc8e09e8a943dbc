"""Bearer-token verification against Supabase Auth."""

from __future__ import annotations

from typing import Protocol

import httpx

from mcq_gateway.config import SupabaseSettings
from mcq_gateway.domain.models import UserIdentity
from mcq_gateway.logging import logger
from mcq_gateway.services.exceptions import ServiceError, Unauthorized

BEARER_PREFIX = "Bearer "


class Authenticator(Protocol):
    async def authenticate(self, token: str) -> UserIdentity: ...


def extract_bearer_token(header: str | None) -> str:
    if not header or not header.startswith(BEARER_PREFIX):
        raise Unauthorized("Unauthorized: Missing or invalid token")
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise Unauthorized("Unauthorized: Missing or invalid token")
    return token


class SupabaseAuthenticator:
    def __init__(self, http_client: httpx.AsyncClient, settings: SupabaseSettings) -> None:
        self._client = http_client
        self._settings = settings

    async def authenticate(self, token: str) -> UserIdentity:
        if self._settings.url is None or self._settings.anon_key is None:
            raise ServiceError("Supabase auth is not configured")

        url = f"{str(self._settings.url).rstrip('/')}/auth/v1/user"
        headers = {
            "apikey": self._settings.anon_key.get_secret_value(),
            "Authorization": f"{BEARER_PREFIX}{token}",
        }
        try:
            response = await self._client.get(
                url, headers=headers, timeout=self._settings.request_timeout_seconds
            )
        except httpx.RequestError as exc:
            raise ServiceError(f"Auth service unreachable: {exc}") from exc

        if response.status_code != 200:
            logger.info("auth_rejected", status_code=response.status_code)
            raise Unauthorized("Unauthorized: Invalid token")

        data = response.json()
        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise Unauthorized("Unauthorized: Invalid token")
        return UserIdentity(id=str(user_id), email=data.get("email"))


__all__ = ["Authenticator", "SupabaseAuthenticator", "extract_bearer_token"]
