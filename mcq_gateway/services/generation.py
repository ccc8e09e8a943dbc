"""Upstream LLM clients that turn study material into raw MCQ text."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from mcq_gateway.config import GatewaySettings
from mcq_gateway.domain.models import Material
from mcq_gateway.logging import logger
from mcq_gateway.services.exceptions import (
    InvalidInput,
    MalformedGenerationOutput,
    PayloadTooLarge,
    ServiceError,
    UpstreamRejected,
    UpstreamUnavailable,
)
from mcq_gateway.services.prompts import SYSTEM_PROMPT
from mcq_gateway.utils.retry import RetryPolicy, retry_async

EMPTY_ARRAY = "[]"
DEFAULT_MAX_FILE_BYTES = 20 * 1024 * 1024


@dataclass(slots=True)
class GenerationResult:
    text: str
    usage: dict[str, Any] = field(default_factory=dict)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamUnavailable)


def _dig(data: Any, *path: str | int) -> Any:
    current = data
    for step in path:
        try:
            current = current[step]
        except (KeyError, IndexError, TypeError):
            return None
    return current


class GenerationClient:
    """Shared request/retry handling; subclasses describe one provider's wire format."""

    name = "provider"
    supports_binary = False
    wants_wrapped_output = False

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_key: str | None,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float = 60,
        max_input_chars: int | None = None,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    ) -> None:
        self._client = http_client
        self._api_key = api_key
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self.max_input_chars = max_input_chars
        self.max_file_bytes = max_file_bytes

    async def generate(self, material: Material, prompt: str) -> GenerationResult:
        if not self._api_key:
            raise ServiceError(f"{self.name} API key is not configured")
        material = self._prepare(material)
        url, headers, payload = self._build_request(material, prompt)

        response = await retry_async(
            lambda: self._send(url, headers, payload),
            policy=self.retry_policy,
            retry_if=_is_transient,
            logger=logger,
            operation_name=f"{self.name}_generate",
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedGenerationOutput(
                f"{self.name} returned a non-JSON envelope", raw_response=response.text
            ) from exc
        return self._parse_response(data)

    def _prepare(self, material: Material) -> Material:
        if material.is_binary:
            if not self.supports_binary:
                raise InvalidInput(f"The {self.name} provider only accepts text content")
            size = material.decoded_size
            if size > self.max_file_bytes:
                size_mb = size / (1024 * 1024)
                limit_mb = self.max_file_bytes / (1024 * 1024)
                raise PayloadTooLarge(
                    f"File too large: {size_mb:.1f}MB. Maximum size is {limit_mb:.0f}MB. "
                    "Please compress the file."
                )
            return material

        text = material.text or ""
        if self.max_input_chars is not None and len(text) > self.max_input_chars:
            logger.info(
                "material_truncated",
                provider=self.name,
                original_chars=len(text),
                max_chars=self.max_input_chars,
            )
            return Material(text=text[: self.max_input_chars])
        return material

    async def _send(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> httpx.Response:
        try:
            response = await self._client.post(
                url,
                json=payload,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except httpx.RequestError as exc:
            raise UpstreamUnavailable(f"{self.name} request failed: {exc}") from exc

        if response.status_code >= 500:
            raise UpstreamUnavailable(
                f"{self.name} API failed ({response.status_code})",
                upstream_status=response.status_code,
                raw_response=response.text,
            )
        if response.status_code >= 400:
            raise UpstreamRejected(
                f"{self.name} API rejected the request ({response.status_code}): {response.text[:500]}",
                upstream_status=response.status_code,
                raw_response=response.text,
            )
        return response

    @staticmethod
    def _compose_text(prompt: str, text: str) -> str:
        return f"{prompt}\n\nSTUDY MATERIAL:\n{text}"

    def _build_request(
        self, material: Material, prompt: str
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        raise NotImplementedError

    def _parse_response(self, data: Any) -> GenerationResult:
        raise NotImplementedError


class GeminiClient(GenerationClient):
    name = "gemini"
    supports_binary = True

    def __init__(self, http_client: httpx.AsyncClient, *, model: str, base_url: str, **kwargs: Any) -> None:
        super().__init__(http_client, **kwargs)
        self.model = model
        self.base_url = base_url.rstrip("/")

    def _build_request(self, material, prompt):
        if material.is_binary:
            parts: list[dict[str, Any]] = [
                {"text": prompt},
                {"inlineData": {"mimeType": material.mime_type, "data": material.file_data}},
            ]
        else:
            parts = [{"text": self._compose_text(prompt, material.text or "")}]
        url = f"{self.base_url}/models/{self.model}:generateContent"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self._api_key or ""}
        return url, headers, {"contents": [{"role": "user", "parts": parts}]}

    def _parse_response(self, data):
        text = _dig(data, "candidates", 0, "content", "parts", 0, "text")
        if not isinstance(text, str):
            logger.warning("generation_text_missing", provider=self.name)
            text = EMPTY_ARRAY
        return GenerationResult(text=text, usage=_dig(data, "usageMetadata") or {})


class GroqClient(GenerationClient):
    """OpenAI-compatible chat completions; text only, JSON-object responses."""

    name = "groq"
    wants_wrapped_output = True

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        model: str,
        base_url: str,
        max_output_tokens: int = 1500,
        temperature: float = 0.2,
        **kwargs: Any,
    ) -> None:
        super().__init__(http_client, **kwargs)
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

    def _build_request(self, material, prompt):
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self._compose_text(prompt, material.text or "")},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self.temperature,
            "max_completion_tokens": self.max_output_tokens,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        return f"{self.base_url}/chat/completions", headers, payload

    def _parse_response(self, data):
        text = _dig(data, "choices", 0, "message", "content")
        if isinstance(text, list):
            text = _dig(text, 0, "text")
        if not isinstance(text, str):
            logger.warning("generation_text_missing", provider=self.name)
            text = EMPTY_ARRAY
        usage = _dig(data, "usage") or {}
        completion_tokens = usage.get("completion_tokens") or 0
        if completion_tokens > self.max_output_tokens:
            logger.warning(
                "generation_token_limit_exceeded",
                provider=self.name,
                completion_tokens=completion_tokens,
                limit=self.max_output_tokens,
            )
        return GenerationResult(text=text, usage=usage)


def build_generation_client(
    settings: GatewaySettings, http_client: httpx.AsyncClient
) -> GenerationClient:
    """Pick the configured provider."""

    llm = settings.llm
    common: dict[str, Any] = {
        "retry_policy": RetryPolicy(
            max_attempts=settings.retry.max_attempts,
            base_delay=settings.retry.base_delay_seconds,
            jitter=settings.retry.jitter_seconds,
        ),
        "timeout_seconds": llm.request_timeout_seconds,
        "max_file_bytes": settings.generation.max_file_bytes,
    }
    if llm.provider == "groq":
        groq = llm.groq
        return GroqClient(
            http_client,
            api_key=groq.api_key.get_secret_value() if groq.api_key else None,
            model=groq.model,
            base_url=str(groq.base_url),
            max_input_chars=groq.max_input_chars,
            max_output_tokens=groq.max_output_tokens,
            temperature=groq.temperature,
            **common,
        )
    gemini = llm.gemini
    return GeminiClient(
        http_client,
        api_key=gemini.api_key.get_secret_value() if gemini.api_key else None,
        model=gemini.model,
        base_url=str(gemini.base_url),
        max_input_chars=gemini.max_input_chars,
        **common,
    )


__all__ = [
    "EMPTY_ARRAY",
    "GeminiClient",
    "GenerationClient",
    "GenerationResult",
    "GroqClient",
    "build_generation_client",
]
