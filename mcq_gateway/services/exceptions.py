"""Domain-specific exceptions mapped onto HTTP responses by the API layer."""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    status_code = 500
    # Whether str(exc) is safe to show outside development mode.
    expose_message = False
    public_message = "An unexpected error occurred. Please try again later."

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        super().__init__(message or self.public_message)
        self.extra = extra


class Unauthorized(ServiceError):
    status_code = 401
    expose_message = True
    public_message = "Unauthorized: Missing or invalid token"


class InvalidInput(ServiceError):
    status_code = 400
    expose_message = True
    public_message = "Invalid request"


class GlobalCapacityExceeded(ServiceError):
    status_code = 503
    expose_message = True
    public_message = "Service temporarily unavailable. Monthly limit reached."


class UserQuotaExceeded(ServiceError):
    status_code = 429
    expose_message = True
    public_message = "Daily limit reached."


class UpstreamError(ServiceError):
    public_message = "AI service is temporarily unavailable. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        *,
        upstream_status: int | None = None,
        raw_response: str | None = None,
    ) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        self.raw_response = raw_response


class UpstreamUnavailable(UpstreamError):
    """Transient provider failure (5xx or network) after retries are exhausted."""


class UpstreamRejected(UpstreamError):
    """Permanent provider failure (4xx); never retried."""


class PayloadTooLarge(ServiceError):
    status_code = 400
    public_message = "File size exceeds the maximum allowed limit (20MB)."


class MalformedGenerationOutput(ServiceError):
    public_message = "Failed to process AI response. Please try again."

    def __init__(self, message: str | None = None, *, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class UsageCommitFailed(ServiceError):
    """Usage could not be recorded; the generated result is withheld."""


class SubscriptionSyncError(ServiceError):
    public_message = "Failed to sync subscription."


__all__ = [
    "GlobalCapacityExceeded",
    "InvalidInput",
    "MalformedGenerationOutput",
    "PayloadTooLarge",
    "ServiceError",
    "SubscriptionSyncError",
    "Unauthorized",
    "UpstreamError",
    "UpstreamRejected",
    "UpstreamUnavailable",
    "UsageCommitFailed",
    "UserQuotaExceeded",
]
