"""Domain-specific exceptions.

Every terminal gateway failure carries a stable ``code`` and an HTTP status class
so calling endpoints can map it without inspecting messages.
"""

from __future__ import annotations

from typing import Any, ClassVar


class ServiceError(Exception):
    pass


class GatewayError(ServiceError):
    code: ClassVar[str] = "GATEWAY_ERROR"
    http_status: ClassVar[int] = 500
    public_message: ClassVar[str] = "LLM request failed."

    def __init__(self, message: str | None = None, *, task: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.task = task

    def to_payload(self) -> dict[str, Any]:
        """Client-safe body; never carries raw provider or store messages."""

        return {"error": self.public_message, "code": self.code}


class RateLimited(GatewayError):
    code = "RATE_LIMITED"
    http_status = 429
    public_message = "Rate limit exceeded. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        *,
        task: str | None = None,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message, task=task)
        self.retry_after_seconds = retry_after_seconds

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.retry_after_seconds is not None:
            payload["retryAfter"] = self.retry_after_seconds
        return payload


class RateLimitBackendUnavailable(GatewayError):
    code = "RATE_LIMIT_BACKEND_UNAVAILABLE"
    http_status = 503
    public_message = "Rate limit backend misconfigured."


class UsageLimitExceeded(GatewayError):
    code = "USAGE_LIMIT_EXCEEDED"
    http_status = 403
    public_message = "Usage limit exceeded."


class UsageBackendUnavailable(GatewayError):
    code = "USAGE_BACKEND_UNAVAILABLE"
    http_status = 503
    public_message = "Usage enforcement is temporarily unavailable."


class ProviderUnavailable(GatewayError):
    code = "PROVIDER_UNAVAILABLE"
    http_status = 503
    public_message = "LLM provider unavailable. Please try again later."

    def __init__(
        self, message: str | None = None, *, task: str | None = None, attempts: int = 0
    ) -> None:
        super().__init__(message, task=task)
        self.attempts = attempts


class RateLimitBackendError(ServiceError):
    """Shared counter store unreachable or misconfigured."""


class OutputValidationError(ServiceError):
    """Model output could not be turned into the requested schema.

    Internal only: the orchestrator treats it as a failed attempt.
    """

    code: ClassVar[str] = "VALIDATION_FAILED"


__all__ = [
    "GatewayError",
    "OutputValidationError",
    "ProviderUnavailable",
    "RateLimitBackendError",
    "RateLimitBackendUnavailable",
    "RateLimited",
    "ServiceError",
    "UsageBackendUnavailable",
    "UsageLimitExceeded",
]
