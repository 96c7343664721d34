"""Adapter for the Anthropic Messages API over a shared httpx client."""

from __future__ import annotations

import time
from typing import Any, Sequence

import httpx
from pydantic import SecretStr

from llm_gateway.domain.models import Message, ModelConfig, RawProviderResponse
from llm_gateway.providers.base import ProviderFailure, ProviderResult, clip, elapsed_ms

DEFAULT_BASE_URL = "https://api.anthropic.com"


class AnthropicAdapter:
    """Anthropic has no JSON mode; schema calls rely on the prompt and the validator."""

    provider = "anthropic"

    def __init__(
        self,
        http_client: httpx.AsyncClient | None,
        api_key: SecretStr | None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = "2023-06-01",
        default_max_tokens: int = 4096,
        default_temperature: float = 0.5,
    ) -> None:
        self.http_client = http_client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature

    def build_payload(self, config: ModelConfig, messages: Sequence[Message]) -> dict[str, Any]:
        system_parts = [m.content for m in messages if m.role == "system"]
        payload: dict[str, Any] = {
            "model": config.model,
            "max_tokens": config.max_tokens or self.default_max_tokens,
            "temperature": (
                config.temperature if config.temperature is not None else self.default_temperature
            ),
            "messages": [
                {"role": m.role, "content": m.content} for m in messages if m.role != "system"
            ],
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        return payload

    async def call(
        self, config: ModelConfig, messages: Sequence[Message], json_mode: bool
    ) -> ProviderResult:
        if self.api_key is None or self.http_client is None:
            return self._failure("configuration", config.model, "ANTHROPIC_API_KEY is not set")

        headers = {
            "x-api-key": self.api_key.get_secret_value(),
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }
        started = time.perf_counter()
        try:
            response = await self.http_client.post(
                f"{self.base_url}/v1/messages",
                json=self.build_payload(config, messages),
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            return self._failure(
                "timeout",
                config.model,
                str(exc) or "request timed out",
                latency_ms=elapsed_ms(started),
            )
        except httpx.HTTPError as exc:
            return self._failure("network", config.model, str(exc), latency_ms=elapsed_ms(started))
        latency_ms = elapsed_ms(started)

        if response.is_error:
            return self._failure(
                "http",
                config.model,
                f"Anthropic {response.status_code}: {clip(response.text)}",
                status_code=response.status_code,
                latency_ms=latency_ms,
            )
        try:
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
        except ValueError:
            return self._failure(
                "malformed_response",
                config.model,
                "response body is not JSON",
                latency_ms=latency_ms,
            )

        blocks = data.get("content") or []
        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )
        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        return RawProviderResponse(
            content=text,
            model=config.model,
            provider="anthropic",
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
            latency_ms=latency_ms,
        )

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()

    def _failure(self, kind, model: str, message: str, **extra: Any) -> ProviderFailure:
        return ProviderFailure(
            kind=kind, provider=self.provider, model=model, message=message, **extra
        )


__all__ = ["AnthropicAdapter"]
