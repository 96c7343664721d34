"""Adapter for OpenAI and OpenAI-compatible chat completion APIs (OpenRouter)."""

from __future__ import annotations

import time
from typing import Any, Sequence

import openai
from openai import AsyncOpenAI

from llm_gateway.domain.models import Message, ModelConfig, ProviderName, RawProviderResponse
from llm_gateway.domain.routing import OPENROUTER_MODEL_PLACEHOLDER
from llm_gateway.providers.base import ProviderFailure, ProviderResult, clip, elapsed_ms


class OpenAICompatibleAdapter:
    def __init__(
        self,
        provider: ProviderName,
        client: AsyncOpenAI | None,
        *,
        credential_name: str,
        default_model: str | None = None,
        default_max_tokens: int = 4096,
        default_temperature: float = 0.5,
    ) -> None:
        self.provider = provider
        self.client = client
        self.credential_name = credential_name
        self.default_model = default_model
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature

    def resolve_model(self, model: str) -> str:
        if model == OPENROUTER_MODEL_PLACEHOLDER and self.default_model:
            return self.default_model
        return model

    async def call(
        self, config: ModelConfig, messages: Sequence[Message], json_mode: bool
    ) -> ProviderResult:
        model = self.resolve_model(config.model)
        if self.client is None:
            return self._failure("configuration", model, f"{self.credential_name} is not set")

        request: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": (
                config.temperature if config.temperature is not None else self.default_temperature
            ),
            "max_tokens": config.max_tokens or self.default_max_tokens,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        started = time.perf_counter()
        try:
            completion = await self.client.chat.completions.create(**request)
        except openai.APITimeoutError as exc:
            return self._failure("timeout", model, str(exc), latency_ms=elapsed_ms(started))
        except openai.APIStatusError as exc:
            return self._failure(
                "http",
                model,
                clip(exc.message),
                status_code=exc.status_code,
                latency_ms=elapsed_ms(started),
            )
        except openai.APIConnectionError as exc:
            return self._failure("network", model, str(exc), latency_ms=elapsed_ms(started))
        except openai.APIError as exc:
            return self._failure(
                "malformed_response", model, clip(str(exc)), latency_ms=elapsed_ms(started)
            )
        latency_ms = elapsed_ms(started)

        content = ""
        if completion.choices:
            content = completion.choices[0].message.content or ""
        usage = completion.usage
        return RawProviderResponse(
            content=content,
            model=model,
            provider=self.provider,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms,
        )

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.close()

    def _failure(self, kind, model: str, message: str, **extra: Any) -> ProviderFailure:
        return ProviderFailure(
            kind=kind, provider=self.provider, model=model, message=message, **extra
        )


__all__ = ["OpenAICompatibleAdapter"]
