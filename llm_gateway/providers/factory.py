"""Build provider clients once at process start and wire them into adapters."""

from __future__ import annotations

import httpx
from openai import AsyncOpenAI

from llm_gateway.config import ProviderSettings
from llm_gateway.providers.anthropic import AnthropicAdapter
from llm_gateway.providers.dispatcher import ProviderDispatcher
from llm_gateway.providers.openai_compatible import OpenAICompatibleAdapter


def _openai_client(api_key, base_url, *, timeout: int, headers=None) -> AsyncOpenAI | None:
    if api_key is None:
        return None
    # Retries belong to the gateway, not the SDK.
    return AsyncOpenAI(
        api_key=api_key.get_secret_value(),
        base_url=str(base_url) if base_url else None,
        timeout=timeout,
        max_retries=0,
        default_headers=headers or None,
    )


def build_dispatcher(settings: ProviderSettings) -> ProviderDispatcher:
    timeout = settings.request_timeout_seconds
    defaults = {
        "default_max_tokens": settings.default_max_tokens,
        "default_temperature": settings.default_temperature,
    }

    openai_adapter = OpenAICompatibleAdapter(
        "openai",
        _openai_client(settings.openai.api_key, settings.openai.base_url, timeout=timeout),
        credential_name="GATEWAY_PROVIDERS__OPENAI__API_KEY",
        **defaults,
    )

    router_cfg = settings.openrouter
    router_headers = {}
    if router_cfg.referer:
        router_headers["HTTP-Referer"] = router_cfg.referer
    if router_cfg.title:
        router_headers["X-Title"] = router_cfg.title
    openrouter_adapter = OpenAICompatibleAdapter(
        "openrouter",
        _openai_client(
            router_cfg.api_key, router_cfg.base_url, timeout=timeout, headers=router_headers
        ),
        credential_name="GATEWAY_PROVIDERS__OPENROUTER__API_KEY",
        default_model=router_cfg.model,
        **defaults,
    )

    anthropic_cfg = settings.anthropic
    anthropic_adapter = AnthropicAdapter(
        httpx.AsyncClient(timeout=timeout) if anthropic_cfg.api_key else None,
        anthropic_cfg.api_key,
        base_url=str(anthropic_cfg.base_url),
        api_version=anthropic_cfg.api_version,
        **defaults,
    )

    return ProviderDispatcher(
        {
            "openai": openai_adapter,
            "openrouter": openrouter_adapter,
            "anthropic": anthropic_adapter,
        }
    )


__all__ = ["build_dispatcher"]
