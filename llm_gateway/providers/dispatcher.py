"""Route a canonical request to the adapter for its provider family."""

from __future__ import annotations

from typing import Mapping, Sequence

from llm_gateway.domain.models import Message, ModelConfig
from llm_gateway.logging import logger
from llm_gateway.providers.base import ProviderAdapter, ProviderFailure, ProviderResult


class ProviderDispatcher:
    def __init__(self, adapters: Mapping[str, ProviderAdapter]) -> None:
        self.adapters = dict(adapters)

    async def call(
        self, config: ModelConfig, messages: Sequence[Message], json_mode: bool
    ) -> ProviderResult:
        adapter = self.adapters.get(config.provider)
        if adapter is None:
            return ProviderFailure(
                kind="unknown_provider",
                provider=config.provider,
                model=config.model,
                message=f"Unknown provider: {config.provider}",
            )
        return await adapter.call(config, messages, json_mode)

    async def aclose(self) -> None:
        for name, adapter in self.adapters.items():
            try:
                await adapter.aclose()
            except Exception:
                logger.exception("provider_close_failed", provider=name)


__all__ = ["ProviderDispatcher"]
