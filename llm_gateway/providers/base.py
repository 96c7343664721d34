"""Common shapes for provider adapters.

Adapters never raise for upstream trouble. They return either a
``RawProviderResponse`` or a ``ProviderFailure`` whose ``kind`` tells the
orchestrator what went wrong.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Literal, Protocol, Sequence, Union

from llm_gateway.domain.models import Message, ModelConfig, RawProviderResponse

FailureKind = Literal[
    "configuration",
    "http",
    "network",
    "timeout",
    "malformed_response",
    "unknown_provider",
]

ERROR_BODY_LIMIT = 500


@dataclass(frozen=True, slots=True)
class ProviderFailure:
    kind: FailureKind
    provider: str
    model: str
    message: str
    status_code: int | None = None
    latency_ms: int = 0

    @property
    def is_configuration_error(self) -> bool:
        return self.kind in {"configuration", "unknown_provider"}

    def describe(self) -> str:
        status = f" {self.status_code}" if self.status_code is not None else ""
        return f"{self.provider} ({self.model}) {self.kind}{status}: {self.message}"


ProviderResult = Union[RawProviderResponse, ProviderFailure]


class ProviderAdapter(Protocol):
    provider: str

    async def call(
        self, config: ModelConfig, messages: Sequence[Message], json_mode: bool
    ) -> ProviderResult: ...

    async def aclose(self) -> None: ...


def elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def clip(text: str, limit: int = ERROR_BODY_LIMIT) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return f"{text[: limit - 15].rstrip()}...[truncated]"


__all__ = [
    "ERROR_BODY_LIMIT",
    "FailureKind",
    "ProviderAdapter",
    "ProviderFailure",
    "ProviderResult",
    "clip",
    "elapsed_ms",
]
