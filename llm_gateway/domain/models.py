"""Pydantic models shared across the gateway layers."""

from __future__ import annotations

from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Task = Literal[
    "onboarding_chat",
    "level_assessment",
    "roadmap_generation",
    "roadmap_adaptation",
    "quiz_generation",
    "artifact_grading",
    "quality_check",
]
ProviderName = Literal["openai", "anthropic", "openrouter"]
Locale = Literal["en", "ru"]
Role = Literal["system", "user", "assistant"]
Plan = Literal["free", "starter", "pro", "unlimited"]
CallStatus = Literal["success", "error"]

T = TypeVar("T")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class _Wire(BaseModel):
    """Snake-case attributes, camelCase when dumped with ``by_alias=True``."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class ModelConfig(_Frozen):
    provider: ProviderName
    model: str
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0, le=2)


class TaskRouting(_Frozen):
    primary: ModelConfig
    fallback: ModelConfig


class Message(_Frozen):
    role: Role
    content: str


class CallRequest(_Wire):
    task: Task
    locale: Locale = "en"
    caller_id: str | None = None
    client_ip: str | None = None
    request_id: str | None = None
    prompt_version: str = "unversioned"
    messages: tuple[Message, ...] = Field(min_length=1)
    strict_rate_limit: bool | None = None

    @property
    def rate_limit_identifier(self) -> str:
        if self.caller_id:
            return f"user:{self.caller_id}"
        if self.client_ip:
            return f"ip:{self.client_ip}"
        return "anon"


class RawProviderResponse(_Frozen):
    content: str
    model: str
    provider: ProviderName
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class CallMeta(_Wire):
    model: str
    provider: ProviderName
    input_tokens: int
    output_tokens: int
    latency_ms: int
    prompt_version: str
    attempts: int
    used_fallback: bool


class CallResult(_Wire, Generic[T]):
    data: T
    meta: CallMeta


class PlanLimits(_Frozen):
    """Daily budget; ``None`` on both counters marks the unlimited sentinel."""

    messages_per_day: int | None
    tokens_per_day: int | None

    @property
    def is_unlimited(self) -> bool:
        return self.messages_per_day is None or self.tokens_per_day is None


class UsageSnapshot(_Frozen):
    ai_messages: int = 0
    tokens_used: int = 0


class UsageDecision(_Frozen):
    allowed: bool
    reason: str | None = None
    unavailable: bool = False
    plan: Plan | None = None
    current: UsageSnapshot | None = None
    limits: PlanLimits | None = None


class RateLimitDecision(_Frozen):
    allowed: bool
    remaining: int | None = None
    reset_ms: int | None = None
    reason: str | None = None
    backend_unavailable: bool = False

    @property
    def retry_after_seconds(self) -> float | None:
        if self.allowed or self.reset_ms is None:
            return None
        return self.reset_ms / 1000


__all__ = [
    "CallMeta",
    "CallRequest",
    "CallResult",
    "CallStatus",
    "Locale",
    "Message",
    "ModelConfig",
    "Plan",
    "PlanLimits",
    "ProviderName",
    "RateLimitDecision",
    "RawProviderResponse",
    "Role",
    "Task",
    "TaskRouting",
    "UsageDecision",
    "UsageSnapshot",
]
