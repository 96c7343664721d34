"""Static task routing and plan limit tables.

Cheap tasks go to gpt-4.1-mini, expensive ones to gpt-4.1; Claude Sonnet is the
fallback everywhere except ``quality_check``, where the pair is reversed.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from llm_gateway.domain.models import ModelConfig, Plan, PlanLimits, Task, TaskRouting

OPENROUTER_MODEL_PLACEHOLDER = "__OPENROUTER_MODEL__"

_MINI = "gpt-4.1-mini"
_FULL = "gpt-4.1"
_SONNET = "claude-sonnet-4-20250514"


def _route(primary: str, fallback: str, temperature: float) -> TaskRouting:
    def _config(model: str) -> ModelConfig:
        provider = "anthropic" if model.startswith("claude") else "openai"
        return ModelConfig(provider=provider, model=model, temperature=temperature)

    return TaskRouting(primary=_config(primary), fallback=_config(fallback))


MODEL_ROUTING: Mapping[Task, TaskRouting] = MappingProxyType(
    {
        "onboarding_chat": _route(_MINI, _SONNET, 0.7),
        "level_assessment": _route(_MINI, _SONNET, 0.3),
        "roadmap_generation": _route(_FULL, _SONNET, 0.5),
        "roadmap_adaptation": _route(_FULL, _SONNET, 0.5),
        "quiz_generation": _route(_MINI, _SONNET, 0.5),
        "artifact_grading": _route(_MINI, _SONNET, 0.2),
        "quality_check": _route(_SONNET, _FULL, 0.2),
    }
)

# Expensive tasks are admitted through the strict window unless the caller says otherwise.
STRICT_RATE_LIMIT_TASKS: frozenset[Task] = frozenset({"roadmap_generation", "roadmap_adaptation"})

PLAN_LIMITS: Mapping[Plan, PlanLimits] = MappingProxyType(
    {
        "free": PlanLimits(messages_per_day=10, tokens_per_day=20_000),
        "starter": PlanLimits(messages_per_day=50, tokens_per_day=100_000),
        "pro": PlanLimits(messages_per_day=200, tokens_per_day=500_000),
        "unlimited": PlanLimits(messages_per_day=None, tokens_per_day=None),
    }
)

DEFAULT_PLAN: Plan = "free"


def uses_strict_window(task: Task, override: bool | None = None) -> bool:
    if override is not None:
        return override
    return task in STRICT_RATE_LIMIT_TASKS


__all__ = [
    "DEFAULT_PLAN",
    "MODEL_ROUTING",
    "OPENROUTER_MODEL_PLACEHOLDER",
    "PLAN_LIMITS",
    "STRICT_RATE_LIMIT_TASKS",
    "uses_strict_window",
]
