"""Attempt policy for the primary/fallback retry loop.

Kept free of I/O and timers so the policy can be exercised on its own.
"""

from __future__ import annotations

import enum
from typing import Literal

ErrorKind = Literal["provider", "configuration", "validation", "quota", "usage_unavailable"]

# Admission failures raised after a provider call; retrying cannot help.
_ABORTING_KINDS: frozenset[str] = frozenset({"quota", "usage_unavailable"})


class AttemptPhase(enum.Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class NextAction(enum.Enum):
    RETRY = "retry"
    FALLBACK = "fallback"
    ABORT = "abort"
    EXHAUSTED = "exhausted"


def next_action(
    phase: AttemptPhase, attempt: int, error_kind: ErrorKind, primary_budget: int
) -> NextAction:
    """Decide what follows a failed attempt.

    ``attempt`` is the 1-based attempt number within ``phase``.
    """

    if error_kind in _ABORTING_KINDS:
        return NextAction.ABORT
    if phase is AttemptPhase.FALLBACK:
        return NextAction.EXHAUSTED
    if attempt < primary_budget:
        return NextAction.RETRY
    return NextAction.FALLBACK


def backoff_delay(attempt: int, *, base: float = 0.5, cap: float = 8.0) -> float:
    """Exponential delay slept after primary attempt ``attempt`` failed."""

    return min(base * (2**attempt), cap)


__all__ = ["AttemptPhase", "ErrorKind", "NextAction", "backoff_delay", "next_action"]
