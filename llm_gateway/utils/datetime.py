"""Time utilities with timezone-aware defaults."""

from __future__ import annotations

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time with tzinfo."""

    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Calendar day used to key per-user usage counters."""

    return utc_now().date()


__all__ = ["utc_now", "utc_today"]
