"""Per-identifier sliding-window admission control.

The shared Redis store is authoritative. When it is missing or unreachable the
limiter either fails closed (production-grade environments) or degrades to an
in-process window counter so local development keeps working.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Protocol
from uuid import uuid4

from redis.asyncio import Redis
from redis.exceptions import RedisError

from llm_gateway.config import RateLimitSettings
from llm_gateway.domain.models import RateLimitDecision
from llm_gateway.logging import logger
from llm_gateway.services.exceptions import RateLimitBackendError

EXCEEDED_REASON = "Rate limit exceeded. Try again later."
BACKEND_UNAVAILABLE_REASON = "Rate limit backend misconfigured."

# Trims entries older than the window, then records the hit only if it fits.
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
    redis.call('ZADD', key, now, ARGV[4])
    count = count + 1
    allowed = 1
end
redis.call('PEXPIRE', key, window)
local reset = window
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if oldest[2] then
    reset = tonumber(oldest[2]) + window - now
end
return {allowed, limit - count, reset}
"""


@dataclass(slots=True)
class WindowHit:
    allowed: bool
    remaining: int
    reset_ms: int


class WindowStore(Protocol):
    async def hit(self, key: str, limit: int, window_ms: int) -> WindowHit: ...


class RedisSlidingWindow:
    """Sorted-set sliding log evaluated atomically inside Redis."""

    def __init__(self, client: Redis) -> None:
        self.client = client
        self._script = client.register_script(_SLIDING_WINDOW_LUA)

    async def hit(self, key: str, limit: int, window_ms: int) -> WindowHit:
        now_ms = int(time.time() * 1000)
        member = f"{now_ms}-{uuid4().hex}"
        try:
            allowed, remaining, reset_ms = await self._script(
                keys=[key], args=[limit, window_ms, now_ms, member]
            )
        except (RedisError, OSError) as exc:
            raise RateLimitBackendError(str(exc)) from exc
        return WindowHit(
            allowed=bool(int(allowed)),
            remaining=max(int(remaining), 0),
            reset_ms=max(int(reset_ms), 0),
        )


@dataclass(slots=True)
class _LocalWindow:
    count: int
    started_at_ms: int


class InMemoryWindow:
    """Fixed window per identifier, reset once the window has elapsed.

    Lives in one process and relies on the event loop for exclusion, so it is
    only correct for a single instance. Never use it where workers scale out.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, _LocalWindow] = {}

    async def hit(self, key: str, limit: int, window_ms: int) -> WindowHit:
        now_ms = int(self._clock() * 1000)
        current = self._windows.get(key)
        if current is None or now_ms - current.started_at_ms >= window_ms:
            self._prune(now_ms, window_ms)
            self._windows[key] = _LocalWindow(count=1, started_at_ms=now_ms)
            return WindowHit(allowed=True, remaining=limit - 1, reset_ms=window_ms)

        reset_ms = max(0, window_ms - (now_ms - current.started_at_ms))
        if current.count >= limit:
            return WindowHit(allowed=False, remaining=0, reset_ms=reset_ms)

        current.count += 1
        return WindowHit(allowed=True, remaining=max(0, limit - current.count), reset_ms=reset_ms)

    def _prune(self, now_ms: int, window_ms: int) -> None:
        expired = [
            key
            for key, window in self._windows.items()
            if now_ms - window.started_at_ms >= window_ms
        ]
        for key in expired:
            del self._windows[key]


class RateLimiter:
    def __init__(
        self,
        settings: RateLimitSettings,
        store: WindowStore | None,
        *,
        fail_closed: bool,
        local_store: InMemoryWindow | None = None,
        unavailable_reason: str | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.fail_closed = fail_closed
        self._local = local_store or InMemoryWindow()
        self._last_error = unavailable_reason or "Redis URL is not configured."
        self._fail_closed_logged = False
        self._fallback_logged = False

    async def admit(self, identifier: str, strict: bool = False) -> RateLimitDecision:
        tier = "strict" if strict else "standard"
        limit = self.settings.strict_limit if strict else self.settings.standard_limit
        window_ms = self.settings.window_seconds * 1000
        key = f"{self.settings.key_prefix}:{tier}:{identifier}"

        if self.store is None:
            return await self._degraded(key, limit, window_ms)
        try:
            hit = await self.store.hit(key, limit, window_ms)
        except RateLimitBackendError as exc:
            self._last_error = f"Rate-limit request failed: {exc}"
            return await self._degraded(key, limit, window_ms)
        return self._to_decision(hit)

    async def _degraded(self, key: str, limit: int, window_ms: int) -> RateLimitDecision:
        if self.fail_closed:
            if not self._fail_closed_logged:
                logger.error("rate_limit_backend_unavailable", reason=self._last_error)
                self._fail_closed_logged = True
            return RateLimitDecision(
                allowed=False,
                reason=BACKEND_UNAVAILABLE_REASON,
                backend_unavailable=True,
            )

        if not self._fallback_logged:
            logger.warning("rate_limit_fallback_local", reason=self._last_error)
            self._fallback_logged = True
        return self._to_decision(await self._local.hit(key, limit, window_ms))

    @staticmethod
    def _to_decision(hit: WindowHit) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=hit.allowed,
            remaining=hit.remaining,
            reset_ms=hit.reset_ms,
            reason=None if hit.allowed else EXCEEDED_REASON,
        )


__all__ = [
    "BACKEND_UNAVAILABLE_REASON",
    "EXCEEDED_REASON",
    "InMemoryWindow",
    "RateLimiter",
    "RedisSlidingWindow",
    "WindowHit",
    "WindowStore",
]
