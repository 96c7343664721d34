"""Single entry point for every LLM call.

A call is admitted by the rate limiter and the usage pre-check, then tried on
the task's primary model until the retry budget is spent and once on the
fallback model. Usage is charged only for the attempt whose output is returned.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from pydantic import BaseModel

from llm_gateway.config import RetrySettings
from llm_gateway.domain.models import (
    CallMeta,
    CallRequest,
    CallResult,
    ModelConfig,
    RawProviderResponse,
    Task,
    TaskRouting,
)
from llm_gateway.domain.routing import MODEL_ROUTING, uses_strict_window
from llm_gateway.logging import logger, request_context
from llm_gateway.providers.base import ProviderFailure
from llm_gateway.providers.dispatcher import ProviderDispatcher
from llm_gateway.services.call_log import CallLogger
from llm_gateway.services.exceptions import (
    GatewayError,
    OutputValidationError,
    ProviderUnavailable,
    RateLimitBackendUnavailable,
    RateLimited,
    UsageBackendUnavailable,
    UsageLimitExceeded,
)
from llm_gateway.services.output_validator import extract_and_validate
from llm_gateway.services.rate_limit import RateLimiter
from llm_gateway.services.usage import UsageLedger
from llm_gateway.utils.retry import AttemptPhase, ErrorKind, NextAction, backoff_delay, next_action

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(slots=True)
class _AttemptFailure:
    kind: ErrorKind
    message: str
    terminal: GatewayError | None = None


@dataclass(slots=True)
class _CallState:
    attempts: int = 0
    config: ModelConfig | None = None
    last_error: str | None = None


class LLMGateway:
    def __init__(
        self,
        dispatcher: ProviderDispatcher,
        rate_limiter: RateLimiter,
        usage_ledger: UsageLedger,
        call_logger: CallLogger,
        settings: RetrySettings | None = None,
        *,
        routing: Mapping[Task, TaskRouting] = MODEL_ROUTING,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.dispatcher = dispatcher
        self.rate_limiter = rate_limiter
        self.usage_ledger = usage_ledger
        self.call_logger = call_logger
        self.settings = settings or RetrySettings()
        self.routing = routing
        self._sleep = sleep

    async def call(
        self,
        request: CallRequest,
        schema: type[BaseModel] | None = None,
        *,
        timeout: float | None = None,
    ) -> CallResult[Any]:
        """Run ``request`` through admission, retries and fallback.

        Returns the validated result or raises exactly one ``GatewayError``.
        Without ``schema`` the raw response text is returned as ``data``.
        """

        with request_context(task=request.task, request_id=request.request_id):
            await self._admit(request)
            if request.caller_id:
                await self._precheck(request)

            state = _CallState()
            deadline = timeout if timeout is not None else self.settings.call_timeout_seconds
            try:
                async with asyncio.timeout(deadline):
                    return await self._run(request, schema, state)
            except TimeoutError:
                logger.error(
                    "llm_call_timed_out", attempts=state.attempts, deadline_seconds=deadline
                )
                await self.call_logger.record(
                    request,
                    None,
                    "error",
                    f"Call deadline of {deadline}s exceeded",
                    config=state.config,
                )
                raise ProviderUnavailable(
                    f'LLM call for "{request.task}" timed out after {state.attempts} attempts.',
                    task=request.task,
                    attempts=state.attempts,
                ) from None

    async def _admit(self, request: CallRequest) -> None:
        decision = await self.rate_limiter.admit(
            request.rate_limit_identifier,
            strict=uses_strict_window(request.task, request.strict_rate_limit),
        )
        if decision.allowed:
            return
        if decision.backend_unavailable:
            raise RateLimitBackendUnavailable(decision.reason, task=request.task)
        raise RateLimited(
            decision.reason,
            task=request.task,
            retry_after_seconds=decision.retry_after_seconds,
        )

    async def _precheck(self, request: CallRequest) -> None:
        decision = await self.usage_ledger.check_allowed(request.caller_id)
        if decision.allowed:
            return
        if decision.unavailable:
            raise UsageBackendUnavailable(decision.reason, task=request.task)
        raise UsageLimitExceeded(decision.reason, task=request.task)

    async def _run(
        self,
        request: CallRequest,
        schema: type[BaseModel] | None,
        state: _CallState,
    ) -> CallResult[Any]:
        routing = self.routing[request.task]
        budget = self.settings.primary_attempts
        phase = AttemptPhase.PRIMARY
        phase_attempt = 0

        while True:
            phase_attempt += 1
            state.attempts += 1
            state.config = routing.primary if phase is AttemptPhase.PRIMARY else routing.fallback

            outcome = await self._attempt(request, state.config, schema, state, phase)
            if isinstance(outcome, CallResult):
                return outcome

            state.last_error = outcome.message
            logger.warning(
                "llm_attempt_failed",
                phase=phase.value,
                attempt=phase_attempt,
                model=state.config.model,
                error_kind=outcome.kind,
                error=outcome.message,
            )

            action = next_action(phase, phase_attempt, outcome.kind, budget)
            if action is NextAction.ABORT:
                raise outcome.terminal or ProviderUnavailable(
                    outcome.message, task=request.task, attempts=state.attempts
                )
            if action is NextAction.EXHAUSTED:
                raise ProviderUnavailable(
                    f'All LLM providers failed for "{request.task}" after '
                    f"{state.attempts} attempts. Last error: {state.last_error}",
                    task=request.task,
                    attempts=state.attempts,
                )
            if action is NextAction.RETRY:
                await self._sleep(
                    backoff_delay(
                        phase_attempt,
                        base=self.settings.backoff_base_seconds,
                        cap=self.settings.backoff_max_seconds,
                    )
                )
                continue

            logger.warning(
                "llm_falling_back",
                model=routing.fallback.model,
                provider=routing.fallback.provider,
            )
            phase = AttemptPhase.FALLBACK
            phase_attempt = 0

    async def _attempt(
        self,
        request: CallRequest,
        config: ModelConfig,
        schema: type[BaseModel] | None,
        state: _CallState,
        phase: AttemptPhase,
    ) -> CallResult[Any] | _AttemptFailure:
        result = await self.dispatcher.call(config, request.messages, schema is not None)
        if isinstance(result, ProviderFailure):
            await self.call_logger.record(
                request, None, "error", result.describe(), config=config
            )
            kind: ErrorKind = "configuration" if result.is_configuration_error else "provider"
            return _AttemptFailure(kind, result.describe())

        raw: RawProviderResponse = result
        data: Any = raw.content
        if schema is not None:
            try:
                data = extract_and_validate(raw.content, schema)
            except OutputValidationError as exc:
                message = f"Output validation failed: {exc}"
                await self.call_logger.record(request, raw, "error", message)
                return _AttemptFailure("validation", message)

        if request.caller_id:
            decision = await self.usage_ledger.consume(request.caller_id, raw.total_tokens, 1)
            if not decision.allowed:
                await self.call_logger.record(request, raw, "error", decision.reason)
                if decision.unavailable:
                    return _AttemptFailure(
                        "usage_unavailable",
                        decision.reason or "usage backend unavailable",
                        UsageBackendUnavailable(decision.reason, task=request.task),
                    )
                return _AttemptFailure(
                    "quota",
                    decision.reason or "usage limit exceeded",
                    UsageLimitExceeded(decision.reason, task=request.task),
                )

        await self.call_logger.record(request, raw, "success")
        return CallResult(
            data=data,
            meta=CallMeta(
                model=raw.model,
                provider=raw.provider,
                input_tokens=raw.input_tokens,
                output_tokens=raw.output_tokens,
                latency_ms=raw.latency_ms,
                prompt_version=request.prompt_version,
                attempts=state.attempts,
                used_fallback=phase is AttemptPhase.FALLBACK,
            ),
        )


__all__ = ["LLMGateway"]
