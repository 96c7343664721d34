"""Gateway orchestration with fake providers, limiter, ledger and call log."""

from __future__ import annotations

import asyncio
import json

import pytest

from llm_gateway.config import ProviderSettings, RetrySettings
from llm_gateway.domain.models import (
    CallRequest,
    Message,
    RateLimitDecision,
    RawProviderResponse,
    UsageDecision,
)
from llm_gateway.orchestrator import LLMGateway
from llm_gateway.providers.base import ProviderFailure
from llm_gateway.providers.factory import build_dispatcher
from llm_gateway.schemas.outputs import DiagnoseResult, QuizOutput
from llm_gateway.services.exceptions import (
    ProviderUnavailable,
    RateLimitBackendUnavailable,
    RateLimited,
    UsageBackendUnavailable,
    UsageLimitExceeded,
)

PRIMARY = "gpt-4.1-mini"
FALLBACK = "claude-sonnet-4-20250514"
VALID = '{"cefrLevel": "B2", "explanation": "Comfortable with conditionals."}'


def _raw(content: str = VALID, model: str = PRIMARY, tokens: tuple[int, int] = (100, 50)):
    provider = "anthropic" if model.startswith("claude") else "openai"
    return RawProviderResponse(
        content=content,
        model=model,
        provider=provider,
        input_tokens=tokens[0],
        output_tokens=tokens[1],
        latency_ms=120,
    )


def _failure(model: str = PRIMARY, kind: str = "http") -> ProviderFailure:
    return ProviderFailure(
        kind=kind, provider="openai", model=model, message="boom", status_code=502
    )


class FakeDispatcher:
    """Replays scripted outcomes per model; the last outcome repeats."""

    def __init__(self, script: dict[str, list]) -> None:
        self.script = {model: list(outcomes) for model, outcomes in script.items()}
        self.calls: list[tuple[str, bool]] = []

    async def call(self, config, messages, json_mode):
        self.calls.append((config.model, json_mode))
        outcomes = self.script[config.model]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if callable(outcome):
            return await outcome()
        return outcome


class FakeLimiter:
    def __init__(self, decision: RateLimitDecision | None = None) -> None:
        self.decision = decision or RateLimitDecision(allowed=True, remaining=29, reset_ms=60_000)
        self.calls: list[tuple[str, bool]] = []

    async def admit(self, identifier: str, strict: bool = False) -> RateLimitDecision:
        self.calls.append((identifier, strict))
        return self.decision


class FakeLedger:
    def __init__(
        self,
        precheck: UsageDecision | None = None,
        consume: UsageDecision | None = None,
    ) -> None:
        self.precheck = precheck or UsageDecision(allowed=True, plan="free")
        self.consume_decision = consume or UsageDecision(allowed=True, plan="free")
        self.checked: list[str] = []
        self.consumed: list[tuple[str, int, int]] = []

    async def check_allowed(self, user_id: str) -> UsageDecision:
        self.checked.append(user_id)
        return self.precheck

    async def consume(self, user_id: str, delta_tokens: int, delta_messages: int = 1):
        self.consumed.append((user_id, delta_tokens, delta_messages))
        return self.consume_decision


class FakeCallLogger:
    def __init__(self) -> None:
        self.rows: list[dict] = []

    async def record(self, request, raw, status, error_message=None, *, config=None) -> None:
        self.rows.append(
            {
                "status": status,
                "model": raw.model if raw else (config.model if config else None),
                "raw": raw,
                "error": error_message,
            }
        )


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _request(**overrides) -> CallRequest:
    values = {
        "task": "level_assessment",
        "caller_id": "user-1",
        "request_id": "req-1",
        "prompt_version": "diagnose-v3",
        "messages": (Message(role="user", content="Here are my answers."),),
    }
    values.update(overrides)
    return CallRequest(**values)


def _gateway(dispatcher, *, limiter=None, ledger=None, call_logger=None, sleep=None, **retry):
    return LLMGateway(
        dispatcher,
        limiter or FakeLimiter(),
        ledger or FakeLedger(),
        call_logger or FakeCallLogger(),
        RetrySettings(**retry),
        sleep=sleep or SleepRecorder(),
    )


@pytest.mark.asyncio
async def test_exhausts_primary_budget_then_fallback_once():
    dispatcher = FakeDispatcher({PRIMARY: [_failure()], FALLBACK: [_failure(FALLBACK)]})
    call_logger = FakeCallLogger()
    sleep = SleepRecorder()
    gateway = _gateway(dispatcher, call_logger=call_logger, sleep=sleep)

    with pytest.raises(ProviderUnavailable) as exc_info:
        await gateway.call(_request(), DiagnoseResult)

    assert exc_info.value.attempts == 4
    assert exc_info.value.task == "level_assessment"
    assert "level_assessment" in str(exc_info.value)
    assert [model for model, _ in dispatcher.calls] == [PRIMARY] * 3 + [FALLBACK]
    assert [row["status"] for row in call_logger.rows] == ["error"] * 4
    assert [row["model"] for row in call_logger.rows] == [PRIMARY] * 3 + [FALLBACK]
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_fallback_success_sets_flag_and_charges_fallback_tokens():
    dispatcher = FakeDispatcher(
        {PRIMARY: [_failure()], FALLBACK: [_raw(model=FALLBACK, tokens=(300, 80))]}
    )
    ledger = FakeLedger()
    gateway = _gateway(dispatcher, ledger=ledger)

    result = await gateway.call(_request(), DiagnoseResult)

    assert result.meta.used_fallback is True
    assert result.meta.attempts == 4
    assert result.meta.model == FALLBACK
    assert result.meta.provider == "anthropic"
    assert result.data.cefr_level == "B2"
    assert ledger.consumed == [("user-1", 380, 1)]


@pytest.mark.asyncio
async def test_invalid_json_counts_as_failed_attempt_and_retries():
    dispatcher = FakeDispatcher({PRIMARY: [_raw('{"cefrLevel": "B2", '), _raw()]})
    call_logger = FakeCallLogger()
    sleep = SleepRecorder()
    gateway = _gateway(dispatcher, call_logger=call_logger, sleep=sleep)

    result = await gateway.call(_request(), DiagnoseResult)

    assert result.meta.attempts == 2
    assert result.meta.used_fallback is False
    assert sleep.delays == [1.0]
    assert [row["status"] for row in call_logger.rows] == ["error", "success"]
    assert call_logger.rows[0]["error"].startswith("Output validation failed")
    assert call_logger.rows[0]["raw"] is not None


@pytest.mark.asyncio
async def test_schema_mismatch_on_every_primary_attempt_reaches_fallback():
    dispatcher = FakeDispatcher(
        {PRIMARY: [_raw('{"verdict": "fine"}')], FALLBACK: [_raw(model=FALLBACK)]}
    )

    result = await _gateway(dispatcher).call(_request(), DiagnoseResult)

    assert result.meta.used_fallback is True
    assert len(dispatcher.calls) == 4


@pytest.mark.asyncio
async def test_late_quota_loss_discards_result():
    dispatcher = FakeDispatcher({PRIMARY: [_raw()]})
    ledger = FakeLedger(
        consume=UsageDecision(
            allowed=False, reason="Daily usage limit exceeded (free plan).", plan="free"
        )
    )
    call_logger = FakeCallLogger()
    sleep = SleepRecorder()
    gateway = _gateway(dispatcher, ledger=ledger, call_logger=call_logger, sleep=sleep)

    with pytest.raises(UsageLimitExceeded) as exc_info:
        await gateway.call(_request(), DiagnoseResult)

    assert str(exc_info.value) == "Daily usage limit exceeded (free plan)."
    assert exc_info.value.http_status == 403
    assert len(dispatcher.calls) == 1
    assert sleep.delays == []
    assert [row["status"] for row in call_logger.rows] == ["error"]
    assert call_logger.rows[0]["raw"] is not None


@pytest.mark.asyncio
async def test_usage_store_failure_after_call_is_not_retried():
    dispatcher = FakeDispatcher({PRIMARY: [_raw()]})
    ledger = FakeLedger(
        consume=UsageDecision(allowed=False, reason="backend down", unavailable=True)
    )

    with pytest.raises(UsageBackendUnavailable):
        await _gateway(dispatcher, ledger=ledger).call(_request(), DiagnoseResult)

    assert len(dispatcher.calls) == 1


@pytest.mark.asyncio
async def test_configuration_error_uses_full_primary_budget():
    dispatcher = FakeDispatcher(
        {PRIMARY: [_failure(kind="configuration")], FALLBACK: [_raw(model=FALLBACK)]}
    )
    sleep = SleepRecorder()

    result = await _gateway(dispatcher, sleep=sleep).call(_request(), DiagnoseResult)

    assert result.meta.attempts == 4
    assert result.meta.used_fallback is True
    assert [model for model, _ in dispatcher.calls] == [PRIMARY] * 3 + [FALLBACK]
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_missing_credentials_still_make_four_attempts():
    dispatcher = build_dispatcher(ProviderSettings())
    call_logger = FakeCallLogger()
    gateway = _gateway(dispatcher, call_logger=call_logger)

    with pytest.raises(ProviderUnavailable) as exc_info:
        await gateway.call(_request(task="quiz_generation"), QuizOutput)

    assert exc_info.value.attempts == 4
    assert [row["status"] for row in call_logger.rows] == ["error"] * 4
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_rate_limited_request_makes_no_attempts():
    dispatcher = FakeDispatcher({PRIMARY: [_raw()]})
    limiter = FakeLimiter(
        RateLimitDecision(allowed=False, remaining=0, reset_ms=12_000, reason="slow down")
    )
    ledger = FakeLedger()

    with pytest.raises(RateLimited) as exc_info:
        await _gateway(dispatcher, limiter=limiter, ledger=ledger).call(_request())

    assert exc_info.value.retry_after_seconds == 12
    assert exc_info.value.to_payload()["retryAfter"] == 12
    assert dispatcher.calls == []
    assert ledger.checked == []


@pytest.mark.asyncio
async def test_rate_limit_backend_down_is_reported_as_unavailable():
    limiter = FakeLimiter(
        RateLimitDecision(allowed=False, reason="misconfigured", backend_unavailable=True)
    )

    with pytest.raises(RateLimitBackendUnavailable) as exc_info:
        await _gateway(FakeDispatcher({PRIMARY: [_raw()]}), limiter=limiter).call(_request())

    assert exc_info.value.http_status == 503


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("overrides", "identifier", "strict"),
    [
        ({}, "user:user-1", False),
        ({"task": "roadmap_generation"}, "user:user-1", True),
        ({"task": "roadmap_generation", "strict_rate_limit": False}, "user:user-1", False),
        ({"caller_id": None, "client_ip": "10.1.2.3"}, "ip:10.1.2.3", False),
        ({"caller_id": None}, "anon", False),
    ],
)
async def test_rate_limit_identity_and_window(overrides, identifier, strict):
    limiter = FakeLimiter()
    dispatcher = FakeDispatcher({PRIMARY: [_raw()], "gpt-4.1": [_raw(model="gpt-4.1")]})

    await _gateway(dispatcher, limiter=limiter).call(_request(**overrides))

    assert limiter.calls == [(identifier, strict)]


@pytest.mark.asyncio
async def test_usage_precheck_blocks_authenticated_caller():
    dispatcher = FakeDispatcher({PRIMARY: [_raw()]})
    ledger = FakeLedger(
        precheck=UsageDecision(allowed=False, reason="Daily AI message limit reached.")
    )

    with pytest.raises(UsageLimitExceeded):
        await _gateway(dispatcher, ledger=ledger).call(_request())

    assert dispatcher.calls == []


@pytest.mark.asyncio
async def test_usage_precheck_outage_fails_closed():
    ledger = FakeLedger(precheck=UsageDecision(allowed=False, reason="down", unavailable=True))

    with pytest.raises(UsageBackendUnavailable):
        await _gateway(FakeDispatcher({PRIMARY: [_raw()]}), ledger=ledger).call(_request())


@pytest.mark.asyncio
async def test_anonymous_caller_skips_usage_accounting():
    ledger = FakeLedger()
    dispatcher = FakeDispatcher({PRIMARY: [_raw()]})

    result = await _gateway(dispatcher, ledger=ledger).call(_request(caller_id=None), DiagnoseResult)

    assert result.meta.attempts == 1
    assert ledger.checked == []
    assert ledger.consumed == []


@pytest.mark.asyncio
async def test_without_schema_returns_raw_text_and_skips_json_mode():
    dispatcher = FakeDispatcher({PRIMARY: [_raw("Just a friendly sentence.")]})

    result = await _gateway(dispatcher).call(_request())

    assert result.data == "Just a friendly sentence."
    assert dispatcher.calls == [(PRIMARY, False)]


@pytest.mark.asyncio
async def test_result_dumps_camel_case_meta():
    dispatcher = FakeDispatcher({PRIMARY: [_raw()]})

    result = await _gateway(dispatcher).call(_request(), DiagnoseResult)
    payload = json.loads(result.model_dump_json(by_alias=True))

    assert payload["meta"] == {
        "model": PRIMARY,
        "provider": "openai",
        "inputTokens": 100,
        "outputTokens": 50,
        "latencyMs": 120,
        "promptVersion": "diagnose-v3",
        "attempts": 1,
        "usedFallback": False,
    }
    assert payload["data"]["cefrLevel"] == "B2"


@pytest.mark.asyncio
async def test_deadline_bounds_the_whole_call():
    async def hang():
        await asyncio.sleep(10)

    dispatcher = FakeDispatcher({PRIMARY: [hang]})
    call_logger = FakeCallLogger()

    with pytest.raises(ProviderUnavailable) as exc_info:
        await _gateway(dispatcher, call_logger=call_logger).call(
            _request(), DiagnoseResult, timeout=0.05
        )

    assert exc_info.value.attempts == 1
    assert "timed out" in str(exc_info.value)
    assert call_logger.rows[-1]["status"] == "error"
    assert call_logger.rows[-1]["model"] == PRIMARY


@pytest.mark.asyncio
async def test_deadline_cancels_backoff_sleep():
    dispatcher = FakeDispatcher({PRIMARY: [_failure()], FALLBACK: [_raw(model=FALLBACK)]})

    with pytest.raises(ProviderUnavailable):
        await _gateway(dispatcher, sleep=asyncio.sleep, backoff_base_seconds=5.0).call(
            _request(), DiagnoseResult, timeout=0.05
        )

    assert [model for model, _ in dispatcher.calls] == [PRIMARY]
