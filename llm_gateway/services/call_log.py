"""Best-effort audit trail of every provider attempt."""

from __future__ import annotations

import asyncio

from llm_gateway.db.models.core import AiLog
from llm_gateway.db.session import Database
from llm_gateway.domain.models import CallRequest, CallStatus, ModelConfig, RawProviderResponse
from llm_gateway.logging import logger

ERROR_MESSAGE_LIMIT = 2000


class CallLogger:
    """Persists ``ai_logs`` rows. Never raises: a failed write is logged and dropped."""

    def __init__(
        self,
        database: Database,
        *,
        error_message_limit: int = ERROR_MESSAGE_LIMIT,
        persist_timeout_seconds: float = 5.0,
    ) -> None:
        self.database = database
        self.error_message_limit = error_message_limit
        self.persist_timeout_seconds = persist_timeout_seconds

    async def record(
        self,
        request: CallRequest,
        raw: RawProviderResponse | None,
        status: CallStatus,
        error_message: str | None = None,
        *,
        config: ModelConfig | None = None,
    ) -> None:
        entry = self._build_entry(request, raw, status, error_message, config)
        try:
            async with asyncio.timeout(self.persist_timeout_seconds):
                async with self.database.session() as session:
                    session.add(entry)
                    await session.commit()
        except Exception:
            logger.exception(
                "call_log_persist_failed",
                task=request.task,
                request_id=request.request_id,
                status=status,
                model=entry.model,
            )

    def _build_entry(
        self,
        request: CallRequest,
        raw: RawProviderResponse | None,
        status: CallStatus,
        error_message: str | None,
        config: ModelConfig | None,
    ) -> AiLog:
        if raw is not None:
            model, provider = raw.model, raw.provider
        elif config is not None:
            model, provider = config.model, config.provider
        else:
            model, provider = "unknown", None
        return AiLog(
            user_id=request.caller_id,
            request_id=request.request_id,
            task_type=request.task,
            model=model,
            provider=provider,
            prompt_version=request.prompt_version,
            input_tokens=raw.input_tokens if raw else 0,
            output_tokens=raw.output_tokens if raw else 0,
            latency_ms=raw.latency_ms if raw else 0,
            status=status,
            error_message=self._truncate(error_message),
        )

    def _truncate(self, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if len(value) <= self.error_message_limit:
            return value
        return f"{value[: self.error_message_limit - 15].rstrip()}...[truncated]"


__all__ = ["CallLogger", "ERROR_MESSAGE_LIMIT"]
