"""Composition root and smoke probe.

``python -m llm_gateway.main request.json`` performs one gateway call with the
configured providers and prints the camelCase result.
"""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass
from pathlib import Path

from redis.asyncio import Redis

from llm_gateway.config import GatewaySettings, get_settings
from llm_gateway.db.session import Database
from llm_gateway.domain.models import CallRequest
from llm_gateway.logging import configure_logging, logger
from llm_gateway.orchestrator import LLMGateway
from llm_gateway.providers.dispatcher import ProviderDispatcher
from llm_gateway.providers.factory import build_dispatcher
from llm_gateway.schemas.outputs import TASK_OUTPUT_SCHEMAS
from llm_gateway.services.call_log import CallLogger
from llm_gateway.services.exceptions import GatewayError
from llm_gateway.services.rate_limit import RateLimiter, RedisSlidingWindow
from llm_gateway.services.usage import UsageLedger


@dataclass(slots=True)
class GatewayRuntime:
    """A wired gateway plus the long-lived resources it holds."""

    gateway: LLMGateway
    database: Database
    dispatcher: ProviderDispatcher
    redis: Redis | None = None

    async def aclose(self) -> None:
        await self.dispatcher.aclose()
        if self.redis is not None:
            await self.redis.aclose()
        await self.database.dispose()


def build_gateway(settings: GatewaySettings) -> GatewayRuntime:
    database = Database(settings=settings)

    redis_client: Redis | None = None
    store = None
    unavailable_reason = None
    if settings.redis.url:
        redis_client = Redis.from_url(
            settings.redis.url,
            socket_timeout=settings.redis.socket_timeout_seconds,
            socket_connect_timeout=settings.redis.socket_timeout_seconds,
        )
        store = RedisSlidingWindow(redis_client)
    else:
        unavailable_reason = "GATEWAY_REDIS__URL is not configured."

    rate_limiter = RateLimiter(
        settings.rate_limit,
        store,
        fail_closed=settings.rate_limit_fails_closed,
        unavailable_reason=unavailable_reason,
    )
    call_logger = CallLogger(
        database,
        error_message_limit=settings.call_log.error_message_limit,
        persist_timeout_seconds=settings.call_log.persist_timeout_seconds,
    )
    dispatcher = build_dispatcher(settings.providers)
    gateway = LLMGateway(
        dispatcher,
        rate_limiter,
        UsageLedger(database),
        call_logger,
        settings.retry,
    )
    return GatewayRuntime(
        gateway=gateway, database=database, dispatcher=dispatcher, redis=redis_client
    )


async def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    configure_logging(settings.log_level)
    args = sys.argv[1:] if argv is None else argv

    if settings.environment == "prod" and not settings.enable_smoke_probe:
        logger.error("smoke_probe_disabled", environment=settings.environment)
        return 2
    if len(args) != 1:
        print("usage: python -m llm_gateway.main <request.json>", file=sys.stderr)
        return 2

    request = CallRequest.model_validate_json(Path(args[0]).read_text(encoding="utf-8"))
    runtime = build_gateway(settings)
    try:
        await runtime.database.create_all()
        logger.info("smoke_probe_starting", task=request.task, environment=settings.environment)
        try:
            result = await runtime.gateway.call(request, TASK_OUTPUT_SCHEMAS.get(request.task))
        except GatewayError as exc:
            logger.error("smoke_probe_failed", task=request.task, code=exc.code, error=str(exc))
            print(json.dumps(exc.to_payload()))
            return 1
        print(result.model_dump_json(by_alias=True, indent=2))
        return 0
    finally:
        await runtime.aclose()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
