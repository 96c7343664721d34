"""Per-user daily quota tracking.

``consume`` is the authoritative path: it runs after a provider call succeeded
and charges the real token counts. The charge is a single conditional UPDATE that
only matches while the post-increment counters stay within the plan limits, so
concurrent consumers for the same (user, day) can never jointly over-admit.
A read followed by a separate write would.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import select, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from llm_gateway.db.models.core import UsageRecord
from llm_gateway.db.session import Database
from llm_gateway.domain.models import PlanLimits, UsageDecision, UsageSnapshot
from llm_gateway.logging import logger
from llm_gateway.services.subscriptions import SubscriptionService
from llm_gateway.utils.datetime import utc_today

UNAVAILABLE_REASON = "Usage enforcement backend unavailable."

_usage = UsageRecord.__table__


def _insert_day_row(dialect_name: str, user_id: str, day: date):
    values = {"user_id": user_id, "date": day, "ai_messages": 0, "tokens_used": 0}
    if dialect_name == "postgresql":
        return (
            postgresql.insert(_usage)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["user_id", "date"])
        )
    if dialect_name == "sqlite":
        return (
            sqlite.insert(_usage)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["user_id", "date"])
        )
    if dialect_name in {"mysql", "mariadb"}:
        return mysql.insert(_usage).values(**values).prefix_with("IGNORE")
    raise NotImplementedError(f"No insert-if-absent statement for dialect {dialect_name!r}")


class UsageLedger:
    def __init__(self, database: Database) -> None:
        self.database = database

    async def check_allowed(self, user_id: str) -> UsageDecision:
        """Advisory pre-check against today's counters."""

        try:
            async with self.database.session() as session:
                plan, limits = await SubscriptionService(session).get_limits(user_id)
                if limits.is_unlimited:
                    return UsageDecision(allowed=True, plan=plan, limits=limits)
                current = await self._snapshot(session, user_id, utc_today())
        except SQLAlchemyError as exc:
            logger.error("usage_backend_unavailable", op="check", user_id=user_id, error=str(exc))
            return UsageDecision(allowed=False, reason=UNAVAILABLE_REASON, unavailable=True)

        reason = None
        if current.ai_messages >= limits.messages_per_day:
            reason = (
                f"Daily AI message limit reached ({limits.messages_per_day}/{plan} plan). "
                "Upgrade for more."
            )
        elif current.tokens_used >= limits.tokens_per_day:
            reason = (
                f"Daily token limit reached ({limits.tokens_per_day}/{plan} plan). "
                "Upgrade for more."
            )
        return UsageDecision(
            allowed=reason is None,
            reason=reason,
            plan=plan,
            current=current,
            limits=limits,
        )

    async def consume(
        self, user_id: str, delta_tokens: int, delta_messages: int = 1
    ) -> UsageDecision:
        delta_tokens = max(delta_tokens, 0)
        delta_messages = max(delta_messages, 0)
        try:
            async with self.database.session() as session:
                plan, limits = await SubscriptionService(session).get_limits(user_id)
                applied = await self._conditional_increment(
                    session, user_id, utc_today(), limits, delta_tokens, delta_messages
                )
                await session.commit()
        except (SQLAlchemyError, NotImplementedError) as exc:
            logger.error("usage_backend_unavailable", op="consume", user_id=user_id, error=str(exc))
            return UsageDecision(allowed=False, reason=UNAVAILABLE_REASON, unavailable=True)

        if applied:
            return UsageDecision(allowed=True, plan=plan, limits=limits)
        logger.info(
            "usage_consume_rejected",
            user_id=user_id,
            plan=plan,
            delta_tokens=delta_tokens,
            delta_messages=delta_messages,
        )
        return UsageDecision(
            allowed=False,
            reason=f"Daily usage limit exceeded ({plan} plan).",
            plan=plan,
            limits=limits,
        )

    async def _conditional_increment(
        self,
        session: AsyncSession,
        user_id: str,
        day: date,
        limits: PlanLimits,
        delta_tokens: int,
        delta_messages: int,
    ) -> bool:
        dialect_name = session.get_bind().dialect.name
        await session.execute(_insert_day_row(dialect_name, user_id, day))

        stmt = (
            update(_usage)
            .where(_usage.c.user_id == user_id, _usage.c.date == day)
            .values(
                ai_messages=_usage.c.ai_messages + delta_messages,
                tokens_used=_usage.c.tokens_used + delta_tokens,
            )
        )
        # Unlimited plans still record usage, they just have no bound.
        if not limits.is_unlimited:
            stmt = stmt.where(
                _usage.c.ai_messages + delta_messages <= limits.messages_per_day,
                _usage.c.tokens_used + delta_tokens <= limits.tokens_per_day,
            )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def _snapshot(self, session: AsyncSession, user_id: str, day: date) -> UsageSnapshot:
        stmt = select(_usage.c.ai_messages, _usage.c.tokens_used).where(
            _usage.c.user_id == user_id, _usage.c.date == day
        )
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            return UsageSnapshot()
        return UsageSnapshot(ai_messages=row.ai_messages, tokens_used=row.tokens_used)


__all__ = ["UNAVAILABLE_REASON", "UsageLedger"]
