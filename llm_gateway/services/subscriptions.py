"""Subscription plan lookup for quota enforcement."""

from __future__ import annotations

from typing import get_args

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from llm_gateway.db.models.core import Subscription
from llm_gateway.domain.models import Plan, PlanLimits
from llm_gateway.domain.routing import DEFAULT_PLAN, PLAN_LIMITS
from llm_gateway.logging import logger

ACTIVE_STATUS = "active"
KNOWN_PLANS: frozenset[str] = frozenset(get_args(Plan))


class SubscriptionService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_active_subscription(self, user_id: str) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status == ACTIVE_STATUS)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_plan(self, user_id: str) -> Plan:
        """Plan of the newest active subscription, ``free`` when there is none."""

        subscription = await self.get_active_subscription(user_id)
        if subscription is None:
            return DEFAULT_PLAN
        if subscription.plan not in KNOWN_PLANS:
            logger.warning(
                "subscription_unknown_plan",
                user_id=user_id,
                plan=subscription.plan,
                fallback=DEFAULT_PLAN,
            )
            return DEFAULT_PLAN
        return subscription.plan  # type: ignore[return-value]

    async def get_limits(self, user_id: str) -> tuple[Plan, PlanLimits]:
        plan = await self.get_plan(user_id)
        return plan, PLAN_LIMITS[plan]


__all__ = ["SubscriptionService"]
