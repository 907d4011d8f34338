from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from originx.orchestrator.clock import CLOCK, Clock
from originx.telemetry.logging import get_logger

INSUFFICIENT_CREDITS = "Insufficient credits. Please upgrade your plan."


@dataclass(slots=True)
class DeductionResult:
    success: bool
    credits: int = 0
    remaining_credits: int = 0
    reason: str | None = None


@dataclass(slots=True)
class UsageRecord:
    ts: datetime
    user_id: str
    capability_id: str
    cost: float
    credits: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Account:
    plan: str
    monthly_credits: int
    used_credits: int = 0
    bonus_credits: int = 0

    @property
    def remaining(self) -> int:
        return self.monthly_credits + self.bonus_credits - self.used_credits


class CreditLedger:
    """In-memory credit accounting; one credit is ``1 / credits_per_usd`` dollars of vendor cost."""

    def __init__(
        self,
        credits_per_usd: int = 100,
        plan_credits: Mapping[str, int] | None = None,
        default_plan: str = "free",
        clock: Clock = CLOCK,
    ) -> None:
        if credits_per_usd <= 0:
            raise ValueError("credits_per_usd must be positive")
        self._credits_per_usd = credits_per_usd
        self._plan_credits = dict(plan_credits or {"free": 6_000, "basic": 500_000, "pro": 1_000_000})
        if default_plan not in self._plan_credits:
            raise ValueError(f"Unknown plan '{default_plan}'")
        self._default_plan = default_plan
        self._clock = clock
        self._accounts: dict[str, Account] = {}
        self._usage: defaultdict[str, list[UsageRecord]] = defaultdict(list)
        self._logger = get_logger(__name__)

    @property
    def credits_per_usd(self) -> int:
        return self._credits_per_usd

    def credits_for(self, cost: float) -> int:
        if cost <= 0:
            return 0
        # round first so 0.1 * 100 does not ceil to 11
        return math.ceil(round(cost * self._credits_per_usd, 6))

    def account(self, user_id: str) -> Account:
        account = self._accounts.get(user_id)
        if account is None:
            account = Account(plan=self._default_plan, monthly_credits=self._plan_credits[self._default_plan])
            self._accounts[user_id] = account
        return account

    def set_plan(self, user_id: str, plan: str) -> Account:
        if plan not in self._plan_credits:
            raise ValueError(f"Unknown plan '{plan}'")
        account = self.account(user_id)
        account.plan = plan
        account.monthly_credits = self._plan_credits[plan]
        self._logger.info("billing.plan.changed", user_id=user_id, plan=plan)
        return account

    def grant_credits(self, user_id: str, credits: int) -> int:
        account = self.account(user_id)
        account.bonus_credits += max(credits, 0)
        return account.remaining

    def balance(self, user_id: str) -> int:
        return self.account(user_id).remaining

    def can_afford(self, user_id: str, cost: float) -> bool:
        return self.credits_for(cost) <= self.balance(user_id)

    async def deduct_credits(
        self,
        user_id: str,
        capability_id: str,
        cost: float,
        metadata: Mapping[str, Any] | None = None,
    ) -> DeductionResult:
        credits = self.credits_for(cost)
        account = self.account(user_id)
        if credits > account.remaining:
            self._logger.warning(
                "billing.deduct.insufficient",
                user_id=user_id,
                capability=capability_id,
                credits=credits,
                remaining=account.remaining,
            )
            return DeductionResult(
                success=False,
                credits=credits,
                remaining_credits=account.remaining,
                reason=INSUFFICIENT_CREDITS,
            )
        account.used_credits += credits
        self._usage[user_id].append(
            UsageRecord(
                ts=self._clock.now(),
                user_id=user_id,
                capability_id=capability_id,
                cost=cost,
                credits=credits,
                metadata=dict(metadata or {}),
            )
        )
        self._logger.info(
            "billing.deduct.ok",
            user_id=user_id,
            capability=capability_id,
            credits=credits,
            remaining=account.remaining,
        )
        return DeductionResult(success=True, credits=credits, remaining_credits=account.remaining)

    def usage(self, user_id: str) -> list[UsageRecord]:
        return list(self._usage.get(user_id, ()))

    def usage_summary(self, user_id: str) -> dict[str, Any]:
        records = self._usage.get(user_id, [])
        by_capability: dict[str, dict[str, float]] = {}
        by_type: dict[str, dict[str, float]] = {}
        for record in records:
            for key, bucket in (
                (record.capability_id, by_capability),
                (str(record.metadata.get("capability_type", "unknown")), by_type),
            ):
                entry = bucket.setdefault(key, {"count": 0, "cost": 0.0, "credits": 0})
                entry["count"] += 1
                entry["cost"] += record.cost
                entry["credits"] += record.credits
        account = self.account(user_id)
        return {
            "plan": account.plan,
            "monthly_credits": account.monthly_credits,
            "used_credits": account.used_credits,
            "remaining_credits": account.remaining,
            "total_cost": sum(record.cost for record in records),
            "by_capability": by_capability,
            "by_type": by_type,
        }


__all__ = ["Account", "CreditLedger", "DeductionResult", "INSUFFICIENT_CREDITS", "UsageRecord"]
