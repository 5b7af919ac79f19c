"""Rule-based automation: price, schedule, rebalance and yield triggers.

Rules live in an injected store. A background task evaluates every ACTIVE
rule once per tick; the tick itself (``check_all_rules``) takes an explicit
``now`` so schedules can be exercised deterministically.
"""

from __future__ import annotations

import asyncio
import statistics
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Awaitable, Callable, Dict, List, Literal, Optional, Protocol, Union

from pydantic import Field, ValidationError, model_validator

from . import InvalidRequestError, RuleNotFoundError
from .config import DEFAULT_COOLDOWN_MINUTES, MONITORING_INTERVAL_SECONDS
from .core import logger
from .portfolio import format_portfolio, format_strategies, token_prices, yield_opportunities
from .schemas import CamelModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RuleType(str, Enum):
    PRICE_TRIGGER = "PRICE_TRIGGER"
    TIME_BASED = "TIME_BASED"
    PORTFOLIO_REBALANCE = "PORTFOLIO_REBALANCE"
    YIELD_OPTIMIZATION = "YIELD_OPTIMIZATION"


class RuleStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class PriceTriggerConditions(CamelModel):
    kind: Literal["PRICE_TRIGGER"] = "PRICE_TRIGGER"
    price_target: float = Field(gt=0)
    price_direction: Literal["ABOVE", "BELOW"]
    # Restrict to one symbol; any held token counts when unset.
    token: Optional[str] = None


class TimeBasedConditions(CamelModel):
    kind: Literal["TIME_BASED"] = "TIME_BASED"
    time_interval: Literal["hourly", "daily"]
    minute: int = Field(default=0, ge=0, le=59)
    hour: int = Field(default=0, ge=0, le=23)


class RebalanceConditions(CamelModel):
    kind: Literal["PORTFOLIO_REBALANCE"] = "PORTFOLIO_REBALANCE"
    portfolio_threshold: float = Field(gt=0)


class YieldConditions(CamelModel):
    kind: Literal["YIELD_OPTIMIZATION"] = "YIELD_OPTIMIZATION"
    yield_threshold: float = Field(gt=0)


RuleConditions = Annotated[
    Union[PriceTriggerConditions, TimeBasedConditions, RebalanceConditions, YieldConditions],
    Field(discriminator="kind"),
]


class RuleActions(CamelModel):
    execute_strategy: bool = False
    notify_user: bool = False
    max_executions: Optional[int] = Field(default=None, ge=1)
    cooldown_period: int = Field(default=DEFAULT_COOLDOWN_MINUTES, ge=0, description="Minutes.")


class AutomationRule(CamelModel):
    id: str
    user_id: str
    strategy_id: str = "0"
    type: RuleType
    conditions: RuleConditions
    actions: RuleActions = Field(default_factory=RuleActions)
    status: RuleStatus = RuleStatus.ACTIVE
    created_at: datetime
    last_executed: Optional[datetime] = None
    execution_count: int = 0

    @model_validator(mode="before")
    @classmethod
    def _tag_conditions(cls, data: Any) -> Any:
        if isinstance(data, dict):
            conditions = data.get("conditions")
            if isinstance(conditions, dict) and "kind" not in conditions:
                data = {**data, "conditions": {**conditions, "kind": data.get("type")}}
        return data

    @model_validator(mode="after")
    def _conditions_match_type(self) -> "AutomationRule":
        if self.conditions.kind != self.type.value:
            raise ValueError(f"conditions of kind {self.conditions.kind} do not match rule type {self.type.value}")
        return self

    def in_cooldown(self, now: datetime) -> bool:
        if self.last_executed is None:
            return False
        return now < self.last_executed + timedelta(minutes=self.actions.cooldown_period)

    def exhausted(self) -> bool:
        cap = self.actions.max_executions
        return cap is not None and self.execution_count >= cap


class RuleStore(Protocol):
    async def get(self, rule_id: str) -> Optional[AutomationRule]: ...

    async def list(self, user_id: Optional[str] = None) -> List[AutomationRule]: ...

    async def save(self, rule: AutomationRule) -> None: ...

    async def delete(self, rule_id: str) -> bool: ...


class InMemoryRuleStore:
    def __init__(self) -> None:
        self._rules: Dict[str, AutomationRule] = {}

    async def get(self, rule_id: str) -> Optional[AutomationRule]:
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    async def list(self, user_id: Optional[str] = None) -> List[AutomationRule]:
        return [
            r.model_copy(deep=True)
            for r in self._rules.values()
            if user_id is None or r.user_id == user_id
        ]

    async def save(self, rule: AutomationRule) -> None:
        self._rules[rule.id] = rule.model_copy(deep=True)

    async def delete(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None


@dataclass
class MonitoringData:
    portfolio_value: float = 0.0
    prices: Dict[str, float] = field(default_factory=dict)
    price_changes: Dict[str, float] = field(default_factory=dict)
    yield_opportunities: List[Dict[str, Any]] = field(default_factory=list)
    volatility: float = 0.0


class MonitoringSource(Protocol):
    async def snapshot(self, user_id: str) -> MonitoringData: ...


class PortfolioMonitor:
    """Builds monitoring snapshots from AURA balances and strategies.

    Volatility is the population standard deviation of the percentage price
    moves observed since the previous snapshot for the same user.
    """

    def __init__(self, aura_client: Any):
        self.aura = aura_client
        self._last_prices: Dict[str, Dict[str, float]] = {}

    async def snapshot(self, user_id: str) -> MonitoringData:
        portfolio = format_portfolio(await self.aura.get_balances(user_id))
        strategies = format_strategies(await self.aura.get_strategies(user_id))
        prices = token_prices(portfolio)
        previous = self._last_prices.get(user_id, {})
        changes = {
            sym: (price - previous[sym]) / previous[sym] * 100
            for sym, price in prices.items()
            if previous.get(sym)
        }
        self._last_prices[user_id] = prices
        return MonitoringData(
            portfolio_value=portfolio.total_portfolio_value,
            prices=prices,
            price_changes=changes,
            yield_opportunities=yield_opportunities(strategies),
            volatility=statistics.pstdev(list(changes.values())) if changes else 0.0,
        )


class StrategyRunner(Protocol):
    async def execute_strategy(self, address: str, strategy_id: str, **kwargs: Any) -> Any: ...


async def log_notification(rule: AutomationRule) -> None:
    logger.info("Automation rule triggered", rule_id=rule.id, user_id=rule.user_id, type=rule.type.value)


def _new_rule_id(now: datetime) -> str:
    return f"rule_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


_PROTECTED_FIELDS = ("id", "createdAt", "created_at")


class AutomationEngine:
    def __init__(
        self,
        store: RuleStore,
        monitor: MonitoringSource,
        strategy_runner: Optional[StrategyRunner] = None,
        *,
        notifier: Callable[[AutomationRule], Awaitable[None]] = log_notification,
        clock: Callable[[], datetime] = _utcnow,
        interval_seconds: float = MONITORING_INTERVAL_SECONDS,
    ):
        self.store = store
        self.monitor = monitor
        self.strategy_runner = strategy_runner
        self.notifier = notifier
        self.clock = clock
        self.interval_seconds = interval_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._task: Optional[asyncio.Task] = None
        self.logger = logger.bind(component="AutomationEngine")

    def _lock_for(self, rule_id: str) -> asyncio.Lock:
        if rule_id not in self._locks:
            self._locks[rule_id] = asyncio.Lock()
        return self._locks[rule_id]

    # CRUD
    async def create_rule(self, payload: Dict[str, Any]) -> AutomationRule:
        now = self.clock()
        data = {k: v for k, v in payload.items() if k not in ("action",)}
        data.update(
            {"id": _new_rule_id(now), "createdAt": now, "executionCount": 0, "lastExecuted": None}
        )
        data.setdefault("status", RuleStatus.ACTIVE.value)
        rule = self._validate(data)
        await self.store.save(rule)
        self.logger.info("Rule created", rule_id=rule.id, type=rule.type.value)
        return rule

    async def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> AutomationRule:
        async with self._lock_for(rule_id):
            current = await self.store.get(rule_id)
            if current is None:
                raise RuleNotFoundError(f"Rule not found: {rule_id}")
            data = current.model_dump(by_alias=True)
            for key, value in updates.items():
                if key in _PROTECTED_FIELDS:
                    continue
                if key in ("conditions", "actions") and isinstance(value, dict):
                    merged = {**data[key], **value}
                    if key == "conditions" and "type" in updates:
                        merged.pop("kind", None)
                    data[key] = merged
                else:
                    data[key] = value
            rule = self._validate(data)
            await self.store.save(rule)
        self.logger.info("Rule updated", rule_id=rule_id)
        return rule

    async def delete_rule(self, rule_id: str) -> None:
        async with self._lock_for(rule_id):
            if not await self.store.delete(rule_id):
                raise RuleNotFoundError(f"Rule not found: {rule_id}")
        self._locks.pop(rule_id, None)
        self.logger.info("Rule deleted", rule_id=rule_id)

    async def get_rules(self, user_id: str) -> List[AutomationRule]:
        return await self.store.list(user_id)

    async def get_rule(self, rule_id: str) -> AutomationRule:
        rule = await self.store.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule not found: {rule_id}")
        return rule

    @staticmethod
    def _validate(data: Dict[str, Any]) -> AutomationRule:
        try:
            return AutomationRule.model_validate(data)
        except ValidationError as exc:
            raise InvalidRequestError(
                "Invalid automation rule",
                details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc

    # Evaluation
    async def check_all_rules(self, now: Optional[datetime] = None) -> List[str]:
        """Run one tick; returns the ids of rules that executed."""
        now = now or self.clock()
        snapshots: Dict[str, MonitoringData] = {}
        executed: List[str] = []
        rules = [r for r in await self.store.list() if r.status == RuleStatus.ACTIVE]
        self.logger.debug("Checking rules", count=len(rules))
        for rule in rules:
            try:
                if await self.check_rule(rule.id, now, snapshots):
                    executed.append(rule.id)
            except Exception as exc:
                self.logger.error("Rule check failed", rule_id=rule.id, error=str(exc))
        return executed

    async def check_rule(
        self,
        rule_id: str,
        now: datetime,
        snapshots: Optional[Dict[str, MonitoringData]] = None,
    ) -> bool:
        snapshots = snapshots if snapshots is not None else {}
        async with self._lock_for(rule_id):
            rule = await self.store.get(rule_id)
            if rule is None or rule.status != RuleStatus.ACTIVE:
                return False
            if rule.in_cooldown(now):
                return False
            if rule.exhausted():
                rule.status = RuleStatus.COMPLETED
                await self.store.save(rule)
                return False
            data = None
            if rule.type != RuleType.TIME_BASED:
                if rule.user_id not in snapshots:
                    snapshots[rule.user_id] = await self.monitor.snapshot(rule.user_id)
                data = snapshots[rule.user_id]
            if not self.evaluate_conditions(rule, data, now):
                return False
            await self._execute_rule(rule, now)
            return True

    def evaluate_conditions(
        self, rule: AutomationRule, data: Optional[MonitoringData], now: datetime
    ) -> bool:
        cond = rule.conditions
        if isinstance(cond, TimeBasedConditions):
            if cond.time_interval == "hourly":
                return now.minute == cond.minute
            return now.hour == cond.hour and now.minute == cond.minute
        if data is None:
            return False
        if isinstance(cond, PriceTriggerConditions):
            prices = data.prices
            if cond.token:
                prices = {k: v for k, v in prices.items() if k.upper() == cond.token.upper()}
            if cond.price_direction == "ABOVE":
                return any(p > cond.price_target for p in prices.values())
            return any(p < cond.price_target for p in prices.values())
        if isinstance(cond, RebalanceConditions):
            return data.volatility > cond.portfolio_threshold
        if isinstance(cond, YieldConditions):
            return any(o["apy"] > cond.yield_threshold for o in data.yield_opportunities)
        return False

    async def _execute_rule(self, rule: AutomationRule, now: datetime) -> None:
        self.logger.info("Executing rule", rule_id=rule.id)
        if rule.actions.execute_strategy and self.strategy_runner is not None:
            try:
                result = await self.strategy_runner.execute_strategy(
                    rule.user_id, rule.strategy_id, risk_tolerance="medium", auto_execute=True
                )
                self.logger.info("Rule strategy executed", rule_id=rule.id, result=getattr(result, "execution_id", None))
            except Exception as exc:
                self.logger.error("Rule strategy failed", rule_id=rule.id, error=str(exc))
        if rule.actions.notify_user:
            try:
                await self.notifier(rule)
            except Exception as exc:
                self.logger.warning("Rule notification failed", rule_id=rule.id, error=str(exc))

        # Counted whether or not the downstream calls succeeded.
        rule.execution_count += 1
        rule.last_executed = now
        if rule.exhausted():
            rule.status = RuleStatus.COMPLETED
        await self.store.save(rule)

    # Scheduling
    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_monitoring:
            return
        self._task = asyncio.create_task(self._run(), name="automation-monitor")
        self.logger.info("Automation monitoring started", interval=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("Automation monitoring stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.check_all_rules()
            except Exception as exc:
                self.logger.error("Automation tick failed", error=str(exc))

    async def get_status(self) -> Dict[str, Any]:
        rules = await self.store.list()
        return {
            "isMonitoring": self.is_monitoring,
            "totalRules": len(rules),
            "activeRules": sum(1 for r in rules if r.status == RuleStatus.ACTIVE),
        }
