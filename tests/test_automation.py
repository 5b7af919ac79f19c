from datetime import datetime, timedelta, timezone

import pytest

from aura_gateway import InvalidRequestError, RuleNotFoundError
from aura_gateway.automation import (
    AutomationEngine,
    InMemoryRuleStore,
    MonitoringData,
    RuleStatus,
)

USER = "0xC4504EE5091e093499a0586Ca7525A0F20520747"
T0 = datetime(2026, 3, 1, 10, 15, tzinfo=timezone.utc)


class _Monitor:
    def __init__(self, data=None):
        self.data = data or MonitoringData()
        self.calls = 0

    async def snapshot(self, user_id):
        self.calls += 1
        return self.data


class _Runner:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def execute_strategy(self, address, strategy_id, **kwargs):
        self.calls.append((address, strategy_id))
        if self.fail:
            raise RuntimeError("node down")
        return None


def _engine(monitor=None, runner=None):
    notified = []

    async def notifier(rule):
        notified.append(rule.id)

    engine = AutomationEngine(
        InMemoryRuleStore(),
        monitor or _Monitor(),
        runner,
        notifier=notifier,
        clock=lambda: T0,
    )
    return engine, notified


def _hourly(minute=15, **actions):
    return {
        "userId": USER,
        "type": "TIME_BASED",
        "conditions": {"timeInterval": "hourly", "minute": minute},
        "actions": {"notifyUser": True, **actions},
    }


@pytest.mark.asyncio
async def test_create_rule_assigns_id_and_defaults():
    engine, _ = _engine()
    rule = await engine.create_rule(_hourly())
    assert rule.id.startswith("rule_")
    assert rule.status == RuleStatus.ACTIVE
    assert rule.execution_count == 0
    assert rule.actions.cooldown_period == 60
    wire = rule.to_wire()
    assert wire["userId"] == USER
    assert wire["conditions"]["timeInterval"] == "hourly"


@pytest.mark.asyncio
async def test_invalid_rule_is_rejected():
    engine, _ = _engine()
    with pytest.raises(InvalidRequestError):
        await engine.create_rule(
            {"userId": USER, "type": "PRICE_TRIGGER", "conditions": {"priceTarget": -1}}
        )
    with pytest.raises(InvalidRequestError):
        await engine.create_rule({"userId": USER, "type": "NOPE", "conditions": {}})


@pytest.mark.asyncio
async def test_max_executions_completes_rule():
    engine, notified = _engine()
    rule = await engine.create_rule(_hourly(maxExecutions=1, cooldownPeriod=0))

    assert await engine.check_all_rules(T0) == [rule.id]
    stored = await engine.get_rule(rule.id)
    assert stored.execution_count == 1
    assert stored.status == RuleStatus.COMPLETED
    assert stored.last_executed == T0

    assert await engine.check_all_rules(T0 + timedelta(hours=1)) == []
    assert (await engine.get_rule(rule.id)).execution_count == 1
    assert notified == [rule.id]


@pytest.mark.asyncio
async def test_cooldown_blocks_repeat_execution():
    engine, _ = _engine()
    rule = await engine.create_rule(_hourly(cooldownPeriod=90))

    assert await engine.check_rule(rule.id, T0)
    assert not await engine.check_rule(rule.id, T0 + timedelta(hours=1))
    assert await engine.check_rule(rule.id, T0 + timedelta(hours=2))
    assert (await engine.get_rule(rule.id)).execution_count == 2


@pytest.mark.asyncio
async def test_time_rules_match_minute_and_hour():
    engine, _ = _engine()
    hourly = await engine.create_rule(_hourly(minute=30))
    daily = await engine.create_rule(
        {
            "userId": USER,
            "type": "TIME_BASED",
            "conditions": {"timeInterval": "daily", "hour": 9, "minute": 0},
        }
    )
    assert not await engine.check_rule(hourly.id, T0)
    assert await engine.check_rule(hourly.id, T0.replace(minute=30))
    assert not await engine.check_rule(daily.id, T0.replace(minute=0))
    assert await engine.check_rule(daily.id, T0.replace(hour=9, minute=0))


@pytest.mark.asyncio
async def test_price_trigger_uses_monitoring_snapshot():
    monitor = _Monitor(MonitoringData(prices={"ETH": 2900.0, "USDC": 1.0}))
    runner = _Runner()
    engine, _ = _engine(monitor, runner)
    below = await engine.create_rule(
        {
            "userId": USER,
            "type": "PRICE_TRIGGER",
            "conditions": {"priceTarget": 3000, "priceDirection": "BELOW", "token": "eth"},
            "actions": {"executeStrategy": True},
        }
    )
    above = await engine.create_rule(
        {
            "userId": USER,
            "type": "PRICE_TRIGGER",
            "conditions": {"priceTarget": 3000, "priceDirection": "ABOVE", "token": "ETH"},
        }
    )
    executed = await engine.check_all_rules(T0)
    assert executed == [below.id]
    assert above.id not in executed
    assert runner.calls == [(USER, "0")]
    # one snapshot per user per tick
    assert monitor.calls == 1


@pytest.mark.asyncio
async def test_rebalance_and_yield_triggers():
    monitor = _Monitor(
        MonitoringData(volatility=6.0, yield_opportunities=[{"name": "Stake", "apy": 4.0}])
    )
    engine, _ = _engine(monitor)
    rebalance = await engine.create_rule(
        {"userId": USER, "type": "PORTFOLIO_REBALANCE", "conditions": {"portfolioThreshold": 5}}
    )
    yield_rule = await engine.create_rule(
        {"userId": USER, "type": "YIELD_OPTIMIZATION", "conditions": {"yieldThreshold": 8}}
    )
    assert await engine.check_all_rules(T0) == [rebalance.id]
    assert (await engine.get_rule(yield_rule.id)).execution_count == 0


@pytest.mark.asyncio
async def test_failed_strategy_still_counts_execution():
    engine, _ = _engine(runner=_Runner(fail=True))
    rule = await engine.create_rule(_hourly(executeStrategy=True))
    assert await engine.check_rule(rule.id, T0)
    assert (await engine.get_rule(rule.id)).execution_count == 1


@pytest.mark.asyncio
async def test_update_and_delete():
    engine, _ = _engine()
    rule = await engine.create_rule(_hourly())

    updated = await engine.update_rule(
        rule.id, {"id": "other", "status": "PAUSED", "actions": {"cooldownPeriod": 5}}
    )
    assert updated.id == rule.id
    assert updated.status == RuleStatus.PAUSED
    assert updated.actions.cooldown_period == 5
    assert updated.actions.notify_user is True
    assert await engine.check_all_rules(T0) == []

    await engine.delete_rule(rule.id)
    assert await engine.get_rules(USER) == []
    with pytest.raises(RuleNotFoundError):
        await engine.delete_rule(rule.id)
    with pytest.raises(RuleNotFoundError):
        await engine.update_rule(rule.id, {"status": "ACTIVE"})


@pytest.mark.asyncio
async def test_start_stop_and_status():
    engine, _ = _engine()
    engine.interval_seconds = 3600
    await engine.create_rule(_hourly())
    engine.start()
    status = await engine.get_status()
    assert status == {"isMonitoring": True, "totalRules": 1, "activeRules": 1}
    await engine.stop()
    assert not engine.is_monitoring
