from datetime import datetime, timedelta, timezone

import pytest

from aura_gateway.automation import AutomationEngine, MonitoringData, RuleStatus
from aura_gateway.db import get_session_maker, init_db
from aura_gateway.db.stores import SqlPaymentStore, SqlRuleStore
from aura_gateway.payments import PaymentRecord, PaymentStatus

USER = "0xC4504EE5091e093499a0586Ca7525A0F20520747"
T0 = datetime(2026, 3, 1, 10, 15, tzinfo=timezone.utc)


class _Monitor:
    async def snapshot(self, user_id):
        return MonitoringData()


async def _session_maker(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}"
    await init_db(url)
    return get_session_maker(url)


@pytest.mark.asyncio
async def test_rule_store_round_trip(tmp_path):
    store = SqlRuleStore(await _session_maker(tmp_path))
    engine = AutomationEngine(store, _Monitor(), clock=lambda: T0)

    rule = await engine.create_rule(
        {
            "userId": USER,
            "type": "PRICE_TRIGGER",
            "conditions": {"priceTarget": 2500, "priceDirection": "BELOW"},
            "actions": {"maxExecutions": 2},
        }
    )
    loaded = await store.get(rule.id)
    assert loaded == rule
    assert [r.id for r in await store.list(USER)] == [rule.id]
    assert await store.list("0xsomeoneelse") == []

    updated = await engine.update_rule(rule.id, {"status": "PAUSED"})
    assert (await store.get(rule.id)).status == RuleStatus.PAUSED
    assert updated.conditions.price_target == 2500

    assert await store.delete(rule.id) is True
    assert await store.delete(rule.id) is False
    assert await store.get(rule.id) is None


@pytest.mark.asyncio
async def test_rule_store_persists_executions(tmp_path):
    store = SqlRuleStore(await _session_maker(tmp_path))
    engine = AutomationEngine(store, _Monitor(), clock=lambda: T0)
    rule = await engine.create_rule(
        {
            "userId": USER,
            "type": "TIME_BASED",
            "conditions": {"timeInterval": "hourly", "minute": 15},
            "actions": {"maxExecutions": 1},
        }
    )
    assert await engine.check_all_rules(T0) == [rule.id]
    stored = await store.get(rule.id)
    assert stored.status == RuleStatus.COMPLETED
    assert stored.last_executed == T0


@pytest.mark.asyncio
async def test_payment_store_latest_completed(tmp_path):
    store = SqlPaymentStore(await _session_maker(tmp_path))

    def record(payment_id, status, paid_at=None, service="trade_execution"):
        return PaymentRecord(
            payment_id=payment_id,
            service=service,
            amount=0.005,
            user_address=USER,
            status=status,
            created_at=T0,
            expires_at=T0 + timedelta(minutes=30),
            paid_at=paid_at,
        )

    await store.save(record("pay_1", PaymentStatus.COMPLETED, T0))
    await store.save(record("pay_2", PaymentStatus.COMPLETED, T0 + timedelta(hours=1)))
    await store.save(record("pay_3", PaymentStatus.PENDING))
    await store.save(record("pay_4", PaymentStatus.COMPLETED, T0 + timedelta(hours=2), "chat"))

    latest = await store.latest_completed(USER.upper().replace("0X", "0x"), "trade_execution")
    assert latest.payment_id == "pay_2"
    assert latest.paid_at == T0 + timedelta(hours=1)
    assert latest.user_address == USER.lower()

    pending = await store.get("pay_3")
    pending.status = PaymentStatus.COMPLETED
    pending.paid_at = T0 + timedelta(hours=3)
    await store.save(pending)
    assert (await store.latest_completed(USER, "trade_execution")).payment_id == "pay_3"
    assert await store.latest_completed(USER, "portfolio_analysis") is None
