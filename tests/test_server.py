import json

import pytest

from aura_gateway import InvalidRequestError
from aura_gateway import server
from aura_gateway.automation import AutomationEngine, InMemoryRuleStore, MonitoringData

USER = "0xC4504EE5091e093499a0586Ca7525A0F20520747"


class _Monitor:
    async def snapshot(self, user_id):
        return MonitoringData()


class _Services:
    def __init__(self):
        self.automation = AutomationEngine(InMemoryRuleStore(), _Monitor())


def _payload(text):
    title, _, body = text.partition("\n\n")
    return title, json.loads(body)


@pytest.fixture
def services(monkeypatch):
    svc = _Services()
    monkeypatch.setattr(server, "_services", svc)
    return svc


@pytest.mark.asyncio
async def test_tools_require_initialized_server(monkeypatch):
    monkeypatch.setattr(server, "_services", None)
    with pytest.raises(RuntimeError):
        await server.analyze_portfolio(USER)


@pytest.mark.asyncio
async def test_supported_tokens_tool():
    title, body = _payload(await server.get_supported_tokens("arbitrum"))
    assert title == "Supported Tokens"
    assert body["chain"] == "arbitrum"
    assert "ARB" in body["popularTokens"]
    assert "arbitrum" in [c["slug"] for c in body["supportedChains"]]


@pytest.mark.asyncio
async def test_stop_loss_becomes_price_trigger_below(services):
    title, rule = _payload(
        await server.setup_automation(USER, "stop_loss", {"priceTarget": 2500, "token": "ETH"})
    )
    assert title == "Automation Setup Complete"
    assert rule["type"] == "PRICE_TRIGGER"
    assert rule["conditions"]["priceDirection"] == "BELOW"
    assert rule["actions"]["executeStrategy"] is True
    assert len(await services.automation.get_rules(USER)) == 1


@pytest.mark.asyncio
async def test_time_based_automation(services):
    _, rule = _payload(
        await server.setup_automation(USER, "time_based", {"timeInterval": "daily", "hour": 8})
    )
    assert rule["type"] == "TIME_BASED"
    assert rule["conditions"]["hour"] == 8


@pytest.mark.asyncio
async def test_unknown_automation_type(services):
    with pytest.raises(InvalidRequestError) as err:
        await server.setup_automation(USER, "martingale")
    assert "stop_loss" in err.value.details["validTypes"]
