import httpx
from fastapi.testclient import TestClient

from aura_gateway.advisor import PortfolioAdvisor
from aura_gateway.api import create_app
from aura_gateway.automation import AutomationEngine, InMemoryRuleStore, MonitoringData
from aura_gateway.payments import X402PaymentManager
from aura_gateway.quotes import QuoteEngine
from aura_gateway.services import Services
from aura_gateway.strategy_executor import StrategyExecutor
from aura_gateway.swaps import SwapExecutor
from aura_gateway.tokens import TokenResolver
from aura_gateway.trading import AuraTrader, Rebalancer
from aura_gateway.wallet_validation import WalletValidator

USER = "0xC4504EE5091e093499a0586Ca7525A0F20520747"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"

BALANCES = {
    "address": USER,
    "portfolio": [
        {
            "network": {"name": "Ethereum", "chainId": "1"},
            "tokens": [
                {"address": WETH, "symbol": "ETH", "balance": 1, "balanceUSD": 3000},
                {"address": USDC, "symbol": "USDC", "balance": 1000, "balanceUSD": 1000},
            ],
        }
    ],
}
STRATEGIES = {
    "strategies": [
        {
            "llm": {"provider": "openai"},
            "response": [
                {
                    "name": "Stake ETH",
                    "risk": "low",
                    "actions": [{"operations": ["stake"], "platforms": [{"name": "Lido"}], "apy": "3-4%"}],
                }
            ],
        }
    ]
}


class _Aura:
    async def get_balances(self, address, timeout=None):
        return BALANCES

    async def get_strategies(self, address):
        return STRATEGIES

    async def trade_quote(self, from_token, to_token, amount, slippage):
        return {"id": "q1", "estimatedOutput": "0.3", "priceImpact": 0.1, "route": []}

    async def trade_execute(self, payload):
        return {"hash": "0xabc"}

    async def aclose(self):
        pass


class _Adapter:
    tokens = {
        USDC.lower(): {"decimals": 6, "symbol": "USDC", "name": "USD Coin"},
        WETH.lower(): {"decimals": 18, "symbol": "WETH", "name": "Wrapped Ether"},
    }

    async def call_contract_function(self, address, abi, method, *args):
        return self.tokens[address.lower()][method]

    async def gas_price(self):
        return 10 * 10**9

    async def get_balance(self, address):
        return 0

    async def get_nonce(self, address):
        return 0


class _Pool:
    def get(self, chain_id):
        return _Adapter()


class _Monitor:
    async def snapshot(self, user_id):
        return MonitoringData()


def _backend(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/create-payment":
        return httpx.Response(200, json={"paymentId": "pay_1", "paymentUrl": "https://x402.test/pay/pay_1"})
    if request.url.path.startswith("/verify-payment/"):
        return httpx.Response(200, json={"status": "pending"})
    return httpx.Response(200, json={"hasValidPayment": False})


def _client(skip_payment=False, backend=_backend):
    aura = _Aura()
    pool = _Pool()
    resolver = TokenResolver(pool)
    quotes = QuoteEngine(resolver)
    payments = X402PaymentManager(
        httpx.AsyncClient(transport=httpx.MockTransport(backend)),
        endpoint="https://x402.test",
        skip_payment=skip_payment,
    )
    executor = StrategyExecutor(aura, pool, step_delay=0)
    services = Services(
        aura=aura,
        web3_pool=pool,
        resolver=resolver,
        quotes=quotes,
        swaps=SwapExecutor(pool, quotes),
        payments=payments,
        strategy_executor=executor,
        automation=AutomationEngine(InMemoryRuleStore(), _Monitor(), executor),
        advisor=PortfolioAdvisor(aura, None),
        wallet_validator=WalletValidator(pool, aura),
        trader=AuraTrader(aura),
        rebalancer=Rebalancer(aura, trade_delay=0),
        automation_enabled=False,
    )
    return TestClient(create_app(services))


def test_health():
    with _client() as client:
        assert client.get("/health").json() == {"status": "ok"}


def test_asset_and_strategies():
    with _client() as client:
        resp = client.get("/api/asset", params={"address": USER})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["totalPortfolioValue"] == 4000
        assert body["rawData"] == BALANCES

        resp = client.get("/api/strategies", params={"address": USER})
        data = resp.json()["data"]
        assert data["strategies"][0]["name"] == "Stake ETH"
        assert data["analysis"]["platforms"] == ["Lido"]

        assert client.get("/api/asset").status_code == 400


def test_missing_fields_list_required_parameters():
    with _client() as client:
        resp = client.post("/api/trade", json={"address": USER})
        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "error": "Missing required parameters",
            "details": {"required": ["address", "fromToken", "toToken", "amount"]},
        }


def test_trade_and_insufficient_balance():
    with _client() as client:
        body = {"address": USER, "fromToken": "USDC", "toToken": "ETH", "amount": "100"}
        resp = client.post("/api/trade", json=body)
        assert resp.status_code == 200
        assert resp.json()["transaction"] == {"hash": "0xabc"}

        resp = client.post("/api/trade", json={**body, "amount": "5000"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Insufficient balance"


def test_rebalance_rejects_bad_allocations():
    with _client() as client:
        resp = client.post(
            "/api/rebalance", json={"address": USER, "targetAllocations": {"ETH": 80}}
        )
        assert resp.status_code == 400
        assert resp.json()["details"]["currentSum"] == 80


def test_swap_quote_requires_payment():
    with _client() as client:
        resp = client.post(
            "/api/swap/quote",
            json={"walletAddress": USER, "tokenIn": USDC, "tokenOut": WETH, "amountIn": "1"},
        )
        assert resp.status_code == 402
        body = resp.json()
        assert body["success"] is False
        assert body["service"] == "trade_execution"
        assert body["payment"]["paymentId"] == "pay_1"



def test_portfolio_analysis_requires_payment():
    with _client() as client:
        resp = client.get("/api/asset-with-payment", params={"address": USER})
        assert resp.status_code == 402
        body = resp.json()
        assert body["service"] == "portfolio_analysis"
        assert body["amount"] == 0.001
        assert body["currency"] == "USDC"
        assert body["payment"]["paymentId"] == "pay_1"


def test_portfolio_analysis_after_payment():
    def paid_backend(request):
        if request.url.path == "/user-payments":
            return httpx.Response(200, json={"hasValidPayment": True})
        return _backend(request)

    with _client(backend=paid_backend) as client:
        resp = client.get("/api/asset-with-payment", params={"address": USER})
        assert resp.status_code == 200
        body = resp.json()
        assert body["data"]["totalPortfolioValue"] == 4000
        assert body["payment"]["status"] == "verified"
        assert body["payment"]["service"] == "portfolio_analysis"

        assert client.get("/api/asset-with-payment").status_code == 400


def test_swap_quote_when_payments_skipped():
    with _client(skip_payment=True) as client:
        resp = client.post(
            "/api/swap/quote",
            json={"walletAddress": USER, "tokenIn": USDC, "tokenOut": WETH, "amountIn": "1"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["quote"]["outputAmount"] == "1.0"
        assert body["quote"]["auraEnhancements"]["priceImpactWarning"] is None
        assert body["metadata"]["provider"] == "uniswap-v3"

        resp = client.post(
            "/api/swap/quote",
            json={"walletAddress": USER, "tokenIn": "nope", "tokenOut": WETH, "amountIn": "1"},
        )
        assert resp.status_code == 400
        assert "uniswapUrl" in resp.json()["fallback"]


def test_swap_execute_requires_amount_out_min():
    with _client(skip_payment=True) as client:
        resp = client.post(
            "/api/swap/execute",
            json={"walletAddress": USER, "tokenIn": USDC, "tokenOut": WETH, "amountIn": "1"},
        )
        assert resp.status_code == 400
        assert "amountOutMin" in resp.json()["details"]["required"]


def test_swap_execute_without_wallet_key_returns_recovery():
    with _client(skip_payment=True) as client:
        resp = client.post(
            "/api/swap/execute",
            json={
                "walletAddress": USER,
                "tokenIn": USDC,
                "tokenOut": WETH,
                "amountIn": "1",
                "amountOutMin": "0.9",
            },
        )
        assert resp.status_code >= 400
        body = resp.json()
        assert body["error"] == "Swap execution failed"
        assert body["recovery"]["checkSteps"]


def test_supported_tokens():
    with _client() as client:
        body = client.get("/api/swap/tokens", params={"chain": "base"}).json()
        assert body["chain"] == "base"
        assert body["metadata"]["totalTokens"] == len(body["tokens"])
        assert "stablecoins" in body["categories"]


def test_payment_create_and_verify():
    with _client() as client:
        resp = client.post(
            "/api/payment/create", json={"walletAddress": USER, "service": "portfolio_analysis"}
        )
        assert resp.status_code == 200
        payment = resp.json()["payment"]
        assert payment["paymentId"] == "pay_1"
        assert "Payment ID: pay_1" in payment["instructions"]

        resp = client.post("/api/payment/verify", json={"paymentId": "pay_1"})
        verification = resp.json()["verification"]
        assert verification["status"] == "PENDING"
        assert verification["isPaid"] is False

        assert client.post("/api/payment/verify", json={}).status_code == 400


def test_execute_strategy():
    with _client() as client:
        resp = client.post("/api/execute-strategy", json={"address": USER})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Address and strategyId are required"

        resp = client.post("/api/execute-strategy", json={"address": USER, "strategyId": "0"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["mode"] == "simulation"
        assert body["steps"][0]["status"] == "SIMULATED"


def test_automation_crud():
    with _client() as client:
        rule = {
            "action": "create",
            "userId": USER,
            "type": "PRICE_TRIGGER",
            "conditions": {"priceTarget": 2500, "priceDirection": "BELOW"},
            "actions": {"notifyUser": True},
        }
        resp = client.post("/api/automation", json=rule)
        assert resp.status_code == 201
        rule_id = resp.json()["rule"]["id"]

        assert client.post("/api/automation", json={**rule, "action": "other"}).status_code == 400

        rules = client.get("/api/automation", params={"userId": USER}).json()["rules"]
        assert [r["id"] for r in rules] == [rule_id]
        assert client.get("/api/automation").status_code == 400

        status = client.get("/api/automation", params={"action": "status"}).json()
        assert status == {"isMonitoring": False, "totalRules": 1, "activeRules": 1}

        resp = client.put("/api/automation", json={"ruleId": rule_id, "status": "PAUSED"})
        assert resp.json()["rule"]["status"] == "PAUSED"

        assert client.delete("/api/automation", params={"ruleId": rule_id}).json() == {"success": True}
        resp = client.delete("/api/automation", params={"ruleId": rule_id})
        assert resp.status_code == 404


def test_chat_without_openai_key_is_bad_gateway():
    with _client() as client:
        resp = client.post("/api/chat", json={"address": USER})
        assert resp.status_code == 502
        assert "OPENAI_API_KEY" in resp.json()["error"]


def test_validate_wallet():
    with _client() as client:
        resp = client.post("/api/validate-wallet", json={"address": "invalid-address"})
        assert resp.json()["isValid"] is False
        resp = client.post("/api/validate-wallet", json={"address": USER})
        body = resp.json()
        assert body["isValid"] is True
        assert body["hasBalance"] is False
