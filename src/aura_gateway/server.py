import asyncio
import json
from typing import Any

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from . import InvalidRequestError
from .automation import RuleType
from .core import logger
from .network_config import chain_id_for_name, get_supported_chains
from .portfolio import analyze_strategies, format_portfolio, format_strategies
from .services import Services, build_services
from .tokens import categorize_tokens, fallback_tokens, popular_tokens

load_dotenv()

server = FastMCP("aura-gateway")

_services: Services | None = None

SWAP_SERVICE = "trade_execution"

# automation_type -> (rule type, price direction for price triggers)
_AUTOMATION_TYPES = {
    "stop_loss": (RuleType.PRICE_TRIGGER, "BELOW"),
    "take_profit": (RuleType.PRICE_TRIGGER, "ABOVE"),
    "rebalance": (RuleType.PORTFOLIO_REBALANCE, None),
    "yield_optimization": (RuleType.YIELD_OPTIMIZATION, None),
    "time_based": (RuleType.TIME_BASED, None),
}


def _svc() -> Services:
    if _services is None:
        raise RuntimeError("Server not initialized")
    return _services


def _dump(title: str, payload: Any) -> str:
    return f"{title}\n\n{json.dumps(payload, indent=2, default=str)}"


async def _payment_gate(wallet_address: str, title: str) -> str | None:
    """Payment instructions when the wallet has no valid swap payment."""
    svc = _svc()
    gate = await svc.payments.require_payment(wallet_address, SWAP_SERVICE)
    if gate.authorized:
        return None
    payment = gate.payment_response
    lines = [
        f"Payment Required for {title}",
        "",
        f"Amount: {svc.payments.pricing.price_for(SWAP_SERVICE)} {svc.payments.pricing.currency}",
    ]
    if payment is not None and payment.success:
        lines += [
            f"Payment ID: {payment.payment_id}",
            f"Payment URL: {payment.payment_url}",
            f"Expires: {payment.expires_at}",
        ]
    lines += ["", "Complete the payment, verify it, then call this tool again."]
    return "\n".join(lines)


@server.tool()
async def analyze_portfolio(wallet_address: str) -> str:
    """Aggregate the wallet's AURA balances into holdings and risk metrics."""
    raw = await _svc().aura.get_balances(wallet_address)
    return _dump("Portfolio Analysis Complete", format_portfolio(raw).to_wire())


@server.tool()
async def get_strategies(wallet_address: str) -> str:
    """AURA strategy recommendations with a risk and platform summary."""
    strategies = format_strategies(await _svc().aura.get_strategies(wallet_address))
    return _dump(
        "AI Strategy Recommendations",
        {
            "strategies": [s.to_wire() for s in strategies],
            "analysis": analyze_strategies(strategies).to_wire(),
        },
    )


@server.tool()
async def execute_trade(
    wallet_address: str, from_token: str, to_token: str, amount: str, slippage: float = 0.5
) -> str:
    result = await _svc().trader.execute_trade(wallet_address, from_token, to_token, amount, slippage)
    return _dump("Trade Executed Successfully", result)


@server.tool()
async def setup_automation(
    wallet_address: str, automation_type: str, parameters: dict | None = None
) -> str:
    """Create an automation rule: stop_loss, take_profit, rebalance, yield_optimization or time_based."""
    key = automation_type.lower()
    if key not in _AUTOMATION_TYPES:
        raise InvalidRequestError(
            f"Unknown automation type: {automation_type}",
            details={"validTypes": sorted(_AUTOMATION_TYPES)},
        )
    rule_type, direction = _AUTOMATION_TYPES[key]
    conditions = dict(parameters or {})
    if direction is not None:
        conditions.setdefault("priceDirection", direction)
    rule = await _svc().automation.create_rule(
        {
            "userId": wallet_address,
            "type": rule_type.value,
            "conditions": conditions,
            "actions": {"executeStrategy": True, "notifyUser": True},
        }
    )
    return _dump("Automation Setup Complete", rule.to_wire())


@server.tool()
async def create_payment(wallet_address: str, service: str) -> str:
    payment = await _svc().payments.create_payment(service, wallet_address)
    return _dump("Payment Created" if payment.success else "Payment Failed", payment.to_wire())


@server.tool()
async def verify_payment(payment_id: str) -> str:
    verification = await _svc().payments.verify_payment(payment_id)
    title = "Payment Verified" if verification.is_paid else "Payment Pending"
    return _dump(title, {"paymentId": payment_id, **verification.to_wire()})


@server.tool()
async def get_swap_quote(
    wallet_address: str,
    token_in: str,
    token_out: str,
    amount_in: str,
    slippage: float = 0.5,
    chain: str = "ethereum",
) -> str:
    """Uniswap V3 quote for a swap. Requires a trade_execution payment."""
    instructions = await _payment_gate(wallet_address, "Swap Quote")
    if instructions:
        return instructions
    quote = await _svc().quotes.get_swap_quote(
        chain_id_for_name(chain), token_in, token_out, amount_in=amount_in, slippage=slippage
    )
    return _dump("Swap Quote", quote.to_wire())


@server.tool()
async def execute_swap(
    wallet_address: str,
    token_in: str,
    token_out: str,
    amount_in: str,
    amount_out_min: str,
    slippage: float = 0.5,
    deadline: int = 1800,
    chain: str = "ethereum",
) -> str:
    """Sign and submit a Uniswap V3 swap. Requires a trade_execution payment."""
    instructions = await _payment_gate(wallet_address, "Swap Execution")
    if instructions:
        return instructions
    svc = _svc()
    result = await svc.swaps.execute_swap(
        chain_id_for_name(chain),
        token_in,
        token_out,
        amount_in=amount_in,
        slippage=slippage,
        deadline_minutes=max(1, deadline // 60),
        private_key=svc.private_key,
        amount_out_min=amount_out_min,
    )
    return _dump("Swap Executed", result.to_wire())


@server.tool()
async def get_supported_tokens(chain: str = "ethereum") -> str:
    tokens = fallback_tokens(chain)
    return _dump(
        "Supported Tokens",
        {
            "chain": chain,
            "tokens": tokens,
            "popularTokens": popular_tokens(chain),
            "categories": categorize_tokens(tokens),
            "supportedChains": get_supported_chains(),
        },
    )


async def main() -> None:
    global _services

    _services = build_services()
    logger.info("AURA gateway MCP server starting")
    try:
        await server.run_stdio_async()
    finally:
        await _services.aclose()


def cli() -> None:
    asyncio.run(main())
