"""Trades and rebalancing routed through the AURA trade API."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from . import GatewayError, InsufficientBalanceError, InvalidRequestError
from .config import REBALANCE_TRADE_DELAY_SECONDS
from .core import logger
from .portfolio import AuraPortfolioResponse
from .schemas import CamelModel

ALLOCATION_TOLERANCE = 0.01
REBALANCE_THRESHOLD_PERCENT = 0.5
SETTLEMENT_TOKEN = "USDC"


class Holding(CamelModel):
    symbol: str
    balance: float = 0.0
    value: float = 0.0


def holdings_by_symbol(raw: Dict[str, Any]) -> Dict[str, Holding]:
    """Sum balances and USD values per symbol across every network."""
    data = AuraPortfolioResponse.model_validate(raw)
    holdings: Dict[str, Holding] = {}
    for entry in data.portfolio:
        for token in entry.tokens:
            holding = holdings.setdefault(token.symbol, Holding(symbol=token.symbol))
            holding.balance += token.balance
            holding.value += token.balance_usd
    return holdings


class AuraTrader:
    """Balance check, quote and execution against AURA's trade endpoints."""

    def __init__(self, aura_client: Any):
        self.aura = aura_client
        self.logger = logger.bind(component="AuraTrader")

    async def execute_trade(
        self,
        address: str,
        from_token: str,
        to_token: str,
        amount: str,
        slippage: float = 0.5,
        automation_rules: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        try:
            requested = float(amount)
        except (TypeError, ValueError) as exc:
            raise InvalidRequestError(f"Invalid amount: {amount}") from exc

        holding = holdings_by_symbol(await self.aura.get_balances(address)).get(from_token)
        if holding is None or holding.balance < requested:
            raise InsufficientBalanceError(
                "Insufficient balance",
                details={
                    "token": from_token,
                    "required": amount,
                    "available": holding.balance if holding else 0.0,
                },
            )

        quote = await self.aura.trade_quote(from_token, to_token, amount, slippage)
        if automation_rules:
            self.logger.info("Automation rules attached to trade", count=len(automation_rules))

        transaction = await self.aura.trade_execute(
            {
                "address": address,
                "fromToken": from_token,
                "toToken": to_token,
                "amount": amount,
                "slippage": slippage,
                "quote": quote.get("id"),
            }
        )
        self.logger.info(
            "Trade executed", address=address, from_token=from_token, to_token=to_token
        )
        return {
            "success": True,
            "transaction": transaction,
            "automationStatus": _automation_status(automation_rules),
            "estimatedOutput": quote.get("estimatedOutput"),
            "priceImpact": quote.get("priceImpact"),
            "route": quote.get("route"),
        }


def _automation_status(rules: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    if rules is None:
        return None
    return {
        "rulesSet": len(rules),
        "monitoring": True,
        "triggers": [
            {
                "type": rule.get("type"),
                "status": "ACTIVE",
                "conditions": {
                    "targetPrice": rule.get("targetPrice"),
                    "percentage": rule.get("percentage"),
                    "action": rule.get("action"),
                },
            }
            for rule in rules
        ],
    }


class RebalanceStep(CamelModel):
    action: str
    from_token: str
    to_token: str
    amount: str
    percentage: float
    estimated_output: Optional[Any] = None
    route: Optional[Any] = None
    price_impact: Optional[Any] = None


class Rebalancer:
    """Plans SELL-to-USDC then BUY-from-USDC steps towards target weights."""

    def __init__(self, aura_client: Any, *, trade_delay: float = REBALANCE_TRADE_DELAY_SECONDS):
        self.aura = aura_client
        self.trade_delay = trade_delay
        self.logger = logger.bind(component="Rebalancer")

    @staticmethod
    def validate_allocations(targets: Dict[str, float]) -> float:
        total = sum(float(v) for v in targets.values())
        if abs(total - 100) > ALLOCATION_TOLERANCE:
            raise InvalidRequestError(
                "Target allocations must sum to 100%", details={"currentSum": total}
            )
        return total

    @staticmethod
    def plan_steps(
        holdings: Dict[str, Holding], targets: Dict[str, float]
    ) -> List[RebalanceStep]:
        total_value = sum(h.value for h in holdings.values())
        current = {s: (h.value / total_value) * 100 for s, h in holdings.items()}
        sells: List[RebalanceStep] = []
        buys: List[RebalanceStep] = []

        for symbol, target_pct in targets.items():
            difference = float(target_pct) - current.get(symbol, 0.0)
            trade_value = abs(difference) / 100 * total_value
            if difference > REBALANCE_THRESHOLD_PERCENT:
                buys.append(
                    RebalanceStep(
                        action="BUY",
                        from_token=SETTLEMENT_TOKEN,
                        to_token=symbol,
                        amount=str(trade_value),
                        percentage=trade_value / total_value * 100,
                    )
                )
            elif difference < -REBALANCE_THRESHOLD_PERCENT:
                holding = holdings.get(symbol)
                if holding is None or holding.value <= 0:
                    continue
                sells.append(
                    RebalanceStep(
                        action="SELL",
                        from_token=symbol,
                        to_token=SETTLEMENT_TOKEN,
                        amount=str(trade_value / holding.value * holding.balance),
                        percentage=trade_value / total_value * 100,
                    )
                )
        return sells + buys

    async def _quote_step(self, step: RebalanceStep, slippage: float) -> RebalanceStep:
        try:
            quote = await self.aura.trade_quote(
                step.from_token, step.to_token, step.amount, slippage
            )
        except GatewayError as exc:
            self.logger.warning(
                "Rebalance quote failed",
                from_token=step.from_token,
                to_token=step.to_token,
                error=exc.message,
            )
            return step
        return step.model_copy(
            update={
                "estimated_output": quote.get("estimatedOutput"),
                "route": quote.get("route"),
                "price_impact": quote.get("priceImpact"),
            }
        )

    async def _execute_steps(
        self, address: str, steps: List[RebalanceStep], slippage: float
    ) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        for index, step in enumerate(steps):
            if index:
                await asyncio.sleep(self.trade_delay)
            try:
                result = await self.aura.trade_execute(
                    {
                        "address": address,
                        "fromToken": step.from_token,
                        "toToken": step.to_token,
                        "amount": step.amount,
                        "slippage": slippage,
                    }
                )
                results.append({"step": step.to_wire(), "result": result, "status": "SUCCESS"})
            except GatewayError as exc:
                self.logger.warning(
                    "Rebalance trade failed",
                    from_token=step.from_token,
                    to_token=step.to_token,
                    error=exc.message,
                )
                results.append({"step": step.to_wire(), "error": exc.message, "status": "FAILED"})
        return results

    async def rebalance(
        self,
        address: str,
        target_allocations: Dict[str, float],
        slippage: float = 1.0,
        execute_immediately: bool = False,
    ) -> Dict[str, Any]:
        self.validate_allocations(target_allocations)
        holdings = holdings_by_symbol(await self.aura.get_balances(address))
        total_value = sum(h.value for h in holdings.values())
        if not holdings or total_value <= 0:
            raise InvalidRequestError("No portfolio found for address")

        current = {s: (h.value / total_value) * 100 for s, h in holdings.items()}
        planned = self.plan_steps(holdings, target_allocations)
        steps = list(await asyncio.gather(*(self._quote_step(s, slippage) for s in planned)))

        execution_results = None
        if execute_immediately:
            execution_results = await self._execute_steps(address, steps, slippage)

        self.logger.info(
            "Rebalance planned",
            address=address,
            steps=len(steps),
            executed=execute_immediately,
        )
        return {
            "success": True,
            "rebalanceAnalysis": {
                "currentAllocations": current,
                "targetAllocations": target_allocations,
                "totalPortfolioValue": total_value,
                "rebalanceRequired": bool(steps),
            },
            "rebalanceSteps": [s.to_wire() for s in steps],
            "manualInstructions": [
                {
                    "stepNumber": index + 1,
                    "instruction": f"{s.action} {s.amount} {s.from_token} for {s.to_token}",
                    "platform": "1inch" if SETTLEMENT_TOKEN in (s.from_token, s.to_token) else "Uniswap",
                    "slippageRecommendation": f"{slippage}%",
                    "estimatedOutput": s.estimated_output,
                    "priceImpact": s.price_impact,
                }
                for index, s in enumerate(steps)
            ],
            "executionResults": execution_results,
            "summary": {
                "totalSteps": len(steps),
                "executed": execute_immediately,
                "successfulTrades": sum(
                    1 for r in execution_results or [] if r["status"] == "SUCCESS"
                ),
                "failedTrades": sum(
                    1 for r in execution_results or [] if r["status"] == "FAILED"
                ),
            },
        }
