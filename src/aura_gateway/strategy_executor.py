"""Turns an AURA strategy into an execution plan and runs it in simulation mode.

No step is broadcast: every step result is labelled ``SIMULATED`` and carries
the contract call it would make, never a transaction hash.
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional

from pydantic import Field

from . import InvalidRequestError, SafetyCheckError
from .abi import ZERO_ADDRESS
from .config import (
    DEFAULT_MAX_GAS_PRICE_GWEI,
    MAX_PLAN_GAS,
    MAX_PRICE_IMPACT_PERCENT,
    STRATEGY_STEP_DELAY_SECONDS,
)
from .core import logger
from .network_config import DEFAULT_CHAIN_ID, load_chain_config
from .portfolio import (
    FormattedAssetResponse,
    FormattedStrategy,
    format_portfolio,
    format_strategies,
    token_prices,
)
from .quotes import DEFAULT_FEE_TIER
from .schemas import CamelModel
from .tokens import fallback_tokens, parse_units

LIDO_STETH = "0xae7ab96520DE3A18E5e111B5EaAb095312D7fE84"

RISK_ALLOCATION = {"low": 0.05, "medium": 0.15, "high": 0.25}
DEFAULT_ALLOCATION = 0.10

STEP_GAS = {"SWAP": 150_000, "STAKE": 200_000, "PROVIDE_LIQUIDITY": 300_000}
STEP_PRICE_IMPACT = {"SWAP": 0.1, "STAKE": 0.0, "PROVIDE_LIQUIDITY": 0.2}


class StepType(str, Enum):
    SWAP = "SWAP"
    STAKE = "STAKE"
    PROVIDE_LIQUIDITY = "PROVIDE_LIQUIDITY"


class ContractCall(CamelModel):
    contract_address: str
    function_name: str
    parameters: List[Any] = Field(default_factory=list)
    value: Optional[str] = None


class ExecutionStep(CamelModel):
    type: StepType
    from_token: str
    to_token: Optional[str] = None
    amount: str
    platform: str
    estimated_gas: int
    estimated_output: str
    price_impact: float


class StepResult(CamelModel):
    type: StepType
    status: str = "SIMULATED"
    simulated: bool = True
    mode: str = "simulation"
    tx_hash: Optional[str] = None
    platform: str
    gas_used: str
    actual_output: str
    contract_call: Optional[ContractCall] = None


class ExecutionPlan(CamelModel):
    steps: List[ExecutionStep]
    estimated_profit: float
    total_gas_estimate: int


class ExecutionResult(CamelModel):
    success: bool = True
    execution_id: str
    strategy: str
    mode: str = "simulation"
    steps: List[StepResult]
    total_gas_used: int
    estimated_profit: float
    actual_profit: float


def allocation_for(risk_tolerance: Optional[str]) -> float:
    return RISK_ALLOCATION.get((risk_tolerance or "").lower(), DEFAULT_ALLOCATION)


def _token_address(symbol: str) -> str:
    for token in fallback_tokens("ethereum"):
        if token["symbol"] == symbol:
            return token["address"]
    return symbol


class StrategyExecutor:
    def __init__(
        self,
        aura_client: Any,
        web3_pool: Any,
        *,
        chain_id: int = DEFAULT_CHAIN_ID,
        step_delay: float = STRATEGY_STEP_DELAY_SECONDS,
    ):
        self.aura = aura_client
        self.web3_pool = web3_pool
        self.chain_id = chain_id
        self.step_delay = step_delay
        self.logger = logger.bind(component="StrategyExecutor")

    async def execute_strategy(
        self,
        address: str,
        strategy_id: str,
        risk_tolerance: Optional[str] = None,
        max_slippage: Optional[float] = None,
        max_gas_price: Optional[str] = None,
        auto_execute: bool = False,
    ) -> ExecutionResult:
        strategy = await self._load_strategy(address, strategy_id)
        portfolio = format_portfolio(await self.aura.get_balances(address))
        plan = self.create_execution_plan(strategy, portfolio, risk_tolerance)
        await self.perform_safety_checks(plan, max_gas_price, max_slippage)

        results: List[StepResult] = []
        for index, step in enumerate(plan.steps):
            if index:
                await asyncio.sleep(self.step_delay)
            results.append(self._simulate_step(step, address))

        self.logger.info(
            "Strategy simulated",
            address=address,
            strategy=strategy.name,
            steps=len(results),
            auto_execute=auto_execute,
        )
        return ExecutionResult(
            execution_id=f"exec_{int(time.time() * 1000)}",
            strategy=strategy.name,
            steps=results,
            total_gas_used=sum(int(r.gas_used) for r in results),
            estimated_profit=plan.estimated_profit,
            actual_profit=0.0,
        )

    async def _load_strategy(self, address: str, strategy_id: str) -> FormattedStrategy:
        strategies = format_strategies(await self.aura.get_strategies(address))
        if not strategies:
            raise InvalidRequestError(f"No strategies available for {address}")
        try:
            index = int(strategy_id)
        except (TypeError, ValueError):
            return strategies[0]
        if 0 <= index < len(strategies):
            return strategies[index]
        return strategies[0]

    def create_execution_plan(
        self,
        strategy: FormattedStrategy,
        portfolio: FormattedAssetResponse,
        risk_tolerance: Optional[str],
    ) -> ExecutionPlan:
        amount_usd = portfolio.total_portfolio_value * allocation_for(risk_tolerance)
        amount = f"{amount_usd:.2f}"
        prices = token_prices(portfolio)
        eth_price = prices.get("ETH") or prices.get("WETH")
        steps: List[ExecutionStep] = []
        estimated_profit = 0.0

        for action in strategy.actions:
            operations = [op.lower() for op in action.operations]
            platform = action.platforms[0]["name"] if action.platforms else "Uniswap"
            if action.estimated_apy:
                estimated_profit += amount_usd * action.estimated_apy / 100
            if any("swap" in op for op in operations):
                steps.append(
                    ExecutionStep(
                        type=StepType.SWAP,
                        from_token="USDC",
                        to_token="WETH",
                        amount=amount,
                        platform=platform,
                        estimated_gas=STEP_GAS["SWAP"],
                        estimated_output=f"{amount_usd / eth_price:.6f}" if eth_price else "unknown",
                        price_impact=STEP_PRICE_IMPACT["SWAP"],
                    )
                )
            if any("stake" in op for op in operations):
                steps.append(
                    ExecutionStep(
                        type=StepType.STAKE,
                        from_token="ETH",
                        to_token="stETH",
                        amount=f"{amount_usd / eth_price:.6f}" if eth_price else amount,
                        platform="Lido",
                        estimated_gas=STEP_GAS["STAKE"],
                        estimated_output=f"{amount_usd / eth_price:.6f}" if eth_price else "unknown",
                        price_impact=STEP_PRICE_IMPACT["STAKE"],
                    )
                )
            if any("liquidity" in op for op in operations):
                steps.append(
                    ExecutionStep(
                        type=StepType.PROVIDE_LIQUIDITY,
                        from_token="USDC",
                        to_token="WETH",
                        amount=amount,
                        platform="Uniswap",
                        estimated_gas=STEP_GAS["PROVIDE_LIQUIDITY"],
                        estimated_output=amount,
                        price_impact=STEP_PRICE_IMPACT["PROVIDE_LIQUIDITY"],
                    )
                )

        return ExecutionPlan(
            steps=steps,
            estimated_profit=round(estimated_profit, 2),
            total_gas_estimate=sum(s.estimated_gas for s in steps),
        )

    async def perform_safety_checks(
        self,
        plan: ExecutionPlan,
        max_gas_price: Optional[str] = None,
        max_slippage: Optional[float] = None,
    ) -> None:
        raw_ceiling = max_gas_price or DEFAULT_MAX_GAS_PRICE_GWEI
        try:
            ceiling_gwei = Decimal(str(raw_ceiling).strip())
        except InvalidOperation:
            raise InvalidRequestError(f"Invalid maxGasPrice: {raw_ceiling!r}") from None
        if not ceiling_gwei.is_finite() or ceiling_gwei <= 0:
            raise InvalidRequestError(f"Invalid maxGasPrice: {raw_ceiling!r}")
        ceiling_wei = int(ceiling_gwei * 10**9)
        adapter = self.web3_pool.get(self.chain_id)
        gas_price = int(await adapter.gas_price())
        if gas_price > ceiling_wei:
            raise SafetyCheckError(
                "Safety check failed: Gas price too high",
                details={"gasPriceWei": gas_price, "maxGasPriceWei": ceiling_wei},
            )
        if plan.total_gas_estimate > MAX_PLAN_GAS:
            raise SafetyCheckError(
                "Safety check failed: Total gas estimate too high",
                details={"totalGasEstimate": plan.total_gas_estimate, "limit": MAX_PLAN_GAS},
            )
        impact_limit = MAX_PRICE_IMPACT_PERCENT
        if max_slippage is not None:
            impact_limit = min(impact_limit, float(max_slippage))
        risky = [s.type.value for s in plan.steps if s.price_impact > impact_limit]
        if risky:
            raise SafetyCheckError(
                "Safety check failed: Price impact too high on some trades",
                details={"steps": risky, "limit": impact_limit},
            )

    def _simulate_step(self, step: ExecutionStep, address: str) -> StepResult:
        call = None
        deadline = int(time.time()) + 1800
        if step.type == StepType.SWAP:
            router = load_chain_config(self.chain_id).router_address
            call = ContractCall(
                contract_address=router,
                function_name="exactInputSingle",
                parameters=[
                    {
                        "tokenIn": _token_address(step.from_token),
                        "tokenOut": _token_address(step.to_token or "WETH"),
                        "fee": DEFAULT_FEE_TIER,
                        "recipient": address,
                        "deadline": deadline,
                        "amountIn": str(parse_units(step.amount, 6)),
                        "amountOutMinimum": "0",
                        "sqrtPriceLimitX96": "0",
                    }
                ],
            )
        elif step.type == StepType.STAKE and step.estimated_output != "unknown":
            call = ContractCall(
                contract_address=LIDO_STETH,
                function_name="submit",
                parameters=[ZERO_ADDRESS],
                value=str(parse_units(step.amount, 18)),
            )
        return StepResult(
            type=step.type,
            platform=step.platform,
            gas_used=str(step.estimated_gas),
            actual_output=step.estimated_output,
            contract_call=call,
        )
