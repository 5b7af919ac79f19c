"""Wires the gateway's components from environment configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .adapters.aura_client import AuraClient
from .adapters.openai_adapter import OpenAIAdapter
from .adapters.web3_adapter import Web3Pool
from .advisor import PortfolioAdvisor
from .automation import AutomationEngine, InMemoryRuleStore, PortfolioMonitor
from .config import (
    get_automation_config,
    get_openai_api_key,
    get_openai_model,
    get_payment_config,
    get_pricing_path,
    get_trading_config,
    get_wallet_private_key,
    use_database_store,
)
from .core import logger
from .payments import InMemoryPaymentStore, PricingPolicy, X402PaymentManager
from .quotes import QuoteEngine
from .strategy_executor import StrategyExecutor
from .swaps import SwapExecutor
from .tokens import TokenResolver
from .trading import AuraTrader, Rebalancer
from .wallet_validation import WalletValidator


@dataclass
class Services:
    aura: AuraClient
    web3_pool: Web3Pool
    resolver: TokenResolver
    quotes: QuoteEngine
    swaps: SwapExecutor
    payments: X402PaymentManager
    strategy_executor: StrategyExecutor
    automation: AutomationEngine
    advisor: PortfolioAdvisor
    wallet_validator: WalletValidator
    trader: AuraTrader
    rebalancer: Rebalancer
    trading_config: Dict[str, Any] = field(default_factory=get_trading_config)
    automation_enabled: bool = True
    private_key: Optional[str] = None

    async def aclose(self) -> None:
        await self.automation.stop()
        await self.aura.aclose()
        await self.payments.aclose()


def build_services(database_url: Optional[str] = None) -> Services:
    aura = AuraClient()
    web3_pool = Web3Pool()
    trading_config = get_trading_config()
    resolver = TokenResolver(web3_pool)
    quotes = QuoteEngine(resolver, max_slippage=trading_config["max_slippage"])

    if use_database_store():
        from .db.engine import get_session_maker
        from .db.stores import SqlPaymentStore, SqlRuleStore

        session_maker = get_session_maker(database_url)
        rule_store = SqlRuleStore(session_maker)
        payment_store = SqlPaymentStore(session_maker)
    else:
        rule_store = InMemoryRuleStore()
        payment_store = InMemoryPaymentStore()

    payment_config = get_payment_config()
    pricing = PricingPolicy.load(
        get_pricing_path(), validity_hours=payment_config["validity_hours"]
    )
    payments = X402PaymentManager(
        endpoint=payment_config["endpoint"],
        recipient=payment_config["recipient"],
        pricing=pricing,
        store=payment_store,
        skip_payment=payment_config["skip_payment"],
    )

    strategy_executor = StrategyExecutor(aura, web3_pool)
    automation_config = get_automation_config()
    automation = AutomationEngine(
        rule_store,
        PortfolioMonitor(aura),
        strategy_executor,
        interval_seconds=automation_config["monitoring_interval"],
    )

    api_key = get_openai_api_key()
    llm = OpenAIAdapter(api_key, get_openai_model()) if api_key else None
    if llm is None:
        logger.warning("OPENAI_API_KEY not set, chat advisor disabled")

    return Services(
        aura=aura,
        web3_pool=web3_pool,
        resolver=resolver,
        quotes=quotes,
        swaps=SwapExecutor(web3_pool, quotes),
        payments=payments,
        strategy_executor=strategy_executor,
        automation=automation,
        advisor=PortfolioAdvisor(aura, llm),
        wallet_validator=WalletValidator(web3_pool, aura),
        trader=AuraTrader(aura),
        rebalancer=Rebalancer(aura),
        trading_config=trading_config,
        automation_enabled=automation_config["enabled"],
        private_key=get_wallet_private_key(),
    )
