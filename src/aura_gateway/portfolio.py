"""AURA portfolio and strategy formatting."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .schemas import CamelModel

STABLECOINS = ("USDT", "USDC", "DAI", "BUSD", "TUSD", "USDP")
TOP_HOLDINGS_LIMIT = 5
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")


class _AuraModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AuraNetworkInfo(_AuraModel):
    name: str = "unknown"
    chain_id: Optional[str] = Field(default=None, alias="chainId")
    platform_id: Optional[str] = Field(default=None, alias="platformId")
    explorer_url: Optional[str] = Field(default=None, alias="explorerUrl")


class AuraPortfolioToken(_AuraModel):
    address: str = ""
    symbol: str
    network: Optional[str] = None
    balance: float = 0.0
    balance_usd: float = Field(default=0.0, alias="balanceUSD")


class AuraNetworkPortfolio(_AuraModel):
    network: AuraNetworkInfo = Field(default_factory=AuraNetworkInfo)
    tokens: List[AuraPortfolioToken] = Field(default_factory=list)


class AuraPortfolioResponse(_AuraModel):
    address: Optional[str] = None
    portfolio: List[AuraNetworkPortfolio] = Field(default_factory=list)
    cached: bool = False
    version: Optional[str] = None


class AuraToken(CamelModel):
    symbol: str
    balance: float
    usd_value: str
    token: str
    decimals: int = 0
    price: float


class NetworkAssets(CamelModel):
    network: str
    total_value: float = 0.0
    tokens: List[AuraToken] = Field(default_factory=list)


class TopHolding(CamelModel):
    token: str
    symbol: str
    total_value: float
    percentage: float


class LargestHolding(CamelModel):
    symbol: str = ""
    percentage: float = 0.0


class RiskAnalysis(CamelModel):
    diversification_score: float = 0.0
    stablecoin_percentage: float = 0.0
    largest_holding: LargestHolding = Field(default_factory=LargestHolding)


class FormattedAssetResponse(CamelModel):
    total_portfolio_value: float = 0.0
    networks: List[NetworkAssets] = Field(default_factory=list)
    top_holdings: List[TopHolding] = Field(default_factory=list)
    risk_analysis: RiskAnalysis = Field(default_factory=RiskAnalysis)


def _pct(part: float, total: float) -> float:
    return (part / total) * 100 if total > 0 else 0.0


def format_portfolio(raw: Dict[str, Any] | AuraPortfolioResponse) -> FormattedAssetResponse:
    """Aggregate AURA balances per network, per symbol and into risk metrics."""
    data = raw if isinstance(raw, AuraPortfolioResponse) else AuraPortfolioResponse.model_validate(raw)
    result = FormattedAssetResponse()
    totals: Dict[str, Dict[str, Any]] = {}
    stable_value = 0.0

    for entry in data.portfolio:
        assets = NetworkAssets(network=entry.network.name)
        for token in entry.tokens:
            value = token.balance_usd
            assets.total_value += value
            assets.tokens.append(
                AuraToken(
                    symbol=token.symbol,
                    balance=token.balance,
                    usd_value=str(value),
                    token=token.address,
                    price=value / token.balance if token.balance else 0.0,
                )
            )
            bucket = totals.setdefault(
                token.symbol, {"token": token.address, "symbol": token.symbol, "total_value": 0.0}
            )
            bucket["total_value"] += value
            if token.symbol in STABLECOINS:
                stable_value += value
            result.total_portfolio_value += value
        result.networks.append(assets)

    total = result.total_portfolio_value
    ranked = sorted(totals.values(), key=lambda h: h["total_value"], reverse=True)
    result.top_holdings = [
        TopHolding(percentage=_pct(h["total_value"], total), **h)
        for h in ranked[:TOP_HOLDINGS_LIMIT]
    ]

    top = result.top_holdings[0] if result.top_holdings else None
    concentration_penalty = 30 if top is not None and top.percentage > 50 else 0
    result.risk_analysis = RiskAnalysis(
        diversification_score=max(0, min(100, len(totals) * 10 - concentration_penalty)),
        stablecoin_percentage=_pct(stable_value, total),
        largest_holding=LargestHolding(
            symbol=top.symbol if top else "",
            percentage=top.percentage if top else 0.0,
        ),
    )
    return result


def token_prices(portfolio: FormattedAssetResponse) -> Dict[str, float]:
    """Volume-weighted USD price per symbol across networks."""
    usd: Dict[str, float] = {}
    units: Dict[str, float] = {}
    for network in portfolio.networks:
        for token in network.tokens:
            usd[token.symbol] = usd.get(token.symbol, 0.0) + float(token.usd_value)
            units[token.symbol] = units.get(token.symbol, 0.0) + token.balance
    return {sym: usd[sym] / units[sym] for sym in usd if units[sym] > 0}


def parse_apy(value: Any) -> Optional[float]:
    """Upper bound of an APY label such as ``"5-8%"``."""
    if isinstance(value, (int, float)):
        return float(value)
    numbers = _NUMBER_RE.findall(str(value or ""))
    if not numbers:
        return None
    return max(float(n) for n in numbers)


class FormattedAction(CamelModel):
    tokens: str = ""
    description: str = ""
    platforms: List[Dict[str, str]] = Field(default_factory=list)
    networks: List[str] = Field(default_factory=list)
    operations: List[str] = Field(default_factory=list)
    apy: str = ""
    estimated_apy: Optional[float] = None


class FormattedStrategy(CamelModel):
    name: str
    risk: str = "medium"
    provider: Optional[str] = None
    actions: List[FormattedAction] = Field(default_factory=list)


class StrategyAnalysis(CamelModel):
    total_strategies: int
    risk_distribution: Dict[str, int]
    platforms: List[str]
    networks: List[str]


def format_strategies(raw: Dict[str, Any]) -> List[FormattedStrategy]:
    """Flatten AURA's per-LLM strategy responses into one list."""
    strategies: List[FormattedStrategy] = []
    for block in raw.get("strategies") or []:
        if block.get("error"):
            continue
        provider = (block.get("llm") or {}).get("provider")
        for item in block.get("response") or []:
            actions = [
                FormattedAction(
                    tokens=str(a.get("tokens", "")),
                    description=str(a.get("description", "")),
                    platforms=[
                        {"name": p.get("name", ""), "url": p.get("url", "")}
                        for p in a.get("platforms") or []
                    ],
                    networks=list(a.get("networks") or []),
                    operations=list(a.get("operations") or []),
                    apy=str(a.get("apy", "")),
                    estimated_apy=parse_apy(a.get("apy")),
                )
                for a in item.get("actions") or []
            ]
            strategies.append(
                FormattedStrategy(
                    name=item.get("name", "Unnamed strategy"),
                    risk=str(item.get("risk", "medium")).lower(),
                    provider=provider,
                    actions=actions,
                )
            )
    return strategies


def analyze_strategies(strategies: List[FormattedStrategy]) -> StrategyAnalysis:
    distribution = {"low": 0, "medium": 0, "high": 0}
    platforms: List[str] = []
    networks: List[str] = []
    for strategy in strategies:
        if strategy.risk in distribution:
            distribution[strategy.risk] += 1
        for action in strategy.actions:
            for platform in action.platforms:
                if platform["name"] and platform["name"] not in platforms:
                    platforms.append(platform["name"])
            for network in action.networks:
                if network not in networks:
                    networks.append(network)
    return StrategyAnalysis(
        total_strategies=len(strategies),
        risk_distribution=distribution,
        platforms=platforms,
        networks=networks,
    )


def yield_opportunities(strategies: List[FormattedStrategy]) -> List[Dict[str, Any]]:
    """Best advertised APY per strategy, skipping strategies without one."""
    opportunities = []
    for strategy in strategies:
        apys = [a.estimated_apy for a in strategy.actions if a.estimated_apy is not None]
        if apys:
            opportunities.append({"name": strategy.name, "apy": max(apys)})
    return opportunities
