"""Swap quote construction.

Prices are placeholders: the output amount is the input value re-expressed
in the output token's decimals. Minimum-received and maximum-input bounds are
derived from the slippage buffer in integer base units so no float rounding
leaks into on-chain limits.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import List, Literal, Optional

from pydantic import Field

from . import GatewayError, InvalidRequestError, UpstreamError
from .config import DEFAULT_SLIPPAGE_PERCENT, MAX_SLIPPAGE_PERCENT
from .core import logger
from .network_config import load_chain_config
from .schemas import CamelModel
from .tokens import (
    DEFAULT_SYMBOL,
    Token,
    TokenResolver,
    format_units,
    is_native,
    parse_units,
    rescale_units,
)

DEFAULT_FEE_TIER = 3000
PLACEHOLDER_PRICE = "1.0"
PLACEHOLDER_PRICE_IMPACT = "0.1"
ESTIMATED_SWAP_GAS = "150000"

TradeType = Literal["exactIn", "exactOut"]


class RouteHop(CamelModel):
    token_in: str
    token_out: str
    fee: int = DEFAULT_FEE_TIER


class SwapQuote(CamelModel):
    chain_id: int
    trade_type: TradeType
    price: str
    input_amount: str
    output_amount: str
    minimum_received: str
    maximum_input: str
    route: List[RouteHop]
    estimated_gas: str
    price_impact: str
    slippage: float
    token_in: Token
    token_out: Token
    # Base-unit amounts handed to the executor; not part of the wire format.
    input_raw: int = Field(exclude=True)
    output_raw: int = Field(exclude=True)
    minimum_received_raw: int = Field(exclude=True)
    maximum_input_raw: int = Field(exclude=True)


def slippage_bps(slippage: float | str | None, *, maximum: float = MAX_SLIPPAGE_PERCENT) -> int:
    """Slippage percent (0.5 means 0.5%) to basis points."""
    if slippage is None:
        slippage = DEFAULT_SLIPPAGE_PERCENT
    try:
        value = Decimal(str(slippage))
    except (InvalidOperation, ValueError):
        raise InvalidRequestError(f"Invalid slippage: {slippage!r}") from None
    if not value.is_finite():
        raise InvalidRequestError(f"Invalid slippage: {slippage!r}")
    if value < 0 or value > Decimal(str(maximum)):
        raise InvalidRequestError(
            f"Slippage must be between 0 and {maximum} percent, got {slippage}"
        )
    return int(value * 100)


def apply_slippage(amount: int, bps: int, *, upward: bool = False) -> int:
    if upward:
        return amount * (10_000 + bps) // 10_000
    return amount * (10_000 - bps) // 10_000


class QuoteEngine:
    def __init__(self, resolver: TokenResolver, *, max_slippage: float = MAX_SLIPPAGE_PERCENT):
        self.resolver = resolver
        self.max_slippage = max_slippage
        self.logger = logger.bind(component="QuoteEngine")

    async def get_swap_quote(
        self,
        chain_id: int,
        token_in: str,
        token_out: str,
        amount_in: Optional[str] = None,
        amount_out: Optional[str] = None,
        trade_type: TradeType = "exactIn",
        slippage: float = DEFAULT_SLIPPAGE_PERCENT,
    ) -> SwapQuote:
        try:
            return await self._quote(
                chain_id, token_in, token_out, amount_in, amount_out, trade_type, slippage
            )
        except GatewayError:
            raise
        except Exception as exc:
            self.logger.error("Quote failed", chain_id=chain_id, error=str(exc))
            raise UpstreamError(f"Failed to get price quote: {exc}") from exc

    async def _quote(
        self,
        chain_id: int,
        token_in: str,
        token_out: str,
        amount_in: Optional[str],
        amount_out: Optional[str],
        trade_type: TradeType,
        slippage: float,
    ) -> SwapQuote:
        if trade_type == "exactIn" and not amount_in:
            raise InvalidRequestError("amountIn is required for exactIn trades")
        if trade_type == "exactOut" and not amount_out:
            raise InvalidRequestError("amountOut is required for exactOut trades")
        if trade_type not in ("exactIn", "exactOut"):
            raise InvalidRequestError(f"Unknown trade type: {trade_type}")

        chain = load_chain_config(chain_id)
        bps = slippage_bps(slippage, maximum=self.max_slippage)
        tin = await self._resolve(chain, token_in)
        tout = await self._resolve(chain, token_out)

        if trade_type == "exactIn":
            input_raw = parse_units(amount_in, tin.decimals)
            output_raw = rescale_units(input_raw, tin.decimals, tout.decimals)
        else:
            output_raw = parse_units(amount_out, tout.decimals)
            input_raw = rescale_units(output_raw, tout.decimals, tin.decimals)
        if input_raw == 0 or output_raw == 0:
            raise InvalidRequestError("Trade amount rounds to zero")

        minimum_raw = apply_slippage(output_raw, bps)
        maximum_raw = apply_slippage(input_raw, bps, upward=True)

        quote = SwapQuote(
            chain_id=chain.chain_id,
            trade_type=trade_type,
            price=PLACEHOLDER_PRICE,
            input_amount=format_units(input_raw, tin.decimals),
            output_amount=format_units(output_raw, tout.decimals),
            minimum_received=format_units(minimum_raw, tout.decimals),
            maximum_input=format_units(maximum_raw, tin.decimals),
            route=[RouteHop(token_in=tin.address, token_out=tout.address)],
            estimated_gas=ESTIMATED_SWAP_GAS,
            price_impact=PLACEHOLDER_PRICE_IMPACT,
            slippage=float(slippage),
            token_in=tin,
            token_out=tout,
            input_raw=input_raw,
            output_raw=output_raw,
            minimum_received_raw=minimum_raw,
            maximum_input_raw=maximum_raw,
        )
        self.logger.info(
            "Quote built",
            chain_id=chain.chain_id,
            trade_type=trade_type,
            token_in=tin.symbol,
            token_out=tout.symbol,
            output=quote.output_amount,
        )
        return quote

    async def _resolve(self, chain, address: str) -> Token:
        # Only the native sentinel takes the chain's symbol; ERC-20s fall back to UNKNOWN.
        symbol = chain.native_symbol if is_native(address) else DEFAULT_SYMBOL
        return await self.resolver.resolve(chain.chain_id, address, default_symbol=symbol)
