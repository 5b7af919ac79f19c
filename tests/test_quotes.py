from decimal import Decimal

import pytest

from aura_gateway import InvalidRequestError
from aura_gateway.quotes import QuoteEngine, apply_slippage, slippage_bps
from aura_gateway.tokens import TokenResolver

USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
# decimals() works, symbol() and name() revert
NO_META = "0x6B175474E89094C44Da98b954EedeAC495271d0F"


class _TokenAdapter:
    tokens = {
        USDC.lower(): {"decimals": 6, "symbol": "USDC", "name": "USD Coin"},
        WETH.lower(): {"decimals": 18, "symbol": "WETH", "name": "Wrapped Ether"},
    }

    async def call_contract_function(self, address, abi, method, *args):
        if address.lower() == NO_META.lower():
            if method == "decimals":
                return 18
            raise ValueError("execution reverted")
        return self.tokens[address.lower()][method]


class _Pool:
    def get(self, chain_id):
        return _TokenAdapter()


def _engine():
    return QuoteEngine(TokenResolver(_Pool()))


@pytest.mark.asyncio
async def test_minimum_received_applies_half_percent_slippage():
    quote = await _engine().get_swap_quote(1, USDC, WETH, amount_in="1.0", slippage=0.5)
    assert quote.trade_type == "exactIn"
    assert quote.output_amount == "1.0"
    assert Decimal(quote.minimum_received) == Decimal(quote.output_amount) * Decimal("0.995")
    assert quote.route[0].token_in == USDC
    assert quote.route[0].fee == 3000


@pytest.mark.asyncio
async def test_exact_out_bounds_maximum_input():
    quote = await _engine().get_swap_quote(
        1, USDC, WETH, amount_out="2", trade_type="exactOut", slippage=0.5
    )
    assert quote.input_amount == "2.0"
    assert quote.maximum_input == "2.01"
    assert quote.output_amount == "2.0"


@pytest.mark.asyncio
async def test_missing_amount_for_trade_type():
    with pytest.raises(InvalidRequestError):
        await _engine().get_swap_quote(1, USDC, WETH)
    with pytest.raises(InvalidRequestError):
        await _engine().get_swap_quote(1, USDC, WETH, amount_in="1", trade_type="exactOut")


@pytest.mark.asyncio
async def test_slippage_above_ceiling_is_rejected():
    with pytest.raises(InvalidRequestError):
        await _engine().get_swap_quote(1, USDC, WETH, amount_in="1", slippage=6)


@pytest.mark.asyncio
async def test_wire_format_hides_base_units():
    quote = await _engine().get_swap_quote(1, "NATIVE", USDC, amount_in="0.5")
    wire = quote.to_wire()
    assert wire["chainId"] == 1
    assert wire["tokenIn"]["isNative"] is True
    assert wire["tokenIn"]["symbol"] == "ETH"
    assert wire["outputAmount"] == "0.5"
    assert "inputRaw" not in wire
    assert "minimumReceivedRaw" not in wire


def test_slippage_math():
    assert slippage_bps(0.5) == 50
    assert slippage_bps(None) == 50
    assert apply_slippage(10_000, 50) == 9_950
    assert apply_slippage(10_000, 50, upward=True) == 10_050
    with pytest.raises(InvalidRequestError):
        slippage_bps(-1)
    with pytest.raises(InvalidRequestError):
        slippage_bps(float("nan"))
    with pytest.raises(InvalidRequestError):
        slippage_bps("inf")


@pytest.mark.asyncio
async def test_nan_slippage_is_a_bad_request():
    with pytest.raises(InvalidRequestError):
        await _engine().get_swap_quote(1, USDC, WETH, amount_in="1", slippage=float("nan"))


@pytest.mark.asyncio
async def test_token_without_metadata_is_unknown_not_native():
    quote = await _engine().get_swap_quote(1, NO_META, USDC, amount_in="1")
    assert quote.token_in.symbol == "UNKNOWN"
    assert quote.token_in.name == "Unknown Token"
    assert quote.token_in.decimals == 18
    assert quote.token_in.is_native is False
    assert quote.token_out.symbol == "USDC"
