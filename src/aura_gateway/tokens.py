"""Token metadata resolution and decimal/base-unit conversion."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Dict, List

from web3 import Web3

from . import InvalidRequestError
from .abi import ERC20_ABI
from .core import logger
from .network_config import load_chain_config
from .schemas import CamelModel

NATIVE_SENTINEL = "NATIVE"
DEFAULT_SYMBOL = "UNKNOWN"
DEFAULT_NAME = "Unknown Token"


class Token(CamelModel):
    chain_id: int
    address: str
    decimals: int
    symbol: str
    name: str
    is_native: bool = False


def is_native(address: str | None) -> bool:
    return not address or address.strip().upper() == NATIVE_SENTINEL


def parse_units(amount: str | int | float | Decimal, decimals: int) -> int:
    """Convert a human decimal amount into integer base units.

    Rejects negative values and more fractional digits than the token carries.
    """
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidRequestError(f"Invalid amount: {amount!r}") from None
    if not value.is_finite() or value < 0:
        raise InvalidRequestError(f"Invalid amount: {amount!r}")
    with localcontext() as ctx:
        ctx.prec = 80
        scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidRequestError(
            f"Amount {amount} has more than {decimals} decimal places"
        )
    return int(scaled)


def format_units(value: int, decimals: int) -> str:
    """Render base units as a decimal string, always with a fractional part."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(int(value)), 10**decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{sign}{whole}.{frac_str or '0'}"


def rescale_units(value: int, from_decimals: int, to_decimals: int) -> int:
    """Express a base-unit amount in another token's decimals (1:1 value)."""
    if to_decimals >= from_decimals:
        return value * 10 ** (to_decimals - from_decimals)
    return value // 10 ** (from_decimals - to_decimals)


class TokenResolver:
    """Reads ERC-20 metadata through the per-chain web3 adapters."""

    def __init__(self, web3_pool: Any):
        self.web3_pool = web3_pool
        self.logger = logger.bind(component="TokenResolver")

    async def resolve(
        self,
        chain_id: int,
        address: str | None,
        *,
        default_symbol: str = DEFAULT_SYMBOL,
        default_name: str = DEFAULT_NAME,
    ) -> Token:
        chain = load_chain_config(chain_id)
        if is_native(address):
            return Token(
                chain_id=chain.chain_id,
                address=chain.wrapped_native_address,
                decimals=18,
                symbol=default_symbol,
                name=default_name,
                is_native=True,
            )
        if not Web3.is_address(address):
            raise InvalidRequestError(f"Invalid token address: {address}")
        checksum = Web3.to_checksum_address(address)
        adapter = self.web3_pool.get(chain.chain_id)

        try:
            decimals = int(
                await adapter.call_contract_function(checksum, ERC20_ABI, "decimals")
            )
        except Exception as exc:
            raise InvalidRequestError(
                f"Token {checksum} on chain {chain.chain_id} did not return decimals: {exc}"
            ) from exc

        metadata: Dict[str, str] = {"symbol": default_symbol, "name": default_name}
        for field in ("symbol", "name"):
            try:
                value = await adapter.call_contract_function(checksum, ERC20_ABI, field)
            except Exception as exc:
                self.logger.debug("Token metadata unavailable", token=checksum, field=field, error=str(exc))
                continue
            if value:
                metadata[field] = str(value)

        return Token(
            chain_id=chain.chain_id,
            address=checksum,
            decimals=decimals,
            symbol=metadata["symbol"],
            name=metadata["name"],
        )


_FALLBACK_TOKENS: Dict[str, List[Dict[str, Any]]] = {
    "ethereum": [
        {"address": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", "symbol": "WETH", "name": "Wrapped Ether", "decimals": 18},
        {"address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "symbol": "USDC", "name": "USD Coin", "decimals": 6},
        {"address": "0xdAC17F958D2ee523a2206206994597C13D831ec7", "symbol": "USDT", "name": "Tether USD", "decimals": 6},
        {"address": "0x6B175474E89094C44Da98b954EedeAC495271d0F", "symbol": "DAI", "name": "Dai Stablecoin", "decimals": 18},
        {"address": "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", "symbol": "WBTC", "name": "Wrapped BTC", "decimals": 8},
        {"address": "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984", "symbol": "UNI", "name": "Uniswap", "decimals": 18},
        {"address": "0x7Fc66500c84A76Ad7e9c93437bFc5Ac33E2DDaE9", "symbol": "AAVE", "name": "Aave Token", "decimals": 18},
    ],
    "polygon": [
        {"address": "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270", "symbol": "WMATIC", "name": "Wrapped Matic", "decimals": 18},
        {"address": "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", "symbol": "USDC", "name": "USD Coin", "decimals": 6},
    ],
    "arbitrum": [
        {"address": "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1", "symbol": "WETH", "name": "Wrapped Ether", "decimals": 18},
        {"address": "0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8", "symbol": "USDC", "name": "USD Coin", "decimals": 6},
    ],
}

_POPULAR_TOKENS: Dict[str, List[str]] = {
    "ethereum": ["WETH", "USDC", "USDT", "DAI", "WBTC", "UNI", "LINK"],
    "polygon": ["WMATIC", "USDC", "USDT", "DAI", "WETH"],
    "arbitrum": ["WETH", "USDC", "ARB", "GMX"],
    "optimism": ["WETH", "USDC", "OP", "SNX"],
    "base": ["WETH", "USDC", "CBETH"],
}

TOKEN_CATEGORIES: Dict[str, tuple[str, ...]] = {
    "stablecoins": ("USDC", "USDT", "DAI", "FRAX"),
    "majors": ("ETH", "WETH", "BTC", "WBTC"),
    "defi": ("UNI", "AAVE", "COMP", "MKR", "SNX"),
}


def fallback_tokens(chain: str) -> List[Dict[str, Any]]:
    """Curated token list for a chain slug; unknown chains get Ethereum's."""
    tokens = _FALLBACK_TOKENS.get((chain or "").lower(), _FALLBACK_TOKENS["ethereum"])
    return [dict(token) for token in tokens]


def popular_tokens(chain: str) -> List[str]:
    return list(_POPULAR_TOKENS.get((chain or "").lower(), _POPULAR_TOKENS["ethereum"]))


def categorize_tokens(tokens: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    return {
        category: [t for t in tokens if t["symbol"] in symbols]
        for category, symbols in TOKEN_CATEGORIES.items()
    }
