"""Static chain registry for the supported Uniswap V3 deployments."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List

from . import UnsupportedChainError

SWAP_ROUTER_V3 = "0xE592427A0AEce92De3Edee1F18E0157C05861564"
UNISWAP_V3_FACTORY = "0x1F98431c8aD98523631AE4a59f267346ea31F984"
DEFAULT_CHAIN_ID = 1


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    slug: str
    display_name: str
    rpc_url: str
    router_address: str
    factory_address: str
    wrapped_native_address: str
    explorer_url: str
    native_symbol: str = "ETH"

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


# chain_id -> (slug, display name, wrapped native, explorer, rpc env var, infura subdomain)
_CHAIN_TABLE: Dict[int, tuple[str, str, str, str, str, str]] = {
    1: (
        "ethereum",
        "Ethereum",
        "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        "https://etherscan.io",
        "ETHEREUM_RPC_URL",
        "mainnet",
    ),
    10: (
        "optimism",
        "Optimism",
        "0x4200000000000000000000000000000000000006",
        "https://optimistic.etherscan.io",
        "OPTIMISM_RPC_URL",
        "optimism-mainnet",
    ),
    137: (
        "polygon",
        "Polygon",
        "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
        "https://polygonscan.com",
        "POLYGON_RPC_URL",
        "polygon-mainnet",
    ),
    42161: (
        "arbitrum",
        "Arbitrum",
        "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
        "https://arbiscan.io",
        "ARBITRUM_RPC_URL",
        "arbitrum-mainnet",
    ),
    8453: (
        "base",
        "Base",
        "0x4200000000000000000000000000000000000006",
        "https://basescan.org",
        "BASE_RPC_URL",
        "base-mainnet",
    ),
}


def _rpc_url(env_var: str, infura_subdomain: str) -> str:
    explicit = os.getenv(env_var)
    if explicit:
        return explicit
    infura_key = os.getenv("INFURA_KEY", "")
    return f"https://{infura_subdomain}.infura.io/v3/{infura_key}"


def supported_chain_ids() -> List[int]:
    return list(_CHAIN_TABLE)


def load_chain_config(chain_id: int) -> ChainConfig:
    try:
        slug, name, wrapped, explorer, env_var, infura = _CHAIN_TABLE[int(chain_id)]
    except (KeyError, TypeError, ValueError):
        supported = ", ".join(
            f"{cid} - {entry[1]}" for cid, entry in _CHAIN_TABLE.items()
        )
        raise UnsupportedChainError(
            f"Unsupported chainId: {chain_id}. Supported chains: {supported}"
        ) from None
    return ChainConfig(
        chain_id=int(chain_id),
        slug=slug,
        display_name=name,
        rpc_url=_rpc_url(env_var, infura),
        router_address=SWAP_ROUTER_V3,
        factory_address=UNISWAP_V3_FACTORY,
        wrapped_native_address=wrapped,
        explorer_url=explorer,
        native_symbol="MATIC" if slug == "polygon" else "ETH",
    )


def chain_id_for_name(name: str | None) -> int:
    """Map a chain slug to its id; unknown names resolve to Ethereum."""
    if not name:
        return DEFAULT_CHAIN_ID
    wanted = str(name).strip().lower()
    for chain_id, entry in _CHAIN_TABLE.items():
        if entry[0] == wanted:
            return chain_id
    return DEFAULT_CHAIN_ID


def get_supported_chains() -> List[dict]:
    return [
        {"chainId": cid, "name": entry[1], "slug": entry[0]}
        for cid, entry in _CHAIN_TABLE.items()
    ]
