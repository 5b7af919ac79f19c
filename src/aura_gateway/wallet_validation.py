"""Wallet address validation with an on-chain activity check."""

from __future__ import annotations

from typing import Any, Optional

from web3 import Web3

from . import GatewayError
from .core import logger
from .network_config import chain_id_for_name
from .schemas import CamelModel

# AURA totals above this with an empty on-chain wallet suggest demo data.
MOCK_DATA_THRESHOLD_USD = 1000


class WalletValidationResult(CamelModel):
    is_valid: bool = False
    is_connected: bool = False
    has_balance: bool = False
    actual_balance: Optional[str] = None
    network: Optional[str] = None
    error: Optional[str] = None


class WalletValidator:
    def __init__(self, web3_pool: Any, aura_client: Any = None):
        self.web3_pool = web3_pool
        self.aura = aura_client
        self.logger = logger.bind(component="WalletValidator")

    async def validate(self, address: str, expected_network: str = "ethereum") -> WalletValidationResult:
        result = WalletValidationResult()
        if not isinstance(address, str) or not Web3.is_address(address):
            result.error = "Invalid wallet address format"
            return result
        result.is_valid = True
        checksum = Web3.to_checksum_address(address)

        try:
            adapter = self.web3_pool.get(chain_id_for_name(expected_network))
            balance_wei = int(await adapter.get_balance(checksum))
            tx_count = int(await adapter.get_nonce(checksum))
            result.actual_balance = str(Web3.from_wei(balance_wei, "ether"))
            result.has_balance = balance_wei > 0
            result.network = expected_network
            result.is_connected = tx_count > 0 or balance_wei > 0
        except Exception as exc:
            self.logger.warning("On-chain wallet check failed", address=checksum, error=str(exc))
            result.error = "Unable to verify wallet on-chain data"

        if self.aura is not None:
            try:
                data = await self.aura.get_balances(checksum, timeout=5.0)
            except GatewayError as exc:
                self.logger.info("AURA unavailable, using on-chain data only", error=str(exc))
                return result
            total = sum(
                float(token.get("balanceUSD") or 0)
                for network in data.get("portfolio") or []
                for token in network.get("tokens") or []
            )
            if total > MOCK_DATA_THRESHOLD_USD and not result.has_balance:
                result.error = (
                    "Data mismatch: AURA shows portfolio value but wallet appears empty "
                    "on-chain. This might be demo data."
                )
        return result
