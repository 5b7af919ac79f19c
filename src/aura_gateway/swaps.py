"""Swap execution against the Uniswap V3 SwapRouter.

The pipeline is CheckBalance -> Approve -> Submit -> AwaitReceipt. Approval is
skipped for native input or when the router allowance already covers the
trade, and is always confirmed before the swap is submitted.
"""

from __future__ import annotations

import time
from typing import Any, Callable, List, Optional, Tuple

from eth_account import Account
from web3 import Web3

from . import GatewayError, InsufficientBalanceError, InvalidRequestError, SwapError
from .abi import ERC20_ABI, MAX_UINT256, SWAP_ROUTER_ABI
from .config import RECEIPT_TIMEOUT_SECONDS
from .core import logger
from .network_config import load_chain_config
from .quotes import DEFAULT_FEE_TIER, QuoteEngine, RouteHop, SwapQuote, TradeType
from .schemas import CamelModel
from .tokens import Token, format_units, parse_units


class SwapResult(CamelModel):
    chain_id: int
    tx_hash: str
    trade_type: TradeType
    amount_in: str
    output_amount: str
    minimum_received: str
    maximum_input: str
    from_token: Token
    to_token: Token
    route: List[RouteHop]
    gas_used: str
    actual_price: str
    approval_tx_hash: Optional[str] = None
    explorer_url: Optional[str] = None


class SwapExecutor:
    def __init__(
        self,
        web3_pool: Any,
        quote_engine: QuoteEngine,
        *,
        receipt_timeout: int = RECEIPT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.web3_pool = web3_pool
        self.quote_engine = quote_engine
        self.receipt_timeout = receipt_timeout
        self.clock = clock
        self.logger = logger.bind(component="SwapExecutor")

    async def execute_swap(
        self,
        chain_id: int,
        token_in: str,
        token_out: str,
        amount_in: Optional[str] = None,
        amount_out: Optional[str] = None,
        trade_type: TradeType = "exactIn",
        slippage: float = 0.5,
        deadline_minutes: int = 20,
        private_key: Optional[str] = None,
        amount_out_min: Optional[str] = None,
    ) -> SwapResult:
        if not private_key:
            raise InvalidRequestError("Private key required for swap execution")
        try:
            account = Account.from_key(private_key)
        except Exception:
            raise InvalidRequestError("Configured signing key is not a valid private key") from None

        quote = await self.quote_engine.get_swap_quote(
            chain_id,
            token_in,
            token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            trade_type=trade_type,
            slippage=slippage,
        )
        try:
            return await self._execute(account, quote, deadline_minutes, amount_out_min)
        except GatewayError:
            raise
        except Exception as exc:
            self.logger.error("Swap failed", chain_id=chain_id, error=str(exc))
            raise SwapError(f"Swap execution failed: {exc}") from exc

    async def _execute(
        self,
        account: Any,
        quote: SwapQuote,
        deadline_minutes: int,
        amount_out_min: Optional[str],
    ) -> SwapResult:
        chain = load_chain_config(quote.chain_id)
        adapter = self.web3_pool.get(chain.chain_id)
        owner = account.address
        tin, tout = quote.token_in, quote.token_out
        spend_raw = quote.input_raw if quote.trade_type == "exactIn" else quote.maximum_input_raw

        await self._check_balance(adapter, owner, tin, spend_raw)

        approval_hash = None
        if not tin.is_native:
            approval_hash = await self._ensure_allowance(
                adapter, account, tin, chain.router_address, spend_raw, chain.chain_id
            )

        deadline = int(self.clock()) + int(deadline_minutes) * 60
        if quote.trade_type == "exactIn":
            min_out = quote.minimum_received_raw
            if amount_out_min:
                min_out = parse_units(amount_out_min, tout.decimals)
            method = "exactInputSingle"
            params = (
                tin.address, tout.address, DEFAULT_FEE_TIER, owner, deadline,
                quote.input_raw, min_out, 0,
            )
        else:
            method = "exactOutputSingle"
            params = (
                tin.address, tout.address, DEFAULT_FEE_TIER, owner, deadline,
                quote.output_raw, quote.maximum_input_raw, 0,
            )
        args: List[Any] = [params]
        if quote.trade_type == "exactOut" and tin.is_native:
            # The router keeps unspent ETH unless refundETH runs in the same tx.
            calls = [
                adapter.encode_contract_call(chain.router_address, SWAP_ROUTER_ABI, method, [params]),
                adapter.encode_contract_call(chain.router_address, SWAP_ROUTER_ABI, "refundETH", []),
            ]
            method, args = "multicall", [calls]

        tx_params = await self._tx_params(adapter, owner, chain.chain_id)
        tx_params["value"] = spend_raw if tin.is_native else 0
        swap_tx = await adapter.build_contract_transaction(
            chain.router_address, SWAP_ROUTER_ABI, method, args, tx_params
        )
        tx_hash, receipt = await self._sign_and_send(adapter, account, swap_tx)
        if receipt["status"] != 1:
            raise SwapError(f"Swap execution failed: transaction {tx_hash} reverted")

        self.logger.info(
            "Swap confirmed",
            chain_id=chain.chain_id,
            tx_hash=tx_hash,
            token_in=tin.symbol,
            token_out=tout.symbol,
        )
        return SwapResult(
            chain_id=chain.chain_id,
            tx_hash=tx_hash,
            trade_type=quote.trade_type,
            amount_in=quote.input_amount,
            output_amount=quote.output_amount,
            minimum_received=quote.minimum_received,
            maximum_input=quote.maximum_input,
            from_token=tin,
            to_token=tout,
            route=quote.route,
            gas_used=str(receipt["gasUsed"]),
            actual_price=quote.price,
            approval_tx_hash=approval_hash,
            explorer_url=chain.tx_url(tx_hash),
        )

    async def _check_balance(self, adapter: Any, owner: str, token: Token, needed: int) -> None:
        if token.is_native:
            balance = int(await adapter.get_balance(owner))
            label = "native token"
        else:
            balance = int(
                await adapter.call_contract_function(token.address, ERC20_ABI, "balanceOf", owner)
            )
            label = token.symbol
        if balance == 0:
            raise InsufficientBalanceError(
                f"Zero {label} balance. Please deposit funds to {owner}."
            )
        if balance < needed:
            raise InsufficientBalanceError(
                f"Insufficient {label} balance: have {format_units(balance, token.decimals)}, "
                f"need {format_units(needed, token.decimals)}. Please deposit funds to {owner}."
            )

    async def _ensure_allowance(
        self, adapter: Any, account: Any, token: Token, spender: str, needed: int, chain_id: int
    ) -> Optional[str]:
        allowance = int(
            await adapter.call_contract_function(
                token.address, ERC20_ABI, "allowance", account.address, spender
            )
        )
        if allowance >= needed:
            return None
        tx_params = await self._tx_params(adapter, account.address, chain_id)
        approve_tx = await adapter.build_contract_transaction(
            token.address, ERC20_ABI, "approve", [spender, MAX_UINT256], tx_params
        )
        tx_hash, receipt = await self._sign_and_send(adapter, account, approve_tx)
        if receipt["status"] != 1:
            raise SwapError(f"Swap execution failed: approval {tx_hash} reverted")
        self.logger.info("Router approved", token=token.symbol, tx_hash=tx_hash)
        return tx_hash

    async def _tx_params(self, adapter: Any, sender: str, chain_id: int) -> dict:
        block = await adapter.get_block_latest()
        base_fee = int(block.get("baseFeePerGas") or 0)
        priority_fee = int(await adapter.max_priority_fee())
        return {
            "from": sender,
            "nonce": await adapter.get_nonce(sender),
            "chainId": chain_id,
            "maxPriorityFeePerGas": priority_fee,
            "maxFeePerGas": base_fee * 2 + priority_fee,
        }

    async def _sign_and_send(self, adapter: Any, account: Any, tx: dict) -> Tuple[str, Any]:
        signed = account.sign_transaction(tx)
        raw_hash = await adapter.send_raw_transaction(signed.raw_transaction)
        tx_hash = Web3.to_hex(raw_hash)
        receipt = await adapter.wait_for_receipt(raw_hash, timeout=self.receipt_timeout)
        return tx_hash, receipt
