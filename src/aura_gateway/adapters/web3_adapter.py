import asyncio
import os
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from web3 import AsyncHTTPProvider, AsyncWeb3

from ..core import logger
from ..network_config import ChainConfig, load_chain_config


class Web3Adapter:
    """JSON-RPC access for one chain, retrying across a list of RPC endpoints."""

    def __init__(self, chain_id: int, rpc_urls: Sequence[str]):
        urls: List[str] = []
        for url in rpc_urls:
            if url and url not in urls:
                urls.append(url)
        if not urls:
            raise RuntimeError(f"No RPC URLs configured for chain {chain_id}")
        self.chain_id = chain_id
        self._urls = urls
        self._idx = 0
        self.w3 = AsyncWeb3(AsyncHTTPProvider(urls[0]))
        self.logger = logger.bind(component="Web3Adapter", chain_id=chain_id)

    @classmethod
    def for_chain(cls, chain: ChainConfig) -> "Web3Adapter":
        # Extra endpoints, e.g. BASE_RPC_FALLBACKS=https://a,https://b
        env_name = f"{chain.slug.upper()}_RPC_FALLBACKS"
        fallbacks = [u.strip() for u in os.getenv(env_name, "").split(",") if u.strip()]
        return cls(chain.chain_id, [chain.rpc_url, *fallbacks])

    def _rotate(self) -> None:
        if len(self._urls) == 1:
            return
        self._idx = (self._idx + 1) % len(self._urls)
        self.w3 = AsyncWeb3(AsyncHTTPProvider(self._urls[self._idx]))

    async def _call(
        self, make_call: Callable[[], Awaitable[Any]], *, attempts: int = 3
    ) -> Any:
        delay = 0.25
        last_err: Optional[Exception] = None
        for attempt in range(attempts * len(self._urls)):
            try:
                return await make_call()
            except Exception as e:
                last_err = e
                self.logger.debug("RPC call failed", attempt=attempt + 1, error=str(e))
                self._rotate()
                await asyncio.sleep(delay + random.random() * 0.25)
                delay = min(delay * 2, 2.0)
        raise last_err if last_err else RuntimeError("RPC call failed")

    # Reads, retried with rotation
    async def get_balance(self, address: str) -> int:
        return await self._call(lambda: self.w3.eth.get_balance(address))

    async def get_nonce(self, address: str) -> int:
        return await self._call(lambda: self.w3.eth.get_transaction_count(address))

    async def get_block_latest(self) -> dict:
        return await self._call(lambda: self.w3.eth.get_block("latest"))

    async def gas_price(self) -> int:
        async def _fetch():
            return await self.w3.eth.gas_price

        return await self._call(_fetch)

    async def max_priority_fee(self) -> int:
        async def _fetch():
            return await self.w3.eth.max_priority_fee

        return await self._call(_fetch)

    async def call_contract_function(
        self, address: str, abi: list[dict[str, Any]], method: str, *args: Any
    ) -> Any:
        async def _read():
            contract = self.w3.eth.contract(address=address, abi=abi)
            return await getattr(contract.functions, method)(*args).call()

        return await self._call(_read)

    async def build_contract_transaction(
        self,
        address: str,
        abi: list[dict[str, Any]],
        method: str,
        args: Sequence[Any],
        tx_params: dict[str, Any],
    ) -> dict[str, Any]:
        async def _build():
            contract = self.w3.eth.contract(address=address, abi=abi)
            return await getattr(contract.functions, method)(*args).build_transaction(tx_params)

        return await self._call(_build)

    def encode_contract_call(
        self, address: str, abi: list[dict[str, Any]], method: str, args: Sequence[Any]
    ) -> str:
        contract = self.w3.eth.contract(address=address, abi=abi)
        return contract.encode_abi(method, args=list(args))

    # Writes
    async def send_raw_transaction(self, raw: bytes) -> Any:
        # Never retried: a resend after a timeout could double-spend.
        return await self.w3.eth.send_raw_transaction(raw)

    async def wait_for_receipt(self, tx_hash: Any, timeout: int = 120) -> Any:
        return await self._call(
            lambda: self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout),
            attempts=1,
        )


class Web3Pool:
    """Lazily builds one adapter per supported chain."""

    def __init__(self) -> None:
        self._adapters: Dict[int, Web3Adapter] = {}

    def get(self, chain_id: int) -> Web3Adapter:
        adapter = self._adapters.get(chain_id)
        if adapter is None:
            adapter = Web3Adapter.for_chain(load_chain_config(chain_id))
            self._adapters[chain_id] = adapter
        return adapter
