import pytest

from aura_gateway import InsufficientBalanceError, InvalidRequestError, SwapError
from aura_gateway.abi import MAX_UINT256
from aura_gateway.network_config import SWAP_ROUTER_V3
from aura_gateway.quotes import QuoteEngine
from aura_gateway.swaps import SwapExecutor
from aura_gateway.tokens import TokenResolver

PRIV = "0xfb4222fce02fa5e3d33ec08294b5fbeee428028532133116ff1d84fe8be9719f"
OWNER = "0xC4504EE5091e093499a0586Ca7525A0F20520747"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"


class _SwapAdapter:
    def __init__(self, *, usdc_balance=10_000_000, allowance=0, native_balance=10**18, status=1):
        self.usdc_balance = usdc_balance
        self.allowance = allowance
        self.native_balance = native_balance
        self.status = status
        self.nonce = 0
        self.built = []
        self.encoded = []
        self.txs = []
        self.sent = []

    async def call_contract_function(self, address, abi, method, *args):
        meta = {
            USDC.lower(): {"decimals": 6, "symbol": "USDC", "name": "USD Coin"},
            WETH.lower(): {"decimals": 18, "symbol": "WETH", "name": "Wrapped Ether"},
        }[address.lower()]
        if method == "balanceOf":
            return self.usdc_balance
        if method == "allowance":
            return self.allowance
        return meta[method]

    async def get_balance(self, address):
        return self.native_balance

    async def get_block_latest(self):
        return {"baseFeePerGas": 1_000_000_000, "number": 1}

    async def max_priority_fee(self):
        return 1_000_000_000

    async def get_nonce(self, address):
        return self.nonce

    async def build_contract_transaction(self, address, abi, method, args, tx_params):
        self.built.append((address, method, args))
        tx = dict(tx_params)
        tx.setdefault("value", 0)
        tx.update({"to": address, "data": "0x", "gas": 250_000})
        self.txs.append(tx)
        return tx

    def encode_contract_call(self, address, abi, method, args):
        self.encoded.append((method, args))
        return bytes([len(self.encoded)])

    async def send_raw_transaction(self, raw):
        self.sent.append(raw)
        self.nonce += 1
        return bytes([len(self.sent)]) * 32

    async def wait_for_receipt(self, tx_hash, timeout=120):
        return {"status": self.status, "gasUsed": 123_456}


class _Pool:
    def __init__(self, adapter):
        self.adapter = adapter

    def get(self, chain_id):
        return self.adapter


def _executor(adapter):
    pool = _Pool(adapter)
    return SwapExecutor(pool, QuoteEngine(TokenResolver(pool)), clock=lambda: 1_700_000_000)


@pytest.mark.asyncio
async def test_erc20_swap_approves_then_swaps():
    adapter = _SwapAdapter()
    result = await _executor(adapter).execute_swap(
        1, USDC, WETH, amount_in="1.0", slippage=0.5, private_key=PRIV
    )

    assert [m for _, m, _ in adapter.built] == ["approve", "exactInputSingle"]
    spender, amount = adapter.built[0][2]
    assert spender == SWAP_ROUTER_V3
    assert amount == MAX_UINT256
    params = adapter.built[1][2][0]
    assert params[3] == OWNER
    assert params[4] == 1_700_000_000 + 20 * 60
    assert params[5] == 1_000_000
    assert params[6] == 995 * 10**15
    assert len(adapter.sent) == 2
    assert result.approval_tx_hash is not None
    assert result.tx_hash.startswith("0x")
    assert result.explorer_url == f"https://etherscan.io/tx/{result.tx_hash}"
    assert result.gas_used == "123456"


@pytest.mark.asyncio
async def test_existing_allowance_skips_approval():
    adapter = _SwapAdapter(allowance=MAX_UINT256)
    result = await _executor(adapter).execute_swap(
        1, USDC, WETH, amount_in="1.0", private_key=PRIV, amount_out_min="0.9"
    )
    assert [m for _, m, _ in adapter.built] == ["exactInputSingle"]
    assert adapter.built[0][2][0][6] == 9 * 10**17
    assert result.approval_tx_hash is None


@pytest.mark.asyncio
async def test_native_input_sends_value():
    adapter = _SwapAdapter()
    await _executor(adapter).execute_swap(1, "NATIVE", USDC, amount_in="0.1", private_key=PRIV)
    assert [m for _, m, _ in adapter.built] == ["exactInputSingle"]
    assert adapter.txs[0]["value"] == 10**17


@pytest.mark.asyncio
async def test_erc20_input_sends_no_value():
    adapter = _SwapAdapter(allowance=MAX_UINT256)
    await _executor(adapter).execute_swap(1, USDC, WETH, amount_in="1.0", private_key=PRIV)
    assert adapter.txs[-1]["value"] == 0


@pytest.mark.asyncio
async def test_native_exact_out_refunds_unspent_eth():
    adapter = _SwapAdapter(native_balance=2 * 10**18)
    result = await _executor(adapter).execute_swap(
        1, "NATIVE", USDC, amount_out="1", trade_type="exactOut", slippage=5, private_key=PRIV
    )
    assert [m for _, m, _ in adapter.built] == ["multicall"]
    assert [m for m, _ in adapter.encoded] == ["exactOutputSingle", "refundETH"]
    params = adapter.encoded[0][1][0]
    assert params[5] == 1_000_000
    assert params[6] == 105 * 10**16
    assert adapter.built[0][2] == [[b"\x01", b"\x02"]]
    assert adapter.txs[0]["value"] == 105 * 10**16
    assert result.maximum_input == "1.05"


@pytest.mark.asyncio
async def test_zero_balance_names_the_wallet():
    adapter = _SwapAdapter(usdc_balance=0)
    with pytest.raises(InsufficientBalanceError) as exc:
        await _executor(adapter).execute_swap(1, USDC, WETH, amount_in="1.0", private_key=PRIV)
    assert OWNER in exc.value.message
    assert adapter.sent == []


@pytest.mark.asyncio
async def test_short_balance_is_rejected():
    adapter = _SwapAdapter(usdc_balance=500_000)
    with pytest.raises(InsufficientBalanceError):
        await _executor(adapter).execute_swap(1, USDC, WETH, amount_in="1.0", private_key=PRIV)


@pytest.mark.asyncio
async def test_reverted_swap_raises():
    adapter = _SwapAdapter(allowance=MAX_UINT256, status=0)
    with pytest.raises(SwapError):
        await _executor(adapter).execute_swap(1, USDC, WETH, amount_in="1.0", private_key=PRIV)


@pytest.mark.asyncio
async def test_private_key_required():
    with pytest.raises(InvalidRequestError):
        await _executor(_SwapAdapter()).execute_swap(1, USDC, WETH, amount_in="1.0")
