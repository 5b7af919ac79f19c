import pytest

from aura_gateway import UpstreamError
from aura_gateway.wallet_validation import WalletValidator

ADDRESS = "0xc4504ee5091e093499a0586ca7525a0f20520747"


class _Adapter:
    def __init__(self, balance=0, nonce=0, fail=False):
        self.balance = balance
        self.nonce = nonce
        self.fail = fail

    async def get_balance(self, address):
        if self.fail:
            raise ConnectionError("rpc down")
        return self.balance

    async def get_nonce(self, address):
        return self.nonce


class _Pool:
    def __init__(self, adapter):
        self.adapter = adapter

    def get(self, chain_id):
        return self.adapter


class _Aura:
    def __init__(self, total=0.0, down=False):
        self.total = total
        self.down = down

    async def get_balances(self, address, timeout=None):
        if self.down:
            raise UpstreamError("AURA API request failed")
        return {"portfolio": [{"tokens": [{"symbol": "ETH", "balanceUSD": self.total}]}]}


@pytest.mark.asyncio
async def test_invalid_address():
    result = await WalletValidator(_Pool(_Adapter())).validate("invalid-address")
    assert result.is_valid is False
    assert result.error == "Invalid wallet address format"


@pytest.mark.asyncio
async def test_empty_wallet_is_not_connected():
    result = await WalletValidator(_Pool(_Adapter())).validate(ADDRESS)
    assert result.is_valid is True
    assert result.is_connected is False
    assert result.has_balance is False
    assert result.actual_balance == "0"
    assert result.network == "ethereum"


@pytest.mark.asyncio
async def test_active_wallet():
    adapter = _Adapter(balance=5 * 10**17, nonce=3)
    result = await WalletValidator(_Pool(adapter)).validate(ADDRESS)
    assert result.is_connected is True
    assert result.has_balance is True
    assert result.actual_balance == "0.5"


@pytest.mark.asyncio
async def test_aura_value_with_empty_wallet_flags_demo_data():
    result = await WalletValidator(_Pool(_Adapter()), _Aura(total=5000)).validate(ADDRESS)
    assert result.is_valid is True
    assert "Data mismatch" in result.error


@pytest.mark.asyncio
async def test_rpc_and_aura_failures_are_reported_not_raised():
    result = await WalletValidator(_Pool(_Adapter(fail=True)), _Aura(down=True)).validate(ADDRESS)
    assert result.is_valid is True
    assert result.error == "Unable to verify wallet on-chain data"
    assert result.is_connected is False
