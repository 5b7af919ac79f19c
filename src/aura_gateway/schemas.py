from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake-case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SwapRequest(CamelModel):
    wallet_address: Optional[str] = None
    token_in: Optional[str] = None
    token_out: Optional[str] = None
    amount_in: Optional[str] = None
    amount_out_min: Optional[str] = None
    slippage: Optional[float] = None
    deadline: Optional[int] = Field(default=None, description="Seconds.")
    chain: str = "ethereum"


class TradeRequest(CamelModel):
    address: Optional[str] = None
    from_token: Optional[str] = None
    to_token: Optional[str] = None
    amount: Optional[str] = None
    slippage: float = 0.5
    automation_rules: Optional[list[Dict[str, Any]]] = None


class RebalanceRequest(CamelModel):
    address: Optional[str] = None
    target_allocations: Optional[Dict[str, float]] = None
    slippage: float = 1.0
    execute_immediately: bool = False


class ChatRequest(CamelModel):
    address: Optional[str] = None
    message: Optional[str] = None


class PaymentCreateRequest(CamelModel):
    wallet_address: Optional[str] = None
    service: Optional[str] = None


class PaymentVerifyRequest(CamelModel):
    payment_id: Optional[str] = None


class StrategyExecutionRequest(CamelModel):
    address: Optional[str] = None
    strategy_id: Optional[str] = None
    auto_execute: bool = False
    risk_tolerance: Optional[str] = None
    max_slippage: Optional[float] = None
    max_gas_price: Optional[str] = Field(default=None, description="Gas price ceiling in gwei.")


class WalletValidationRequest(CamelModel):
    address: Optional[str] = None
    expected_network: str = "ethereum"
