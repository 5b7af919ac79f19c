"""x402 micropayment gate.

The payment backend issues payment requests and reports their status; a local
ledger remembers completed payments so the validity window is enforced here
rather than trusted to the caller. Every backend failure is treated as
"not paid".
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

import httpx
import segno
import yaml

from . import InvalidRequestError
from .config import (
    DEFAULT_PRICING_PATH,
    DEFAULT_X402_PAYMENT_ENDPOINT,
    DEFAULT_X402_RECIPIENT,
    HTTP_TIMEOUT_SECONDS,
    PAYMENT_VALIDITY_HOURS,
)
from .core import logger
from .schemas import CamelModel

SERVICE_PRICING: Dict[str, float] = {
    "portfolio_analysis": 0.001,
    "strategy_recommendations": 0.002,
    "trade_execution": 0.005,
    "automated_trading": 0.01,
}

# USDC on Base, where x402 settles.
PAYMENT_CHAIN_ID = 8453
PAYMENT_TOKEN_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
PAYMENT_TOKEN_DECIMALS = 6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class PaymentRecord(CamelModel):
    payment_id: str
    service: str
    amount: float
    currency: str = "USDC"
    user_address: str
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime
    expires_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    paid_at: Optional[datetime] = None


class PaymentResponse(CamelModel):
    success: bool
    payment_id: Optional[str] = None
    qr_code: Optional[str] = None
    payment_url: Optional[str] = None
    expires_at: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "USDC"
    service: Optional[str] = None
    recipient: Optional[str] = None
    error: Optional[str] = None


class PaymentVerification(CamelModel):
    is_paid: bool
    transaction_hash: Optional[str] = None
    paid_at: Optional[str] = None


class PaymentGateResult(CamelModel):
    authorized: bool
    payment_response: Optional[PaymentResponse] = None
    message: Optional[str] = None


@dataclass
class PricingPolicy:
    prices: Dict[str, float] = field(default_factory=lambda: dict(SERVICE_PRICING))
    currency: str = "USDC"
    validity_hours: int = PAYMENT_VALIDITY_HOURS
    request_ttl_minutes: int = 15

    @classmethod
    def load(
        cls, path: Optional[str] = None, *, validity_hours: int = PAYMENT_VALIDITY_HOURS
    ) -> "PricingPolicy":
        path_obj = Path(path or os.getenv("AURA_PRICING_PATH", DEFAULT_PRICING_PATH))
        if not path_obj.exists():
            return cls(validity_hours=validity_hours)
        with path_obj.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        prices = dict(SERVICE_PRICING)
        for service, price in (raw.get("services", {}) or {}).items():
            prices[service] = float(price)
        return cls(
            prices=prices,
            currency=str(raw.get("currency", "USDC")),
            validity_hours=int(raw.get("validity_hours", validity_hours)),
            request_ttl_minutes=int(raw.get("request_ttl_minutes", 15)),
        )

    def price_for(self, service: str) -> float:
        if service not in self.prices:
            raise InvalidRequestError(
                f"Invalid service: {service}",
                details={"validServices": sorted(self.prices)},
            )
        return self.prices[service]


class PaymentStore(Protocol):
    async def get(self, payment_id: str) -> Optional[PaymentRecord]: ...

    async def save(self, record: PaymentRecord) -> None: ...

    async def latest_completed(self, user_address: str, service: str) -> Optional[PaymentRecord]: ...


class InMemoryPaymentStore:
    def __init__(self) -> None:
        self._records: Dict[str, PaymentRecord] = {}

    async def get(self, payment_id: str) -> Optional[PaymentRecord]:
        return self._records.get(payment_id)

    async def save(self, record: PaymentRecord) -> None:
        self._records[record.payment_id] = record

    async def latest_completed(self, user_address: str, service: str) -> Optional[PaymentRecord]:
        wanted = user_address.lower()
        matches = [
            r
            for r in self._records.values()
            if r.status == PaymentStatus.COMPLETED
            and r.service == service
            and r.user_address.lower() == wanted
            and r.paid_at is not None
        ]
        if not matches:
            return None
        return max(matches, key=lambda r: r.paid_at)


def payment_uri(recipient: str, amount: float) -> str:
    """EIP-681 URI for a USDC transfer to ``recipient``."""
    raw = int(Decimal(str(amount)).scaleb(PAYMENT_TOKEN_DECIMALS))
    return (
        f"ethereum:{PAYMENT_TOKEN_ADDRESS}@{PAYMENT_CHAIN_ID}/transfer"
        f"?address={recipient}&uint256={raw}"
    )


def payment_qr_data_uri(recipient: str, amount: float) -> str:
    qr = segno.make(payment_uri(recipient, amount), micro=False)
    return qr.png_data_uri(scale=5, border=2)


def service_label(service: str) -> str:
    return service.replace("_", " ").upper()


class X402PaymentManager:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        endpoint: str = DEFAULT_X402_PAYMENT_ENDPOINT,
        recipient: str = DEFAULT_X402_RECIPIENT,
        pricing: PricingPolicy | None = None,
        store: PaymentStore | None = None,
        skip_payment: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._client = client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
        self.endpoint = endpoint.rstrip("/")
        self.recipient = recipient
        self.pricing = pricing or PricingPolicy()
        self.store = store or InMemoryPaymentStore()
        self.skip_payment = skip_payment
        self.clock = clock
        self.logger = logger.bind(component="X402PaymentManager")

    @property
    def validity(self) -> timedelta:
        return timedelta(hours=self.pricing.validity_hours)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_payment(
        self,
        service: str,
        user_address: str,
        *,
        session_id: Optional[str] = None,
    ) -> PaymentResponse:
        amount = self.pricing.price_for(service)
        now = self.clock()
        body = {
            "amount": amount,
            "currency": self.pricing.currency,
            "recipient": self.recipient,
            "service": service,
            "userAddress": user_address,
            "metadata": {
                "sessionId": session_id or f"session_{uuid.uuid4().hex}",
                "timestamp": now.isoformat(),
            },
        }
        try:
            resp = await self._client.post(f"{self.endpoint}/create-payment", json=body)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.error("Payment creation failed", service=service, error=str(exc))
            return PaymentResponse(
                success=False,
                amount=amount,
                service=service,
                error=f"Payment creation failed: {exc}",
            )

        payment_id = data.get("paymentId")
        if not payment_id:
            return PaymentResponse(
                success=False,
                amount=amount,
                service=service,
                error="Payment backend returned no payment id",
            )
        expires_at = _parse_ts(data.get("expiresAt")) or now + timedelta(
            minutes=self.pricing.request_ttl_minutes
        )
        await self.store.save(
            PaymentRecord(
                payment_id=payment_id,
                service=service,
                amount=amount,
                currency=self.pricing.currency,
                user_address=user_address,
                created_at=now,
                expires_at=expires_at,
            )
        )
        self.logger.info("Payment requested", payment_id=payment_id, service=service)
        return PaymentResponse(
            success=True,
            payment_id=payment_id,
            qr_code=data.get("qrCode") or payment_qr_data_uri(self.recipient, amount),
            payment_url=data.get("paymentUrl") or payment_uri(self.recipient, amount),
            expires_at=expires_at.isoformat(),
            amount=amount,
            currency=self.pricing.currency,
            service=service,
            recipient=self.recipient,
        )

    async def verify_payment(self, payment_id: str) -> PaymentVerification:
        try:
            resp = await self._client.get(f"{self.endpoint}/verify-payment/{payment_id}")
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.warning("Payment verification failed", payment_id=payment_id, error=str(exc))
            return PaymentVerification(is_paid=False)

        if data.get("status") != PaymentStatus.COMPLETED.value:
            return PaymentVerification(is_paid=False)

        paid_at = _parse_ts(data.get("paidAt")) or self.clock()
        tx_hash = data.get("transactionHash")
        record = await self.store.get(payment_id)
        if record is None:
            record = PaymentRecord(
                payment_id=payment_id,
                service=data.get("service", ""),
                amount=float(data.get("amount") or 0),
                user_address=data.get("userAddress", ""),
                created_at=paid_at,
            )
        record.status = PaymentStatus.COMPLETED
        record.paid_at = paid_at
        record.transaction_hash = tx_hash
        await self.store.save(record)
        self.logger.info("Payment completed", payment_id=payment_id, service=record.service)
        return PaymentVerification(
            is_paid=True, transaction_hash=tx_hash, paid_at=paid_at.isoformat()
        )

    async def has_valid_payment(self, user_address: str, service: str) -> bool:
        record = await self.store.latest_completed(user_address, service)
        if record is not None and self.clock() - record.paid_at < self.validity:
            return True
        try:
            resp = await self._client.get(
                f"{self.endpoint}/user-payments",
                params={
                    "userAddress": user_address,
                    "service": service,
                    "timeframe": f"{self.pricing.validity_hours}h",
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.warning("Payment lookup failed", service=service, error=str(exc))
            return False
        return data.get("hasValidPayment") is True

    async def require_payment(self, user_address: str, service: str) -> PaymentGateResult:
        if self.skip_payment:
            self.logger.info("Payment skipped in development", service=service)
            return PaymentGateResult(authorized=True)
        if await self.has_valid_payment(user_address, service):
            return PaymentGateResult(authorized=True)
        payment = await self.create_payment(service, user_address)
        return PaymentGateResult(
            authorized=False,
            payment_response=payment,
            message=self.generate_payment_instructions(service),
        )

    def generate_payment_instructions(self, service: str) -> str:
        amount = self.pricing.price_for(service)
        return (
            "Payment Required\n\n"
            f"Service: {service_label(service)}\n"
            f"Amount: {amount} {self.pricing.currency}\n\n"
            "To access this premium feature:\n"
            "1. Connect your wallet\n"
            "2. Scan the QR code or visit the payment link\n"
            "3. Complete the micropayment\n"
            "4. Retry your request\n\n"
            "This enables pay-per-use access to advanced AI features."
        )
