from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic.alias_generators import to_camel

from . import GatewayError, InvalidRequestError, PaymentRequiredError
from .core import logger
from .network_config import chain_id_for_name, get_supported_chains, load_chain_config
from .payments import service_label
from .portfolio import analyze_strategies, format_portfolio, format_strategies
from .schemas import (
    ChatRequest,
    PaymentCreateRequest,
    PaymentVerifyRequest,
    RebalanceRequest,
    StrategyExecutionRequest,
    SwapRequest,
    TradeRequest,
    WalletValidationRequest,
)
from .services import Services, build_services
from .tokens import categorize_tokens, fallback_tokens, popular_tokens

SWAP_SERVICE = "trade_execution"
ANALYSIS_SERVICE = "portfolio_analysis"
GATEWAY_VERSION = "1.0.0"

_log = logger.bind(component="api")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require(body: Any, *fields: str) -> None:
    data = body.model_dump()
    missing = [f for f in fields if not data.get(f)]
    if missing:
        raise InvalidRequestError(
            "Missing required parameters", details={"required": [to_camel(f) for f in fields]}
        )


def _with_trading_defaults(body: SwapRequest, svc: Services) -> SwapRequest:
    config = svc.trading_config
    return body.model_copy(
        update={
            "slippage": config["default_slippage"] if body.slippage is None else body.slippage,
            "deadline": config["default_deadline_seconds"] if body.deadline is None else body.deadline,
        }
    )


async def _require_payment(
    svc: Services, address: str, service: str, message: str, description: Optional[str] = None
) -> None:
    gate = await svc.payments.require_payment(address, service)
    if gate.authorized:
        return
    details: Dict[str, Any] = {
        "service": service,
        "amount": svc.payments.pricing.price_for(service),
        "currency": svc.payments.pricing.currency,
    }
    if description:
        details["description"] = description
    raise PaymentRequiredError(
        message,
        payment=gate.payment_response.to_wire() if gate.payment_response else None,
        details=details,
    )


def create_app(services: Services | None = None) -> FastAPI:
    svc_instance = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if svc_instance.automation_enabled:
            svc_instance.automation.start()
        try:
            yield
        finally:
            await svc_instance.aclose()

    app = FastAPI(title="AURA Gateway", version="0.1", lifespan=lifespan)

    def get_services() -> Services:
        return svc_instance

    @app.exception_handler(PaymentRequiredError)
    async def payment_required_handler(request: Request, exc: PaymentRequiredError) -> JSONResponse:
        content = {"success": False, "error": exc.message, "payment": exc.payment, **exc.details}
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        content: Dict[str, Any] = {"success": False, "error": exc.message}
        if exc.details:
            content["details"] = exc.details
        if exc.status_code >= 500:
            _log.error("Request failed", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        _log.error("Unhandled error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "details": str(exc)},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    # Portfolio
    @app.get("/api/asset")
    async def asset(
        address: Optional[str] = Query(default=None),
        svc: Services = Depends(get_services),
    ) -> dict:
        if not address:
            raise InvalidRequestError("Valid wallet address is required")
        raw = await svc.aura.get_balances(address)
        return {"success": True, "data": format_portfolio(raw).to_wire(), "rawData": raw}

    @app.get("/api/asset-with-payment")
    async def asset_with_payment(
        address: Optional[str] = Query(default=None),
        svc: Services = Depends(get_services),
    ) -> dict:
        if not address:
            raise InvalidRequestError("Wallet address is required")
        await _require_payment(svc, address, ANALYSIS_SERVICE, "Payment Required")
        raw = await svc.aura.get_balances(address)
        return {
            "success": True,
            "data": format_portfolio(raw).to_wire(),
            "rawData": raw,
            "payment": {
                "status": "verified",
                "service": ANALYSIS_SERVICE,
                "message": "Payment verified - premium analysis enabled",
            },
        }

    @app.get("/api/strategies")
    async def strategies(
        address: Optional[str] = Query(default=None),
        svc: Services = Depends(get_services),
    ) -> dict:
        if not address:
            raise InvalidRequestError("Valid wallet address is required")
        raw = await svc.aura.get_strategies(address)
        formatted = format_strategies(raw)
        return {
            "success": True,
            "data": {
                "strategies": [s.to_wire() for s in formatted],
                "analysis": analyze_strategies(formatted).to_wire(),
            },
            "rawData": raw,
        }

    @app.post("/api/chat")
    async def chat(body: ChatRequest, svc: Services = Depends(get_services)) -> dict:
        if not body.address:
            raise InvalidRequestError("Wallet address is required")
        return await svc.advisor.chat(body.address, body.message)

    # AURA trade API
    @app.post("/api/trade")
    async def trade(body: TradeRequest, svc: Services = Depends(get_services)) -> dict:
        _require(body, "address", "from_token", "to_token", "amount")
        return await svc.trader.execute_trade(
            body.address,
            body.from_token,
            body.to_token,
            body.amount,
            body.slippage,
            body.automation_rules,
        )

    @app.post("/api/rebalance")
    async def rebalance(body: RebalanceRequest, svc: Services = Depends(get_services)) -> dict:
        _require(body, "address", "target_allocations")
        return await svc.rebalancer.rebalance(
            body.address,
            body.target_allocations,
            body.slippage,
            body.execute_immediately,
        )

    # Uniswap swaps
    @app.post("/api/swap/quote")
    async def swap_quote(body: SwapRequest, svc: Services = Depends(get_services)):
        _require(body, "wallet_address", "token_in", "token_out", "amount_in")
        body = _with_trading_defaults(body, svc)
        await _require_payment(
            svc,
            body.wallet_address,
            SWAP_SERVICE,
            "Payment Required for Swap Quote",
            "Premium swap quotes with optimal routing and MEV protection",
        )
        try:
            quote = await svc.quotes.get_swap_quote(
                chain_id_for_name(body.chain),
                body.token_in,
                body.token_out,
                amount_in=body.amount_in,
                slippage=body.slippage,
            )
        except GatewayError as exc:
            _log.warning("Swap quote failed", error=exc.message)
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "success": False,
                    "error": exc.message,
                    "details": exc.details,
                    "fallback": {
                        "message": "Service temporarily unavailable. Try manual swap:",
                        "uniswapUrl": (
                            "https://app.uniswap.org/#/swap"
                            f"?inputCurrency={body.token_in}&outputCurrency={body.token_out}"
                        ),
                    },
                },
            )

        wire = quote.to_wire()
        wire["auraEnhancements"] = {
            "mevProtection": True,
            "optimalRouting": True,
            "gasOptimization": True,
            "priceImpactWarning": (
                "High price impact detected. Consider reducing trade size."
                if float(quote.price_impact) > 3
                else None
            ),
        }
        return {
            "success": True,
            "payment": {"status": "verified", "service": SWAP_SERVICE},
            "quote": wire,
            "instructions": {
                "nextSteps": [
                    "1. Review the quote details above",
                    "2. Use execute swap API to proceed",
                    "3. Confirm the transaction in your wallet",
                    "4. Wait for blockchain confirmation",
                ],
                "estimatedTime": "2-5 minutes",
                "network": body.chain.upper(),
                "gasEstimate": quote.estimated_gas,
            },
            "metadata": {
                "timestamp": _now_iso(),
                "chain": body.chain,
                "provider": "uniswap-v3",
                "auraVersion": GATEWAY_VERSION,
            },
        }

    @app.post("/api/swap/execute")
    async def swap_execute(body: SwapRequest, svc: Services = Depends(get_services)):
        _require(body, "wallet_address", "token_in", "token_out", "amount_in", "amount_out_min")
        body = _with_trading_defaults(body, svc)
        await _require_payment(
            svc, body.wallet_address, SWAP_SERVICE, "Payment Required for Swap Execution"
        )
        chain_id = chain_id_for_name(body.chain)
        try:
            result = await svc.swaps.execute_swap(
                chain_id,
                body.token_in,
                body.token_out,
                amount_in=body.amount_in,
                slippage=body.slippage,
                deadline_minutes=max(1, body.deadline // 60),
                private_key=svc.private_key,
                amount_out_min=body.amount_out_min,
            )
        except GatewayError as exc:
            _log.error("Swap execution failed", error=exc.message)
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "success": False,
                    "error": "Swap execution failed",
                    "details": exc.message,
                    "recovery": {
                        "message": "Transaction may have failed. Please check your wallet and try again.",
                        "checkSteps": [
                            "Check your wallet for any pending transactions",
                            "Verify you have sufficient balance and gas",
                            "Try reducing the trade amount or increasing slippage",
                            "Contact support if the issue persists",
                        ],
                    },
                },
            )

        return {
            "success": True,
            "payment": {"status": "verified", "service": SWAP_SERVICE},
            "execution": {
                "transactionHash": result.tx_hash,
                "approvalTransactionHash": result.approval_tx_hash,
                "status": "confirmed",
                "gasUsed": result.gas_used,
            },
            "trade": {
                "tokenIn": body.token_in,
                "tokenOut": body.token_out,
                "amountIn": result.amount_in,
                "amountOut": result.output_amount,
                "minimumReceived": result.minimum_received,
                "slippage": body.slippage,
                "chain": body.chain,
                "timestamp": _now_iso(),
            },
            "links": {"explorer": load_chain_config(chain_id).tx_url(result.tx_hash)},
            "metadata": {
                "provider": "uniswap-v3",
                "auraVersion": GATEWAY_VERSION,
                "executedAt": _now_iso(),
            },
        }

    @app.get("/api/swap/tokens")
    async def swap_tokens(chain: str = Query(default="ethereum")) -> dict:
        tokens = fallback_tokens(chain)
        return {
            "success": True,
            "tokens": tokens,
            "supportedChains": get_supported_chains(),
            "chain": chain,
            "metadata": {"totalTokens": len(tokens), "lastUpdated": _now_iso()},
            "popularTokens": popular_tokens(chain),
            "categories": categorize_tokens(tokens),
        }

    # x402 payments
    @app.post("/api/payment/create")
    async def payment_create(body: PaymentCreateRequest, svc: Services = Depends(get_services)):
        _require(body, "wallet_address", "service")
        amount = svc.payments.pricing.price_for(body.service)
        payment = await svc.payments.create_payment(body.service, body.wallet_address)
        if not payment.success:
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Failed to create payment",
                    "details": payment.error,
                },
            )
        label = service_label(body.service)
        currency = svc.payments.pricing.currency
        wire = payment.to_wire()
        wire["instructions"] = (
            f"Payment Required for {label}\n\n"
            f"Amount: {amount} {currency}\n"
            f"Service: {label}\n\n"
            "To complete payment:\n"
            "1. Scan the QR code with your wallet\n"
            "2. Or visit the payment URL\n"
            f"3. Send exactly {amount} {currency}\n"
            "4. Use the verify endpoint to confirm payment\n\n"
            f"Payment ID: {payment.payment_id}"
        )
        return {"success": True, "payment": wire}

    @app.post("/api/payment/verify")
    async def payment_verify(body: PaymentVerifyRequest, svc: Services = Depends(get_services)) -> dict:
        if not body.payment_id:
            raise InvalidRequestError("Missing paymentId parameter")
        verification = await svc.payments.verify_payment(body.payment_id)
        hours = svc.payments.pricing.validity_hours
        if verification.is_paid:
            message = "Payment verified successfully! You can now access premium features."
            next_steps = [
                "You now have access to premium features",
                "Call the paid endpoint again to access the service",
                f"Payment is valid for {hours} hours",
            ]
        else:
            message = "Payment is still pending. Please complete the transaction and try again."
            next_steps = [
                "Complete the payment using the provided QR code or payment URL",
                "Wait for blockchain confirmation (usually 1-2 minutes)",
                "Retry verification after payment is sent",
            ]
        return {
            "success": True,
            "verification": {
                "paymentId": body.payment_id,
                "status": "COMPLETED" if verification.is_paid else "PENDING",
                **verification.to_wire(),
            },
            "message": message,
            "nextSteps": next_steps,
        }

    # Strategies and automation
    @app.post("/api/execute-strategy")
    async def execute_strategy(
        body: StrategyExecutionRequest, svc: Services = Depends(get_services)
    ) -> dict:
        if not body.address or not body.strategy_id:
            raise InvalidRequestError("Address and strategyId are required")
        result = await svc.strategy_executor.execute_strategy(
            body.address,
            body.strategy_id,
            risk_tolerance=body.risk_tolerance,
            max_slippage=body.max_slippage,
            max_gas_price=body.max_gas_price,
            auto_execute=body.auto_execute,
        )
        return result.to_wire()

    @app.get("/api/automation")
    async def automation_get(
        user_id: Optional[str] = Query(default=None, alias="userId"),
        action: Optional[str] = Query(default=None),
        svc: Services = Depends(get_services),
    ) -> dict:
        if action == "status":
            return await svc.automation.get_status()
        if not user_id:
            raise InvalidRequestError("userId is required")
        rules = await svc.automation.get_rules(user_id)
        return {"success": True, "rules": [r.to_wire() for r in rules]}

    @app.post("/api/automation", status_code=201)
    async def automation_create(
        payload: Dict[str, Any] = Body(...), svc: Services = Depends(get_services)
    ) -> dict:
        if payload.get("action") != "create":
            raise InvalidRequestError("Invalid action")
        rule = await svc.automation.create_rule(payload)
        return {"success": True, "rule": rule.to_wire()}

    @app.put("/api/automation")
    async def automation_update(
        payload: Dict[str, Any] = Body(...), svc: Services = Depends(get_services)
    ) -> dict:
        updates = dict(payload)
        rule_id = updates.pop("ruleId", None)
        if not rule_id:
            raise InvalidRequestError("ruleId is required")
        rule = await svc.automation.update_rule(rule_id, updates)
        return {"success": True, "rule": rule.to_wire()}

    @app.delete("/api/automation")
    async def automation_delete(
        rule_id: Optional[str] = Query(default=None, alias="ruleId"),
        svc: Services = Depends(get_services),
    ) -> dict:
        if not rule_id:
            raise InvalidRequestError("ruleId is required")
        await svc.automation.delete_rule(rule_id)
        return {"success": True}

    @app.post("/api/validate-wallet")
    async def validate_wallet(
        body: WalletValidationRequest, svc: Services = Depends(get_services)
    ) -> dict:
        if not body.address:
            raise InvalidRequestError("Wallet address is required")
        result = await svc.wallet_validator.validate(body.address, body.expected_network)
        return result.to_wire()

    return app
