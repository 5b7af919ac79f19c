__all__ = [
    "GatewayError",
    "ContextOverflowError",
    "InvalidRequestError",
    "PaymentRequiredError",
    "UpstreamError",
    "UnsupportedChainError",
    "InsufficientBalanceError",
    "SwapError",
    "SafetyCheckError",
    "RuleNotFoundError",
]


class GatewayError(Exception):
    """Base exception for gateway operations."""

    status_code = 500

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ContextOverflowError(GatewayError):
    """Raised when advisor context exceeds token limits after trimming."""
    pass


class InvalidRequestError(GatewayError):
    """Raised for malformed or incomplete requests."""

    status_code = 400


class PaymentRequiredError(GatewayError):
    """Raised when a paid service is called without a valid payment."""

    status_code = 402

    def __init__(self, message: str, *, payment: dict | None = None, details: dict | None = None):
        super().__init__(message, details=details)
        self.payment = payment or {}


class UpstreamError(GatewayError):
    """Raised when AURA, OpenAI or the payment backend cannot be reached."""

    status_code = 502


class UnsupportedChainError(GatewayError):
    """Raised for chain ids missing from the chain registry."""

    status_code = 400


class InsufficientBalanceError(GatewayError):
    """Raised when the signing wallet holds none of the input token."""

    status_code = 400


class SwapError(GatewayError):
    """Raised when a swap reverts or the provider rejects it."""
    pass


class SafetyCheckError(GatewayError):
    """Raised when a strategy plan fails a pre-execution safety check."""

    status_code = 400


class RuleNotFoundError(GatewayError):
    """Raised when an automation rule id is unknown."""

    status_code = 404
