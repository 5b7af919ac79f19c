"""Configuration getters shared by the API, the MCP server and the CLI."""

import os

from .core import logger

# Configuration constants
DEFAULT_AURA_API_URL = "https://aura.adex.network/api"
DEFAULT_X402_PAYMENT_ENDPOINT = "https://x402.adex.network"
DEFAULT_X402_RECIPIENT = "0xd3a12CA02256CD74AD8659974cfF36f62Aa0485c"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///aura_gateway.db"
DEFAULT_PRICING_PATH = "aura_pricing.yml"
HTTP_TIMEOUT_SECONDS = 30.0
RECEIPT_TIMEOUT_SECONDS = 120
DEFAULT_SLIPPAGE_PERCENT = 0.5
MAX_SLIPPAGE_PERCENT = 5.0
DEFAULT_DEADLINE_SECONDS = 1800
PAYMENT_VALIDITY_HOURS = 24
MONITORING_INTERVAL_SECONDS = 60
DEFAULT_COOLDOWN_MINUTES = 60
DEFAULT_MAX_GAS_PRICE_GWEI = 50.0
MAX_PLAN_GAS = 1_000_000
MAX_PRICE_IMPACT_PERCENT = 5.0
STRATEGY_STEP_DELAY_SECONDS = 2.0
REBALANCE_TRADE_DELAY_SECONDS = 1.0

DEFAULT_MAX_TOKENS = 8192
DEFAULT_COMPLETION_TOKENS = 800

REQUIRED_ENV_VARS = ("OPENAI_API_KEY",)


def get_aura_api_url() -> str:
    """AURA API base URL.

    The browser-facing ``NEXT_PUBLIC_AURA_API_URL`` name is honoured so an
    existing deployment environment keeps working.
    """
    url = os.getenv("AURA_API_URL") or os.getenv("NEXT_PUBLIC_AURA_API_URL")
    return (url or DEFAULT_AURA_API_URL).rstrip("/")


def get_openai_api_key() -> str | None:
    """Get OpenAI API key from environment."""
    return os.getenv("OPENAI_API_KEY")


def get_openai_model() -> str:
    """Get OpenAI model name from environment."""
    return os.getenv("OPENAI_MODEL", "gpt-4o-mini")


def get_context_budget() -> dict:
    """Token budget for advisor conversations."""
    return {
        "max_tokens": int(os.getenv("ADVISOR_MAX_TOKENS", DEFAULT_MAX_TOKENS)),
        "completion_max_tokens": int(
            os.getenv("ADVISOR_COMPLETION_TOKENS", DEFAULT_COMPLETION_TOKENS)
        ),
    }


def get_wallet_private_key() -> str | None:
    """Key used to sign swaps submitted through the gateway."""
    return os.getenv("WALLET_PRIVATE_KEY") or None


def get_payment_config() -> dict:
    """x402 payment backend settings."""
    return {
        "endpoint": os.getenv("X402_PAYMENT_ENDPOINT", DEFAULT_X402_PAYMENT_ENDPOINT).rstrip("/"),
        "recipient": os.getenv("X402_WALLET_ADDRESS", DEFAULT_X402_RECIPIENT),
        "validity_hours": int(os.getenv("X402_PAYMENT_VALIDITY_HOURS", PAYMENT_VALIDITY_HOURS)),
        "skip_payment": should_skip_payment(),
    }


def is_development() -> bool:
    env = os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "production"
    return env.lower() == "development"


def should_skip_payment() -> bool:
    """Payment bypass is only honoured in development mode."""
    return os.getenv("SKIP_PAYMENT", "").lower() == "true" and is_development()


def get_trading_config() -> dict:
    return {
        "default_slippage": float(os.getenv("DEFAULT_SLIPPAGE", DEFAULT_SLIPPAGE_PERCENT)),
        "max_slippage": float(os.getenv("MAX_SLIPPAGE", MAX_SLIPPAGE_PERCENT)),
        "default_deadline_seconds": DEFAULT_DEADLINE_SECONDS,
    }


def get_automation_config() -> dict:
    return {
        "monitoring_interval": int(
            os.getenv("AUTOMATION_INTERVAL_SECONDS", MONITORING_INTERVAL_SECONDS)
        ),
        "enabled": os.getenv("AUTOMATION_ENABLED", "true").lower() == "true",
    }


def get_database_url() -> str:
    """Get database URL from environment or use default."""
    return os.getenv("AURA_GATEWAY_DATABASE_URL", DEFAULT_DATABASE_URL)


def use_database_store() -> bool:
    """Persist rules and payments in SQL instead of process memory."""
    return os.getenv("AURA_GATEWAY_STORE", "memory").lower() == "sql"


def get_pricing_path() -> str:
    return os.getenv("AURA_PRICING_PATH", DEFAULT_PRICING_PATH)


def get_api_config() -> dict:
    """HTTP server configuration."""
    return {
        "host": os.getenv("API_HOST", "127.0.0.1"),
        "port": int(os.getenv("API_PORT", "3000")),
        "log_level": os.getenv("API_LOG_LEVEL", "info"),
    }


def validate_config() -> dict:
    """Report missing required settings without failing startup."""
    missing = [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]
    if missing:
        logger.warning("Missing environment variables", missing=missing)
    return {"valid": not missing, "missing": missing}
