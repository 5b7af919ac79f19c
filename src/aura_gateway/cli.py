from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

import uvicorn

from .config import get_api_config, get_database_url, validate_config
from .core import logger
from .network_config import chain_id_for_name
from .services import build_services
from .tokens import categorize_tokens, fallback_tokens, popular_tokens


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _cmd_serve(args):
    from .api import create_app

    validate_config()
    app = create_app(build_services())
    config = uvicorn.Config(
        app,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
    )
    server = uvicorn.Server(config)
    await server.serve()


async def _cmd_mcp(args):
    from .server import main as mcp_main

    await mcp_main()


async def _cmd_quote(args):
    svc = build_services()
    try:
        quote = await svc.quotes.get_swap_quote(
            chain_id_for_name(args.chain),
            args.token_in,
            args.token_out,
            amount_in=args.amount,
            slippage=args.slippage,
        )
        _print(quote.to_wire())
    finally:
        await svc.aclose()


async def _cmd_tokens(args):
    tokens = fallback_tokens(args.chain)
    _print(
        {
            "chain": args.chain,
            "tokens": tokens,
            "popularTokens": popular_tokens(args.chain),
            "categories": categorize_tokens(tokens),
        }
    )


async def _cmd_payment_create(args):
    svc = build_services()
    try:
        payment = await svc.payments.create_payment(args.service, args.wallet_address)
        _print(payment.to_wire())
    finally:
        await svc.aclose()


async def _cmd_payment_verify(args):
    svc = build_services()
    try:
        verification = await svc.payments.verify_payment(args.payment_id)
        _print(verification.to_wire())
    finally:
        await svc.aclose()


async def _cmd_validate_wallet(args):
    svc = build_services()
    try:
        result = await svc.wallet_validator.validate(args.address, args.network)
        _print(result.to_wire())
    finally:
        await svc.aclose()


async def _cmd_init_db(args):
    from .db.engine import init_db

    url = args.database_url or get_database_url()
    await init_db(url)
    logger.info("Database initialized", database_url=url)


def main() -> None:  # pragma: no cover
    api_config = get_api_config()
    p = argparse.ArgumentParser(prog="aura-gateway", description="AURA gateway CLI")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("serve", help="run the HTTP API")
    s.add_argument("--host", default=api_config["host"])
    s.add_argument("--port", type=int, default=api_config["port"])
    s.add_argument("--log-level", default=api_config["log_level"])
    s.set_defaults(func=_cmd_serve)

    s = sub.add_parser("mcp", help="run the MCP tool server on stdio")
    s.set_defaults(func=_cmd_mcp)

    s = sub.add_parser("quote")
    s.add_argument("token_in")
    s.add_argument("token_out")
    s.add_argument("amount")
    s.add_argument("--slippage", type=float, default=0.5)
    s.add_argument("--chain", default="ethereum")
    s.set_defaults(func=_cmd_quote)

    s = sub.add_parser("tokens")
    s.add_argument("--chain", default="ethereum")
    s.set_defaults(func=_cmd_tokens)

    pay = sub.add_parser("payment")
    psub = pay.add_subparsers(dest="p_cmd", required=True)

    s = psub.add_parser("create")
    s.add_argument("wallet_address")
    s.add_argument("service")
    s.set_defaults(func=_cmd_payment_create)

    s = psub.add_parser("verify")
    s.add_argument("payment_id")
    s.set_defaults(func=_cmd_payment_verify)

    s = sub.add_parser("validate-wallet")
    s.add_argument("address")
    s.add_argument("--network", default="ethereum")
    s.set_defaults(func=_cmd_validate_wallet)

    s = sub.add_parser("init-db")
    s.add_argument("--database-url")
    s.set_defaults(func=_cmd_init_db)

    args = p.parse_args()
    asyncio.run(args.func(args))
