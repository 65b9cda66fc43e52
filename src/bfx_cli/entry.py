"""Console entry point for the helper.

After ``pip install .`` the ``bfx-helper`` command is available:

    bfx-helper get v2/platform/status
    bfx-helper post v2/auth/r/wallets
    bfx-helper post v1/balances --verbose
    bfx-helper post v2/auth/w/order/update --body '{"id": 1, "amount": "10"}'
    bfx-helper ws-auth --delay 250 --dms
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import orjson
from rich.console import Console

from gateway import ApiHelper, HelperError, TransportError

log = logging.getLogger("bfx_helper")


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bfx-helper", description="Bitfinex API helper")
    parser.add_argument("--credentials", default="credentials.json",
                        help="JSON/YAML file with key and secret")
    parser.add_argument("--defaults", default="defaults.json",
                        help="JSON/YAML file with per-request defaults")
    parser.add_argument("--quiet", action="store_true",
                        help="Suppress missing-credentials warnings")
    parser.add_argument("--verbose", action="store_true",
                        help="Log raw request and response")
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, auth_default in (("get", False), ("post", True)):
        p = sub.add_parser(name, help=f"Send a {name.upper()} request")
        p.add_argument("path", help="API path, starting with v1/ or v2/")
        p.add_argument("--body", default=None, help="JSON request body")
        p.add_argument("--nonce", default=None, help="Override the generated nonce")
        auth = p.add_mutually_exclusive_group()
        auth.add_argument("--auth", dest="authenticated", action="store_true")
        auth.add_argument("--no-auth", dest="authenticated", action="store_false")
        p.set_defaults(authenticated=auth_default)

    ws = sub.add_parser("ws-auth", help="Open and authenticate a socket, print the auth frame")
    ws.add_argument("--delay", type=int, default=0, metavar="MS",
                    help="Settle delay after authentication")
    ws.add_argument("--dms", action="store_true", help="Enable dead-man's switch")
    ws.add_argument("--filter", nargs="+", default=None, help="Auth channel filters")
    return parser


async def run(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    console = console or Console()
    overrides = {"verboseOutput": True} if args.verbose else {}

    async with ApiHelper(args.credentials, args.quiet, args.defaults) as helper:
        try:
            if args.command == "ws-auth":
                overrides.update({"dms": args.dms or None, "filter": args.filter})
                session = await helper.open_socket(overrides, args.delay)
                console.print_json(data=session.auth_frame)
                await session.close()
                return 0

            body = orjson.loads(args.body) if args.body else None
            ctx = helper.set_context(args.path, body, overrides)
            result = await ctx.transmit(args.command.upper(), args.authenticated, args.nonce)
            result.print_response(console)
            return 0
        except TransportError as e:
            log.error("%s", e)
            return 2
        except HelperError as e:
            log.error("%s", e)
            return 1


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging("INFO" if args.verbose else args.log_level)
    sys.exit(asyncio.run(run(args)))
