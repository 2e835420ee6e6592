"""Operator commands for partner tokens.

Example usages::

    # Log in again and overwrite the stored ThirdParty token.
    partner-gateway refresh-token thirdparty

    # Make sure a named Docman token is valid, refreshing only if needed.
    partner-gateway ensure-token docman branch-office

    # Run the proactive refresher without the HTTP server.
    partner-gateway schedule --interval 60
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Callable, Optional, Sequence

from partner_gateway.core.config import get_settings
from partner_gateway.core.errors import PartnerError
from partner_gateway.core.logging import configure_logging
from partner_gateway.dependencies import get_brokers
from partner_gateway.services import TokenBroker, TokenRefreshScheduler

EXIT_OK = 0
EXIT_FAILURE = 1

PARTNERS = ("thirdparty", "docman")


def _broker(partner: str) -> TokenBroker:
    return get_brokers()[partner]


def _refresh_token(args: argparse.Namespace) -> int:
    broker = _broker(args.partner)
    try:
        record = asyncio.run(broker.force_refresh(args.name))
    except PartnerError as exc:
        print(f"{args.partner} token refresh failed: {exc.message}", file=sys.stderr)
        return EXIT_FAILURE
    expires_at = record.expires_at.isoformat() if record.expires_at else "unknown"
    print(f"{args.partner} token refreshed for name: {record.name} (expires {expires_at}).")
    return EXIT_OK


def _ensure_token(args: argparse.Namespace) -> int:
    broker = _broker(args.partner)
    try:
        asyncio.run(broker.get_valid_token(args.name))
    except PartnerError as exc:
        print(f"{args.partner} token unavailable: {exc.message}", file=sys.stderr)
        return EXIT_FAILURE
    status = broker.token_status(args.name)
    print(f"{args.partner} token {status['name']} valid until {status['expires_at']}.")
    return EXIT_OK


def _schedule(args: argparse.Namespace) -> int:
    interval = args.interval or get_settings().scheduler.interval_seconds
    scheduler = TokenRefreshScheduler(list(get_brokers().values()), interval_seconds=interval)
    try:
        asyncio.run(scheduler.run_forever())
    except KeyboardInterrupt:
        print("Token refresh scheduler stopped.")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="partner-gateway",
        description="Manage partner API tokens.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    refresh = subparsers.add_parser(
        "refresh-token", help="Log in and overwrite the stored token."
    )
    refresh.add_argument("partner", choices=PARTNERS)
    refresh.add_argument("name", nargs="?", default=None, help="Token record name.")
    refresh.set_defaults(handler=_refresh_token)

    ensure = subparsers.add_parser(
        "ensure-token", help="Refresh the token only when it is near expiry."
    )
    ensure.add_argument("partner", choices=PARTNERS)
    ensure.add_argument("name", nargs="?", default=None, help="Token record name.")
    ensure.set_defaults(handler=_ensure_token)

    schedule = subparsers.add_parser(
        "schedule", help="Keep every partner token warm on a fixed interval."
    )
    schedule.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between checks (defaults to SCHEDULER_INTERVAL_SECONDS).",
    )
    schedule.set_defaults(handler=_schedule)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging(get_settings().log_level)
    args = build_parser().parse_args(argv)
    handler: Callable[[argparse.Namespace], int] = args.handler
    return handler(args)


if __name__ == "__main__":  # pragma: no cover - manual execution path
    sys.exit(main())
