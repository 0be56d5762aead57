"""Command-line interface for the asset tracker."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import load_config
from .logging_setup import configure_logging
from .services import AssetTracker


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="asset-tracker",
        description="Track on-chain assets and their exchange rates",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--account",
        default=None,
        help="Account address to select (default: tracker.selected_account)",
    )
    parser.add_argument(
        "--chain-id",
        default=None,
        help="Chain id to select (default: tracker.chain_id)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("rates", help="Load configured assets and print their rates once")

    watch_parser = sub.add_parser("watch", help="Poll exchange rates continuously")
    watch_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Polling interval in seconds (overrides config)",
    )

    return parser


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    tracker = AssetTracker(config)

    if args.account:
        tracker.select_account(args.account)
    if args.chain_id:
        tracker.switch_network(args.chain_id)

    if args.command == "rates":
        try:
            await tracker.load_configured_assets()
            await tracker.check_rates()
        finally:
            await tracker.close()
    elif args.command == "watch":
        await tracker.run_continuous(args.interval)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
