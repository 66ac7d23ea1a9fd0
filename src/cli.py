"""Lag tracker CLI entry point."""

from __future__ import annotations

import argparse
import sys


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="lagtrack",
        description="Spot-to-oracle lag tracker for Polymarket crypto price feeds",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Track lags and persist scored signals")
    run.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Config directory path (default: config)",
    )
    run.add_argument(
        "--env",
        type=str,
        default=None,
        help="Environment name (default: from LAGTRACK_ENV)",
    )
    run.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Keep signals in memory instead of writing to TimescaleDB.",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "run":
        store_msg = "memory store" if args.dry_run else "TimescaleDB"
        print(f"Starting lag tracker ({store_msg}, env: {args.env or 'default'})")
        from src.runner import run_tracker

        return run_tracker(config_dir=args.config_dir, env=args.env, dry_run=args.dry_run)

    return 0


if __name__ == "__main__":
    sys.exit(main())
