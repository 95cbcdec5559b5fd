"""Analytics reporting CLI for mm_agent.

Usage:
    python -m mm_agent tools                       # tool metrics + top tools
    python -m mm_agent tools --days 7 --limit 5
    python -m mm_agent agent file                  # per-agent rollup
    python -m mm_agent errors --days 1             # error rate, last day
    python -m mm_agent sessions --limit 20         # recent sessions
    python -m mm_agent executions                  # recent tool executions
    python -m mm_agent workflows --name nightly    # workflow metrics
    python -m mm_agent tools --format json --db data/analytics.db
"""

from __future__ import annotations

import argparse
import logging
import sys

from mm_agent.cli import register_history_parser, register_metrics_parser


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="mm_agent",
        description="Agent tool-execution analytics",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", help="Available commands")
    register_metrics_parser(sub)
    register_history_parser(sub)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)
    args.handler(args)


if __name__ == "__main__":
    main()
