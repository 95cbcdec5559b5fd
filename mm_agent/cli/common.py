"""Shared CLI helpers for mm_agent reporting commands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Sequence

from mm_agent.config import OrchestratorConfig
from mm_agent.metrics_store import MetricsStore, TimeRange


def default_db_path() -> Path:
    return OrchestratorConfig.from_env().resolved_db_path


def open_store(args: argparse.Namespace) -> MetricsStore:
    db_path = Path(args.db) if args.db else default_db_path()
    if not db_path.exists():
        print(
            f"No analytics database at {db_path}. Run an agent with analytics enabled first.",
            file=sys.stderr,
        )
        sys.exit(1)
    return MetricsStore(db_path)


def time_range_from_args(args: argparse.Namespace) -> TimeRange | None:
    days = getattr(args, "days", None)
    if not days:
        return None
    return TimeRange.last(days=days)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db", help="Analytics database path (default: $MM_AGENT_DB_PATH or ./data/analytics.db)")
    parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")


def format_rate(r: float | None) -> str:
    if r is None:
        return "-"
    return f"{r * 100:.1f}%"


def format_duration(ms: float | None) -> str:
    if ms is None:
        return "-"
    if ms >= 1000:
        return f"{ms / 1000:.2f}s"
    return f"{ms:.0f}ms"


def format_timestamp(ms: int | None) -> str:
    if ms is None:
        return "-"
    from datetime import datetime, timezone

    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def print_table(title: str, headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
    col_widths = [max(len(h), 6) for h in headers]
    display_rows = [[str(v) for v in row] for row in rows]
    for row in display_rows:
        for i, v in enumerate(row):
            col_widths[i] = max(col_widths[i], len(v))

    print(f"\n{title}:")
    fmt = "  ".join(f"{{:<{w}}}" for w in col_widths)
    print(fmt.format(*headers))
    print("─" * (sum(col_widths) + 2 * (len(col_widths) - 1)))
    for row in display_rows:
        print(fmt.format(*row))
