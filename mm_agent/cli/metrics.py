"""Aggregate metrics CLI commands: tools, agent, errors."""

from __future__ import annotations

import argparse
import dataclasses
import json
from typing import Any

from mm_agent.cli.common import (
    add_common_arguments,
    format_duration,
    format_rate,
    open_store,
    print_table,
    time_range_from_args,
)
from mm_agent.metrics_store import ToolUsage


def _usage_rows(usages: list[ToolUsage]) -> list[tuple[Any, ...]]:
    return [
        (u.name, u.count, format_rate(u.success_rate), format_duration(u.average_duration_ms))
        for u in usages
    ]


# ---------------------------------------------------------------------------
# tools subcommand
# ---------------------------------------------------------------------------


def cmd_tools(args: argparse.Namespace) -> None:
    with open_store(args) as store:
        time_range = time_range_from_args(args)
        metrics = store.get_tool_metrics(time_range)
        top = store.get_top_tools(args.limit, time_range)

    if args.format == "json":
        data = dataclasses.asdict(metrics)
        data["top_tools"] = [dataclasses.asdict(u) for u in top]
        print(json.dumps(data, indent=2))
        return

    print(
        f"\nTool executions: {metrics.total_executions}  "
        f"success rate: {format_rate(metrics.success_rate)}  "
        f"mean duration: {format_duration(metrics.average_duration_ms)}  "
        f"errors: {metrics.error_count}"
    )
    if not top:
        print("No tool executions found.")
        return
    print_table("Top Tools", ["Tool", "Calls", "Success", "Avg Dur"], _usage_rows(top))


# ---------------------------------------------------------------------------
# agent subcommand
# ---------------------------------------------------------------------------


def cmd_agent(args: argparse.Namespace) -> None:
    with open_store(args) as store:
        metrics = store.get_agent_metrics(args.agent_key, time_range_from_args(args))

    if args.format == "json":
        print(json.dumps(dataclasses.asdict(metrics), indent=2))
        return

    print(f"\nAgent: {metrics.agent_key}")
    print(
        f"  Sessions: {metrics.total_sessions}  Executions: {metrics.total_executions}  "
        f"Tools/session: {metrics.average_tools_per_session:.2f}"
    )
    print(
        f"  Success rate: {format_rate(metrics.success_rate)}  "
        f"Mean duration: {format_duration(metrics.average_duration_ms)}"
    )
    if metrics.popular_tools:
        print_table("Popular Tools", ["Tool", "Calls", "Success", "Avg Dur"], _usage_rows(metrics.popular_tools))


# ---------------------------------------------------------------------------
# errors subcommand
# ---------------------------------------------------------------------------


def cmd_errors(args: argparse.Namespace) -> None:
    with open_store(args) as store:
        rate = store.get_error_rate(time_range_from_args(args))

    if args.format == "json":
        print(json.dumps({"days": args.days, "error_rate": rate}, indent=2))
        return
    window = f"last {args.days} day(s)" if args.days else "all time"
    print(f"Error rate ({window}): {format_rate(rate)}")


def register_parser(subparsers: Any) -> None:
    tools_p = subparsers.add_parser("tools", help="Tool execution metrics and top tools")
    tools_p.add_argument("--days", type=float, help="Only include the last N days")
    tools_p.add_argument("--limit", type=int, default=10, help="Max tools to list")
    add_common_arguments(tools_p)
    tools_p.set_defaults(handler=cmd_tools)

    agent_p = subparsers.add_parser("agent", help="Per-agent rollup")
    agent_p.add_argument("agent_key", help="Agent key, e.g. 'file'")
    agent_p.add_argument("--days", type=float, help="Only include the last N days")
    add_common_arguments(agent_p)
    agent_p.set_defaults(handler=cmd_agent)

    errors_p = subparsers.add_parser("errors", help="Tool error rate over a window")
    errors_p.add_argument("--days", type=float, default=1.0, help="Window size in days (0 for all time)")
    add_common_arguments(errors_p)
    errors_p.set_defaults(handler=cmd_errors)
