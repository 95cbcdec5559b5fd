"""History CLI commands: sessions, executions, workflows."""

from __future__ import annotations

import argparse
import dataclasses
import json
from typing import Any

from mm_agent.cli.common import (
    add_common_arguments,
    format_duration,
    format_rate,
    format_timestamp,
    open_store,
    print_table,
)


def _short(value: Any, width: int = 40) -> str:
    text = "-" if value is None else str(value)
    return text if len(text) <= width else text[: width - 3] + "..."


def cmd_sessions(args: argparse.Namespace) -> None:
    with open_store(args) as store:
        sessions = store.get_session_history(args.limit)

    if args.format == "json":
        print(json.dumps(sessions, indent=2, default=str))
        return
    if not sessions:
        print("No sessions found.")
        return

    rows = [
        (
            _short(s["session_id"], 24),
            s["agent_key"],
            format_timestamp(s["started_at"]),
            format_timestamp(s["completed_at"]) if s["completed_at"] is not None else "(open)",
            s["total_tools"],
            s["success_count"],
            s["error_count"],
            _short(s["final_result"]),
        )
        for s in sessions
    ]
    print_table(
        "Recent Sessions",
        ["Session", "Agent", "Started", "Completed", "Tools", "OK", "Err", "Result"],
        rows,
    )


def cmd_executions(args: argparse.Namespace) -> None:
    with open_store(args) as store:
        executions = store.get_recent_executions(args.limit)

    if args.format == "json":
        print(json.dumps(executions, indent=2))
        return
    if not executions:
        print("No tool executions found.")
        return

    rows = [
        (
            format_timestamp(e["started_at"]),
            e["agent_key"],
            e["tool_name"],
            e["status"],
            format_duration(e["duration_ms"]),
            _short(e["error_message"], 30),
        )
        for e in executions
    ]
    print_table("Recent Executions", ["Started", "Agent", "Tool", "Status", "Duration", "Error"], rows)


def cmd_workflows(args: argparse.Namespace) -> None:
    with open_store(args) as store:
        metrics = store.get_workflow_metrics(args.name)

    if args.format == "json":
        print(json.dumps([dataclasses.asdict(m) for m in metrics], indent=2))
        return
    if not metrics:
        print("No workflow executions found.")
        return

    rows = [
        (
            m.workflow_name,
            m.total_executions,
            format_rate(m.success_rate),
            format_duration(m.average_duration_ms),
            format_timestamp(m.last_executed),
        )
        for m in metrics
    ]
    print_table("Workflows", ["Workflow", "Runs", "Success", "Avg Dur", "Last Run"], rows)


def register_parser(subparsers: Any) -> None:
    sessions_p = subparsers.add_parser("sessions", help="Most recent agent sessions")
    sessions_p.add_argument("--limit", type=int, default=50, help="Max sessions to show")
    add_common_arguments(sessions_p)
    sessions_p.set_defaults(handler=cmd_sessions)

    executions_p = subparsers.add_parser("executions", help="Most recent tool executions")
    executions_p.add_argument("--limit", type=int, default=100, help="Max executions to show")
    add_common_arguments(executions_p)
    executions_p.set_defaults(handler=cmd_executions)

    workflows_p = subparsers.add_parser("workflows", help="Workflow execution metrics")
    workflows_p.add_argument("--name", help="Filter to one workflow")
    add_common_arguments(workflows_p)
    workflows_p.set_defaults(handler=cmd_workflows)
