"""CLI command modules for ``python -m mm_agent``."""

from mm_agent.cli.history import (
    cmd_executions,
    cmd_sessions,
    cmd_workflows,
    register_parser as register_history_parser,
)
from mm_agent.cli.metrics import (
    cmd_agent,
    cmd_errors,
    cmd_tools,
    register_parser as register_metrics_parser,
)

__all__ = [
    "cmd_agent",
    "cmd_errors",
    "cmd_executions",
    "cmd_sessions",
    "cmd_tools",
    "cmd_workflows",
    "register_history_parser",
    "register_metrics_parser",
]
