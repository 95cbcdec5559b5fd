"""Agent tool-execution loop with event-driven analytics.

A reasoning service (any litellm model) is given a catalog of Python tools;
the orchestrator runs the tool calls it requests until it answers in text,
publishing every step on an in-process event bus that an analytics listener
persists to SQLite.

Usage:
    from mm_agent import AgentOrchestrator, OrchestratorConfig, ToolCatalog

    async def list_files(directory: str) -> list[str]:
        '''List files in a directory.'''
        ...

    orchestrator = AgentOrchestrator(OrchestratorConfig.from_env())
    orchestrator.register_agent(
        "file", ToolCatalog.from_functions("File Management", "File operations", [list_files]),
    )
    outcome = await orchestrator.run_tool_loop("file", "What's in src/?")

    # Live telemetry
    orchestrator.events.subscribe("tool_error", lambda e: print(e.tool_name, e.error_message))

    # Reporting
    metrics = orchestrator.analytics.get_tool_metrics()
"""

from mm_agent.analytics import AnalyticsListener
from mm_agent.config import OrchestratorConfig
from mm_agent.errors import (
    AgentNotFoundError,
    OrchestratorError,
    ReasoningAuthError,
    ReasoningContentFilterError,
    ReasoningEmptyResponseError,
    ReasoningModelNotFoundError,
    ReasoningQuotaExhaustedError,
    ReasoningRateLimitError,
    ReasoningServiceError,
    ReasoningTransientError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
    classify_error,
    wrap_error,
)
from mm_agent.events import (
    AgentEvent,
    EventBus,
    SessionEndEvent,
    SessionStartEvent,
    ToolCompleteEvent,
    ToolErrorEvent,
    ToolStartEvent,
    parse_event,
)
from mm_agent.metrics_store import (
    AgentMetrics,
    MetricsStore,
    SessionMetrics,
    TimeRange,
    ToolExecutionRecord,
    ToolMetrics,
    ToolUsage,
    WorkflowMetrics,
)
from mm_agent.models import (
    LoopFailure,
    LoopOutcome,
    LoopSuccess,
    Message,
    ReasoningResponse,
    TextBlock,
    ToolInvocationRequest,
    ToolInvocationResult,
)
from mm_agent.orchestrator import AgentOrchestrator
from mm_agent.reasoning import LiteLLMReasoningService, ReasoningService
from mm_agent.session import Session, SessionRegistry
from mm_agent.tools import Tool, ToolCatalog

__all__ = [
    "AgentEvent",
    "AgentMetrics",
    "AgentNotFoundError",
    "AgentOrchestrator",
    "AnalyticsListener",
    "EventBus",
    "LiteLLMReasoningService",
    "LoopFailure",
    "LoopOutcome",
    "LoopSuccess",
    "Message",
    "MetricsStore",
    "OrchestratorConfig",
    "OrchestratorError",
    "ReasoningAuthError",
    "ReasoningContentFilterError",
    "ReasoningEmptyResponseError",
    "ReasoningModelNotFoundError",
    "ReasoningQuotaExhaustedError",
    "ReasoningRateLimitError",
    "ReasoningResponse",
    "ReasoningService",
    "ReasoningServiceError",
    "ReasoningTransientError",
    "Session",
    "SessionEndEvent",
    "SessionMetrics",
    "SessionRegistry",
    "SessionStartEvent",
    "TextBlock",
    "TimeRange",
    "Tool",
    "ToolCatalog",
    "ToolCompleteEvent",
    "ToolErrorEvent",
    "ToolExecutionError",
    "ToolExecutionRecord",
    "ToolInvocationRequest",
    "ToolInvocationResult",
    "ToolMetrics",
    "ToolNotFoundError",
    "ToolStartEvent",
    "ToolTimeoutError",
    "ToolUsage",
    "WorkflowMetrics",
    "classify_error",
    "parse_event",
    "wrap_error",
]
