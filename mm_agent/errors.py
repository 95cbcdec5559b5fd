"""Structured error types for mm_agent.

Tool-level failures never unwind the tool loop; they are converted into error
results that the reasoning service sees on its next turn. Reasoning-service
failures always abort the loop and surface as ``LoopFailure``:

    from mm_agent.errors import AgentNotFoundError, ReasoningServiceError

    try:
        outcome = await orchestrator.run_tool_loop("file", "List the src/ files")
    except AgentNotFoundError:
        # No catalog registered under that key; nothing was executed
        ...
    if not outcome.success:
        print(outcome.error_type, outcome.error)
"""

from __future__ import annotations

from typing import Any


class OrchestratorError(Exception):
    """Base for all mm_agent errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class AgentNotFoundError(OrchestratorError):
    """Caller referenced an agent key with no registered tool catalog."""

    def __init__(self, agent_key: str) -> None:
        super().__init__(f"Agent '{agent_key}' not found")
        self.agent_key = agent_key


class ToolNotFoundError(OrchestratorError):
    """Reasoning service requested a tool the catalog does not declare."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool {tool_name} not found")
        self.tool_name = tool_name


class ToolExecutionError(OrchestratorError):
    """A tool implementation raised (or rejected its input)."""

    def __init__(self, tool_name: str, message: str, original: Exception | None = None) -> None:
        super().__init__(message, original=original)
        self.tool_name = tool_name


class ToolTimeoutError(ToolExecutionError):
    """A tool did not finish within the configured tool timeout."""

    def __init__(self, tool_name: str, timeout_s: float) -> None:
        super().__init__(tool_name, f"Tool {tool_name} timed out after {timeout_s:g}s")
        self.timeout_s = timeout_s


class ReasoningServiceError(OrchestratorError):
    """The upstream reasoning-service call failed. Not recovered by the loop."""


class ReasoningRateLimitError(ReasoningServiceError):
    """Transient rate limit (429); retry with backoff."""


class ReasoningQuotaExhaustedError(ReasoningServiceError):
    """Permanent quota/billing exhaustion; retrying will not help."""


class ReasoningAuthError(ReasoningServiceError):
    """Authentication failed (401/403): API key invalid or forbidden."""


class ReasoningContentFilterError(ReasoningServiceError):
    """Content policy violation; request was blocked."""


class ReasoningTransientError(ReasoningServiceError):
    """Server error (500/502/503), timeout or connection failure; retry."""


class ReasoningModelNotFoundError(ReasoningServiceError):
    """Model doesn't exist (404)."""


class ReasoningEmptyResponseError(ReasoningServiceError):
    """Service returned neither text nor tool-invocation requests."""


# Messages that mean permanent quota exhaustion rather than a transient limit.
_QUOTA_PATTERNS = (
    "quota",
    "billing",
    "insufficient",
    "exceeded your current",
    "plan and billing",
    "account deactivated",
    "account suspended",
)

RETRYABLE_ERRORS: tuple[type[ReasoningServiceError], ...] = (
    ReasoningRateLimitError,
    ReasoningTransientError,
)

# litellm exception class names, checked in order. RateLimitError is handled
# separately because its message decides between rate limit and quota.
_LITELLM_CLASSES: tuple[tuple[tuple[str, ...], type[ReasoningServiceError]], ...] = (
    (("AuthenticationError", "PermissionDeniedError"), ReasoningAuthError),
    (("NotFoundError",), ReasoningModelNotFoundError),
    (("ContentPolicyViolationError",), ReasoningContentFilterError),
    (("BudgetExceededError",), ReasoningQuotaExhaustedError),
    (
        ("InternalServerError", "ServiceUnavailableError", "APIConnectionError", "BadGatewayError", "Timeout"),
        ReasoningTransientError,
    ),
)

# Message fragments for errors litellm did not type, checked after quota.
_MESSAGE_PATTERNS: tuple[tuple[tuple[str, ...], type[ReasoningServiceError]], ...] = (
    (("401", "authentication", "unauthorized", "403", "forbidden", "permission"), ReasoningAuthError),
    (("404", "not found", "does not exist"), ReasoningModelNotFoundError),
    (("content policy", "content filter"), ReasoningContentFilterError),
    (("rate limit", "rate_limit", "ratelimit"), ReasoningRateLimitError),
    (("timeout", "timed out", "connection", "500", "502", "503", "server error"), ReasoningTransientError),
)


def _litellm_error_types(module: Any, names: tuple[str, ...]) -> tuple[type[BaseException], ...]:
    """Resolve optional litellm exception classes without static attribute coupling."""
    out: list[type[BaseException]] = []
    for name in names:
        candidate = getattr(module, name, None)
        if isinstance(candidate, type) and issubclass(candidate, BaseException):
            out.append(candidate)
    return tuple(out)


def _is_quota(message: str) -> bool:
    return any(p in message for p in _QUOTA_PATTERNS)


def classify_error(error: Exception) -> type[ReasoningServiceError]:
    """Classify any reasoning-call exception into a ReasoningServiceError subtype.

    Uses litellm exception types when they match, falls back to message matching.
    """
    if isinstance(error, ReasoningServiceError):
        return type(error)

    import litellm as _lt

    message = str(error).lower()

    rate_types = _litellm_error_types(_lt, ("RateLimitError",))
    if rate_types and isinstance(error, rate_types):
        return ReasoningQuotaExhaustedError if _is_quota(message) else ReasoningRateLimitError

    for names, cls in _LITELLM_CLASSES:
        types = _litellm_error_types(_lt, names)
        if types and isinstance(error, types):
            return cls

    if _is_quota(message):
        return ReasoningQuotaExhaustedError
    if isinstance(error, (TimeoutError, ConnectionError)):
        return ReasoningTransientError
    for fragments, cls in _MESSAGE_PATTERNS:
        if any(f in message for f in fragments):
            return cls

    return ReasoningServiceError


def wrap_error(error: Exception) -> ReasoningServiceError:
    """Wrap an exception in the appropriate ReasoningServiceError subclass.

    If the error is already a ReasoningServiceError, returns it unchanged.
    """
    if isinstance(error, ReasoningServiceError):
        return error
    cls = classify_error(error)
    return cls(str(error) or type(error).__name__, original=error)


def is_retryable(error: Exception) -> bool:
    """True when a reasoning-call failure is worth retrying."""
    return issubclass(classify_error(error), RETRYABLE_ERRORS)
