"""Conversation and loop-outcome data types.

A conversation is an ordered list of ``Message`` objects, each holding an
ordered tuple of content blocks:

- ``TextBlock``: plain text from either side
- ``ToolInvocationRequest``: produced only by the reasoning service
- ``ToolInvocationResult``: produced only by the tool loop, one per request

Messages are frozen once built; the loop appends new messages rather than
editing old ones.
"""

from __future__ import annotations

import json as _json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Union

Role = Literal["user", "assistant"]


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex}"


def to_json_text(value: Any) -> str:
    """JSON encoding of *value*, or ``str(value)`` when it cannot be encoded.

    ``default=str`` covers unknown leaf types but not non-string dict keys
    or cycles; those fall back to the plain string form.
    """
    try:
        return _json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def json_size(value: Any) -> int:
    """Length of the JSON encoding of *value*. Never raises."""
    return len(to_json_text(value))


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class ToolInvocationRequest:
    """A reasoning-service request to run one tool. ``id`` correlates to exactly one result."""

    id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: Literal["tool_use"] = field(default="tool_use", init=False)


@dataclass(frozen=True)
class ToolInvocationResult:
    """Outcome of one tool invocation, answering the request with the same id."""

    request_id: str
    payload: Any = None
    error_message: str | None = None
    is_error: bool = False
    type: Literal["tool_result"] = field(default="tool_result", init=False)

    @classmethod
    def error(cls, request_id: str, message: str) -> "ToolInvocationResult":
        return cls(request_id=request_id, error_message=message, is_error=True)

    def to_content(self, max_length: int | None = None) -> str:
        """Text form fed back to the reasoning service.

        ``max_length`` bounds successful payloads only; error text is never
        truncated.
        """
        if self.is_error:
            return f"Error: {self.error_message}"
        if isinstance(self.payload, str):
            text = self.payload
        else:
            text = to_json_text(self.payload)
        if max_length is not None:
            text = truncate(text, max_length)
        return text


ContentBlock = Union[TextBlock, ToolInvocationRequest, ToolInvocationResult]


def truncate(text: str, max_length: int) -> str:
    """Truncate text to max_length, appending a notice if truncated."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"\n... [truncated at {max_length} chars]"


@dataclass(frozen=True)
class Message:
    """One conversation turn."""

    role: Role
    content: tuple[ContentBlock, ...]

    def __post_init__(self) -> None:
        # Accept lists/strings at construction but store an immutable tuple.
        content: Any = self.content
        if isinstance(content, str):
            content = (TextBlock(content),)
        object.__setattr__(self, "content", tuple(content))

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls("user", (TextBlock(text),))

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_requests(self) -> list[ToolInvocationRequest]:
        return [b for b in self.content if isinstance(b, ToolInvocationRequest)]

    @property
    def tool_results(self) -> list[ToolInvocationResult]:
        return [b for b in self.content if isinstance(b, ToolInvocationResult)]


# ---------------------------------------------------------------------------
# Reasoning-service response
# ---------------------------------------------------------------------------


@dataclass
class ReasoningResponse:
    """One turn's answer from the reasoning service.

    Text that accompanies tool requests is commentary, not the final answer.
    """

    content: list[ContentBlock]
    stop_reason: str = ""
    usage: dict[str, Any] = field(default_factory=dict)
    model: str = ""

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_requests(self) -> list[ToolInvocationRequest]:
        return [b for b in self.content if isinstance(b, ToolInvocationRequest)]


# ---------------------------------------------------------------------------
# Loop outcomes
# ---------------------------------------------------------------------------


@dataclass
class LoopSuccess:
    """Terminal ``Completed`` state of one tool loop.

    ``tools_used`` lists every dispatched tool, including ones that failed.
    ``forced_stop`` is True when the message bound ended the loop.
    """

    session_id: str
    agent_key: str
    result: str | None
    tools_used: list[str] = field(default_factory=list)
    turns: int = 0
    success_count: int = 0
    error_count: int = 0
    forced_stop: bool = False
    success: Literal[True] = field(default=True, init=False)


@dataclass
class LoopFailure:
    """Terminal ``Failed`` state: the reasoning service call itself failed."""

    session_id: str
    agent_key: str
    error: str
    error_type: str = "ReasoningServiceError"
    tools_used: list[str] = field(default_factory=list)
    turns: int = 0
    success: Literal[False] = field(default=False, init=False)


LoopOutcome = Union[LoopSuccess, LoopFailure]
