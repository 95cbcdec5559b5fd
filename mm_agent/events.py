"""Typed tool/session events and the in-process async Event Bus.

Producers (the tool loop) publish; consumers (analytics, live telemetry)
subscribe by event name or to everything:

    bus = EventBus()
    bus.subscribe("tool_error", alert_on_failure)
    bus.subscribe_all(forward_to_dashboard)
    await bus.emit(ToolStartEvent(...))

``publish`` awaits every matching handler before returning. Each handler runs
in isolation: one that raises is logged (and reported to ``on_handler_error``
when given) without affecting the other handlers or the publisher. Handlers
registered after an event fired never see it; there is no replay.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Annotated, Any, Awaitable, Callable, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

logger = logging.getLogger(__name__)

WILDCARD = "*"

TOOL_START = "tool_start"
TOOL_COMPLETE = "tool_complete"
TOOL_ERROR = "tool_error"
SESSION_START = "session_start"
SESSION_END = "session_end"

EVENT_NAMES: tuple[str, ...] = (TOOL_START, TOOL_COMPLETE, TOOL_ERROR, SESSION_START, SESSION_END)


# ---------------------------------------------------------------------------
# Event models
# ---------------------------------------------------------------------------


class _EventBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    session_id: str = Field(min_length=1)
    agent_key: str = Field(min_length=1)
    timestamp: int = Field(ge=0, description="Epoch milliseconds when the action occurred.")


class _ToolEventBase(_EventBase):
    tool_name: str = Field(min_length=1)
    request_id: str = ""


class ToolStartEvent(_ToolEventBase):
    event_type: Literal["tool_start"] = TOOL_START
    input: dict[str, Any] = Field(default_factory=dict)


class ToolCompleteEvent(_ToolEventBase):
    event_type: Literal["tool_complete"] = TOOL_COMPLETE
    duration_ms: int = Field(ge=0)
    input_size: int | None = Field(default=None, ge=0)
    output_size: int | None = Field(default=None, ge=0)


class ToolErrorEvent(_ToolEventBase):
    event_type: Literal["tool_error"] = TOOL_ERROR
    duration_ms: int = Field(ge=0)
    error_message: str
    timed_out: bool = False


class SessionStartEvent(_EventBase):
    event_type: Literal["session_start"] = SESSION_START


class SessionEndEvent(_EventBase):
    event_type: Literal["session_end"] = SESSION_END
    total_tools: int = Field(ge=0)
    success_count: int = Field(ge=0)
    error_count: int = Field(ge=0)
    final_result: Any = None


ToolEvent = Union[ToolStartEvent, ToolCompleteEvent, ToolErrorEvent]
SessionEvent = Union[SessionStartEvent, SessionEndEvent]

AgentEvent = Annotated[
    ToolStartEvent
    | ToolCompleteEvent
    | ToolErrorEvent
    | SessionStartEvent
    | SessionEndEvent,
    Field(discriminator="event_type"),
]

_EVENT_ADAPTER: TypeAdapter[AgentEvent] = TypeAdapter(AgentEvent)


def parse_event(payload: Mapping[str, Any]) -> AgentEvent:
    """Validate a plain dict (e.g. from a websocket or log line) into a typed event."""
    return _EVENT_ADAPTER.validate_python(payload)


# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------

EventHandler = Callable[[Any], Union[Awaitable[None], None]]
HandlerErrorCallback = Callable[[str, EventHandler, Exception], None]


class EventBus:
    """Async publish/subscribe owned by one orchestrator instance.

    Args:
        on_handler_error: ``(event_name, handler, error)`` callback for handler
            failures that the bus swallows. Failures are always logged.
    """

    def __init__(self, on_handler_error: HandlerErrorCallback | None = None) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._wildcard_handlers: list[EventHandler] = []
        self._on_handler_error = on_handler_error

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if event_name == WILDCARD:
            self._wildcard_handlers.append(handler)
            return
        self._handlers.setdefault(event_name, []).append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self.subscribe(WILDCARD, handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        """Remove one registration of *handler*. Unknown handlers are a no-op."""
        handlers = self._wildcard_handlers if event_name == WILDCARD else self._handlers.get(event_name)
        if not handlers:
            return
        # A once() registration is stored as a wrapper; match it by its target too.
        for index, registered in enumerate(handlers):
            if registered == handler or getattr(registered, "_once_target", None) == handler:
                del handlers[index]
                break
        else:
            return
        if event_name != WILDCARD and not handlers:
            del self._handlers[event_name]

    def unsubscribe_all(self, handler: EventHandler) -> None:
        self.unsubscribe(WILDCARD, handler)

    def once(self, event_name: str, handler: EventHandler) -> None:
        """Subscribe *handler* for the next matching event only.

        ``unsubscribe(event_name, handler)`` cancels it before it fires.
        """

        async def _once(payload: Any) -> None:
            self.unsubscribe(event_name, _once)
            result = handler(payload)
            if inspect.isawaitable(result):
                await result

        _once._once_target = handler  # type: ignore[attr-defined]
        self.subscribe(event_name, _once)

    def remove_all_listeners(self, event_name: str | None = None) -> None:
        if event_name is None:
            self._handlers.clear()
            self._wildcard_handlers.clear()
        elif event_name == WILDCARD:
            self._wildcard_handlers.clear()
        else:
            self._handlers.pop(event_name, None)

    def listener_count(self, event_name: str) -> int:
        if event_name == WILDCARD:
            return len(self._wildcard_handlers)
        return len(self._handlers.get(event_name, []))

    def event_names(self) -> list[str]:
        return list(self._handlers.keys())

    async def publish(self, event_name: str, payload: Any) -> None:
        """Run every named and wildcard handler for *event_name*; never raises."""
        # Snapshot so handlers may (un)subscribe while we dispatch.
        handlers = [*self._handlers.get(event_name, []), *self._wildcard_handlers]
        if not handlers:
            return
        await asyncio.gather(*(self._run_handler(event_name, h, payload) for h in handlers))

    async def emit(self, event: AgentEvent) -> None:
        """Publish a typed event under its own ``event_type``."""
        await self.publish(event.event_type, event)

    async def _run_handler(self, event_name: str, handler: EventHandler, payload: Any) -> None:
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning(
                "Event handler %r failed for %s",
                getattr(handler, "__qualname__", handler),
                event_name,
                exc_info=True,
            )
            if self._on_handler_error is not None:
                try:
                    self._on_handler_error(event_name, handler, exc)
                except Exception:
                    logger.debug("on_handler_error callback failed", exc_info=True)
