"""Analytics Listener: persists Event Bus traffic into the Metrics Store.

Fully decoupled from the tool loop's control flow. It only subscribes to
the bus, so a write failure here is swallowed (and logged) by the bus and
never reaches the loop:

    store = MetricsStore("data/analytics.db")
    listener = AnalyticsListener(store)
    listener.attach(orchestrator.events)

SQLite calls are blocking, so every write runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from mm_agent.events import (
    SESSION_END,
    SESSION_START,
    TOOL_COMPLETE,
    TOOL_ERROR,
    TOOL_START,
    EventBus,
    SessionEndEvent,
    SessionStartEvent,
    ToolCompleteEvent,
    ToolErrorEvent,
    ToolStartEvent,
)
from mm_agent.metrics_store import MetricsStore, SessionMetrics, ToolExecutionRecord

logger = logging.getLogger(__name__)


class AnalyticsListener:
    """Event Bus subscriber that writes tool and session records.

    ``ToolStart`` opens a ``running`` row; the matching ``ToolComplete`` or
    ``ToolError`` (same session id and request id) stamps completion on it.
    A completion with no recorded start is inserted as a full record.

    Open rows still pending at ``SessionEnd`` are forgotten (a cancelled loop
    leaves them ``running`` in the store). At most ``max_open_rows`` are
    tracked; the oldest is dropped first.
    """

    def __init__(self, store: MetricsStore, *, max_open_rows: int = 10_000) -> None:
        self.store = store
        self.max_open_rows = max_open_rows
        self._bus: EventBus | None = None
        self._open_rows: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    # -- wiring -------------------------------------------------------------

    def attach(self, bus: EventBus) -> None:
        if self._bus is bus:
            return
        if self._bus is not None:
            self.detach()
        bus.subscribe(TOOL_START, self.on_tool_start)
        bus.subscribe(TOOL_COMPLETE, self.on_tool_complete)
        bus.subscribe(TOOL_ERROR, self.on_tool_error)
        bus.subscribe(SESSION_START, self.on_session_start)
        bus.subscribe(SESSION_END, self.on_session_end)
        self._bus = bus
        logger.debug("Analytics listener attached")

    def detach(self) -> None:
        bus = self._bus
        if bus is None:
            return
        bus.unsubscribe(TOOL_START, self.on_tool_start)
        bus.unsubscribe(TOOL_COMPLETE, self.on_tool_complete)
        bus.unsubscribe(TOOL_ERROR, self.on_tool_error)
        bus.unsubscribe(SESSION_START, self.on_session_start)
        bus.unsubscribe(SESSION_END, self.on_session_end)
        self._bus = None

    @property
    def attached(self) -> bool:
        return self._bus is not None

    @property
    def pending_count(self) -> int:
        """Tool starts still waiting for their completion event."""
        with self._lock:
            return len(self._open_rows)

    # -- handlers -----------------------------------------------------------

    async def on_tool_start(self, event: ToolStartEvent) -> None:
        row_id = await asyncio.to_thread(
            self.store.record_tool_start,
            event.session_id,
            event.agent_key,
            event.tool_name,
            started_at=event.timestamp,
            request_id=event.request_id or None,
        )
        if event.request_id:
            with self._lock:
                self._open_rows[(event.session_id, event.request_id)] = row_id
                while len(self._open_rows) > self.max_open_rows:
                    stale = next(iter(self._open_rows))
                    del self._open_rows[stale]
                    logger.warning("Dropping untracked open execution row for %s/%s", *stale)

    async def on_tool_complete(self, event: ToolCompleteEvent) -> None:
        await self._finish_tool(
            event,
            status="success",
            input_size=event.input_size,
            output_size=event.output_size,
        )

    async def on_tool_error(self, event: ToolErrorEvent) -> None:
        await self._finish_tool(
            event,
            status="timeout" if event.timed_out else "error",
            error_message=event.error_message,
        )

    async def _finish_tool(
        self,
        event: ToolCompleteEvent | ToolErrorEvent,
        *,
        status: str,
        error_message: str | None = None,
        input_size: int | None = None,
        output_size: int | None = None,
    ) -> None:
        with self._lock:
            row_id = self._open_rows.pop((event.session_id, event.request_id), None)

        if row_id is not None:
            updated = await asyncio.to_thread(
                self.store.complete_tool_execution,
                row_id,
                status=status,  # type: ignore[arg-type]
                completed_at=event.timestamp,
                error_message=error_message,
                input_size=input_size,
                output_size=output_size,
            )
            if updated:
                return
            logger.debug("Execution row %d already closed; inserting full record", row_id)

        record = ToolExecutionRecord(
            session_id=event.session_id,
            agent_key=event.agent_key,
            tool_name=event.tool_name,
            started_at=max(event.timestamp - event.duration_ms, 0),
            completed_at=event.timestamp,
            status=status,  # type: ignore[arg-type]
            error_message=error_message,
            input_size=input_size,
            output_size=output_size,
            request_id=event.request_id or None,
        )
        await asyncio.to_thread(self.store.record_tool_execution, record)

    async def on_session_start(self, event: SessionStartEvent) -> None:
        inserted = await asyncio.to_thread(
            self.store.record_session_start,
            event.session_id,
            event.agent_key,
            started_at=event.timestamp,
        )
        if not inserted:
            logger.debug("Session %s already recorded; start ignored", event.session_id)

    async def on_session_end(self, event: SessionEndEvent) -> None:
        with self._lock:
            stale = [key for key in self._open_rows if key[0] == event.session_id]
            for key in stale:
                del self._open_rows[key]
        if stale:
            logger.debug("Forgot %d open execution rows for session %s", len(stale), event.session_id)
        await asyncio.to_thread(
            self.store.record_session_end,
            event.session_id,
            SessionMetrics(
                total_tools=event.total_tools,
                success_count=event.success_count,
                error_count=event.error_count,
                final_result=event.final_result,
            ),
            agent_key=event.agent_key,
            completed_at=event.timestamp,
        )
