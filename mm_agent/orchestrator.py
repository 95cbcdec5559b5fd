"""Agent orchestrator: the tool-execution loop and its owned collaborators.

One ``AgentOrchestrator`` owns an Event Bus, a Session Registry, the agent
catalogs and (when analytics is enabled) a Metrics Store with its listener:

    orchestrator = AgentOrchestrator(OrchestratorConfig.from_env())
    orchestrator.register_agent("file", ToolCatalog.from_functions(
        "File Management", "Read and list files", [list_files, read_file],
    ))
    outcome = await orchestrator.run_tool_loop("file", "What's in src/?")
    if outcome.success:
        print(outcome.result, outcome.tools_used)

Each loop runs on a fresh scratch conversation. Tool requests from one turn
are dispatched concurrently; tool failures become error results the
reasoning service sees next turn. A failed reasoning call ends the loop with
``LoopFailure`` and no ``session_end`` event.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Literal

from mm_agent.analytics import AnalyticsListener
from mm_agent.config import OrchestratorConfig
from mm_agent.errors import (
    AgentNotFoundError,
    ToolNotFoundError,
    ToolTimeoutError,
    wrap_error,
)
from mm_agent.events import (
    EventBus,
    SessionEndEvent,
    SessionStartEvent,
    ToolCompleteEvent,
    ToolErrorEvent,
    ToolStartEvent,
)
from mm_agent.metrics_store import MetricsStore
from mm_agent.models import (
    LoopFailure,
    LoopOutcome,
    LoopSuccess,
    Message,
    ToolInvocationRequest,
    ToolInvocationResult,
    json_size,
    new_session_id,
    now_ms,
)
from mm_agent.reasoning import LiteLLMReasoningService, ReasoningService
from mm_agent.session import SessionRegistry
from mm_agent.tools import Tool, ToolCatalog

logger = logging.getLogger(__name__)

HealthStatus = Literal["healthy", "degraded", "unhealthy"]


@dataclass
class _Dispatch:
    """Outcome of one tool request within a turn."""

    result: ToolInvocationResult
    dispatched: bool
    ok: bool


def _build_reasoning(config: OrchestratorConfig) -> LiteLLMReasoningService:
    return LiteLLMReasoningService(
        config.model,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        timeout=config.request_timeout_s,
        num_retries=config.num_retries,
        max_result_length=config.tool_result_max_length,
    )


class AgentOrchestrator:
    """Runs agent tool loops and owns their event, session and analytics state.

    Args:
        config: Runtime config. Defaults to ``OrchestratorConfig()``.
        reasoning: Reasoning service. Defaults to a litellm adapter built from config.
        catalogs: Initial ``agent_key → ToolCatalog`` registrations.
        event_bus: Bus to publish on. Defaults to a new bus owned by this instance.
        metrics_store: Store for analytics. When omitted and analytics is
            enabled, one is opened at ``config.resolved_db_path``.
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        *,
        reasoning: ReasoningService | None = None,
        catalogs: dict[str, ToolCatalog] | None = None,
        event_bus: EventBus | None = None,
        metrics_store: MetricsStore | None = None,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._owns_reasoning = reasoning is None
        self._reasoning: ReasoningService = reasoning or _build_reasoning(self._config)
        self._agents: dict[str, ToolCatalog] = dict(catalogs or {})
        self._events = event_bus or EventBus()
        self._sessions = SessionRegistry(max_history=self._config.max_history)

        self._owns_store = False
        self._store: MetricsStore | None = None
        self._listener: AnalyticsListener | None = None
        if metrics_store is not None:
            self._store = metrics_store
        elif self._config.enable_analytics:
            self._store = MetricsStore(self._config.resolved_db_path)
            self._owns_store = True
        if self._store is not None:
            self._listener = AnalyticsListener(self._store)
            self._listener.attach(self._events)

        logger.info(
            "Agent orchestrator initialized (model=%s, agents=%d, analytics=%s)",
            self._config.model,
            len(self._agents),
            self._store is not None,
        )

    # -- owned collaborators -------------------------------------------------

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def analytics(self) -> MetricsStore | None:
        return self._store

    # -- agent registry ------------------------------------------------------

    def register_agent(self, agent_key: str, catalog: ToolCatalog) -> None:
        if agent_key in self._agents:
            logger.info("Replacing catalog for agent %s", agent_key)
        self._agents[agent_key] = catalog

    def unregister_agent(self, agent_key: str) -> None:
        if self._agents.pop(agent_key, None) is None:
            raise AgentNotFoundError(agent_key)

    def list_agents(self) -> list[dict[str, str]]:
        return [
            {"key": key, "name": catalog.name, "description": catalog.description}
            for key, catalog in self._agents.items()
        ]

    def get_agent_tools(self, agent_key: str) -> list[dict[str, str]]:
        catalog = self._get_catalog(agent_key)
        return [{"name": t.name, "description": t.description} for t in catalog.tools]

    def _get_catalog(self, agent_key: str) -> ToolCatalog:
        try:
            return self._agents[agent_key]
        except KeyError:
            raise AgentNotFoundError(agent_key) from None

    # -- tool loop -----------------------------------------------------------

    async def run_tool_loop(
        self,
        agent_key: str,
        user_input: str,
        session_id: str | None = None,
    ) -> LoopOutcome:
        """Drive one conversation to a final text answer, running requested tools.

        Raises:
            AgentNotFoundError: No catalog is registered under *agent_key*.
                Nothing is published or executed.
        """
        catalog = self._get_catalog(agent_key)
        session_id = session_id or new_session_id()
        config = self._config
        declarations = catalog.declarations()

        messages: list[Message] = [Message.user(user_input)]
        tools_used: list[str] = []
        success_count = 0
        error_count = 0
        turns = 0
        final_result: str | None = None
        forced_stop = False

        logger.info("Executing agent %s with tool use support (session=%s)", agent_key, session_id)
        await self._events.emit(SessionStartEvent(
            session_id=session_id, agent_key=agent_key, timestamp=now_ms(),
        ))

        while True:
            turns += 1
            try:
                response = await self._reasoning.respond(messages, declarations)
            except Exception as exc:
                err = wrap_error(exc)
                logger.error(
                    "Reasoning call failed on turn %d for agent %s (session=%s): %s",
                    turns, agent_key, session_id, err,
                    exc_info=True,
                )
                return LoopFailure(
                    session_id=session_id,
                    agent_key=agent_key,
                    error=str(err),
                    error_type=type(err).__name__,
                    tools_used=tools_used,
                    turns=turns,
                )

            assistant = Message("assistant", tuple(response.content))
            messages.append(assistant)
            requests = response.tool_requests
            text = response.text

            if not requests:
                final_result = text
                break

            if text:
                final_result = text
            logger.debug("Turn %d: dispatching %d tool request(s)", turns, len(requests))
            outcomes = await asyncio.gather(*(
                self._dispatch(catalog, request, session_id=session_id, agent_key=agent_key)
                for request in requests
            ))
            for request, outcome in zip(requests, outcomes):
                if not outcome.dispatched:
                    continue
                tools_used.append(request.tool_name)
                if outcome.ok:
                    success_count += 1
                else:
                    error_count += 1
            messages.append(Message("user", tuple(o.result for o in outcomes)))

            if len(messages) > config.max_messages:
                logger.warning(
                    "Max conversation turns reached for agent %s (session=%s, messages=%d)",
                    agent_key, session_id, len(messages),
                )
                forced_stop = True
                break

        self._sessions.append(session_id, messages, agent_key=agent_key, completed=True)

        await self._events.emit(SessionEndEvent(
            session_id=session_id,
            agent_key=agent_key,
            timestamp=now_ms(),
            total_tools=len(tools_used),
            success_count=success_count,
            error_count=error_count,
            final_result=final_result,
        ))
        logger.info(
            "Agent %s finished in %d turn(s): %d tool(s), %d error(s)",
            agent_key, turns, len(tools_used), error_count,
        )
        return LoopSuccess(
            session_id=session_id,
            agent_key=agent_key,
            result=final_result,
            tools_used=tools_used,
            turns=turns,
            success_count=success_count,
            error_count=error_count,
            forced_stop=forced_stop,
        )

    async def _dispatch(
        self,
        catalog: ToolCatalog,
        request: ToolInvocationRequest,
        *,
        session_id: str,
        agent_key: str,
    ) -> _Dispatch:
        try:
            tool = catalog.get(request.tool_name)
        except ToolNotFoundError as exc:
            logger.warning("Agent %s requested unknown tool %s", agent_key, request.tool_name)
            return _Dispatch(ToolInvocationResult.error(request.id, str(exc)), dispatched=False, ok=False)

        logger.debug("Executing tool: %s (request=%s)", tool.name, request.id)
        await self._events.emit(ToolStartEvent(
            session_id=session_id,
            agent_key=agent_key,
            tool_name=tool.name,
            request_id=request.id,
            timestamp=now_ms(),
            input=request.input,
        ))
        started = time.monotonic()
        try:
            payload = await self._execute(tool, request.input)
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            message = str(exc) or type(exc).__name__
            logger.warning("Tool %s failed after %dms: %s", tool.name, duration_ms, message)
            await self._events.emit(ToolErrorEvent(
                session_id=session_id,
                agent_key=agent_key,
                tool_name=tool.name,
                request_id=request.id,
                timestamp=now_ms(),
                duration_ms=duration_ms,
                error_message=message,
                timed_out=isinstance(exc, ToolTimeoutError),
            ))
            return _Dispatch(ToolInvocationResult.error(request.id, message), dispatched=True, ok=False)

        duration_ms = int((time.monotonic() - started) * 1000)
        await self._events.emit(ToolCompleteEvent(
            session_id=session_id,
            agent_key=agent_key,
            tool_name=tool.name,
            request_id=request.id,
            timestamp=now_ms(),
            duration_ms=duration_ms,
            input_size=json_size(request.input),
            output_size=json_size(payload),
        ))
        return _Dispatch(ToolInvocationResult(request.id, payload=payload), dispatched=True, ok=True)

    async def _execute(self, tool: Tool, tool_input: dict[str, Any]) -> Any:
        timeout = self._config.tool_timeout_s
        if timeout is None:
            return await tool.execute(tool_input)
        try:
            return await asyncio.wait_for(tool.execute(tool_input), timeout)
        except asyncio.TimeoutError:
            raise ToolTimeoutError(tool.name, timeout) from None

    # -- sessions ------------------------------------------------------------

    def clear_conversation(self, session_id: str = "default") -> None:
        """Drop a session's history. Persisted analytics are untouched."""
        self._sessions.clear(session_id)

    # -- health --------------------------------------------------------------

    async def health(self) -> dict[str, Any]:
        """Ping the reasoning service and report per-agent catalog status.

        ``unhealthy`` when the service is unreachable or no agent has tools;
        ``degraded`` when some agents have empty catalogs.
        """
        start = time.monotonic()
        agents: dict[str, str] = {
            key: "online" if len(catalog) > 0 else "offline"
            for key, catalog in self._agents.items()
        }

        connection = "connected"
        try:
            await self._reasoning.respond([Message.user("ping")], [])
        except Exception as exc:
            logger.warning("Reasoning service health check failed: %s", exc)
            connection = "disconnected"

        online = sum(1 for status in agents.values() if status == "online")
        status: HealthStatus = "healthy"
        if connection == "disconnected" or online == 0:
            status = "unhealthy"
        elif online < len(agents):
            status = "degraded"

        return {
            "status": status,
            "agents": agents,
            "reasoning_connection": connection,
            "elapsed_ms": int((time.monotonic() - start) * 1000),
        }

    # -- configuration -------------------------------------------------------

    def get_config(self) -> dict[str, Any]:
        return self._config.public_dict()

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def update_config(self, **changes: Any) -> OrchestratorConfig:
        """Replace config fields. Affects loops started after the call."""
        self._config = self._config.with_overrides(**changes)
        if self._owns_reasoning:
            self._reasoning = _build_reasoning(self._config)
        if "max_history" in changes:
            self._sessions.max_history = self._config.max_history
        logger.info("Configuration updated: %s", ", ".join(sorted(changes)))
        return self._config

    def close(self) -> None:
        if self._listener is not None:
            self._listener.detach()
        if self._owns_store and self._store is not None:
            self._store.close()
