"""Reasoning-service interface and the litellm-backed adapter.

The tool loop only depends on the ``ReasoningService`` protocol: given the
conversation so far and the tool declarations, return text or tool-invocation
requests. ``LiteLLMReasoningService`` implements it over any litellm model:

    service = LiteLLMReasoningService("anthropic/claude-sonnet-4-20250514", max_tokens=1000)
    response = await service.respond([Message.user("hi")], tools=[])
    print(response.text)
"""

from __future__ import annotations

import asyncio
import json as _json
import logging
import random
from typing import Any, Callable, Protocol, Sequence, runtime_checkable

import litellm

from mm_agent.errors import ReasoningEmptyResponseError, is_retryable, wrap_error
from mm_agent.models import (
    ContentBlock,
    Message,
    ReasoningResponse,
    TextBlock,
    ToolInvocationRequest,
    ToolInvocationResult,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ReasoningService(Protocol):
    async def respond(
        self,
        messages: Sequence[Message],
        tools: Sequence[dict[str, Any]],
    ) -> ReasoningResponse:
        ...


def exponential_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Exponential backoff with jitter, capped at *max_delay*."""
    delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0.5, 1.5)
    return min(delay * jitter, max_delay)


# ---------------------------------------------------------------------------
# Message conversion
# ---------------------------------------------------------------------------


def to_openai_messages(
    messages: Sequence[Message],
    *,
    max_result_length: int | None = None,
) -> list[dict[str, Any]]:
    """Convert block-based messages to OpenAI chat format.

    Assistant tool requests become ``tool_calls``; each tool result becomes its
    own ``role="tool"`` message answering the matching ``tool_call_id``.
    """
    out: list[dict[str, Any]] = []
    for message in messages:
        results = message.tool_results
        if results:
            for result in results:
                out.append({
                    "role": "tool",
                    "tool_call_id": result.request_id,
                    "content": result.to_content(max_result_length),
                })
            text = message.text
            if text:
                out.append({"role": message.role, "content": text})
            continue

        entry: dict[str, Any] = {"role": message.role, "content": message.text or None}
        requests = message.tool_requests
        if requests:
            entry["tool_calls"] = [
                {
                    "id": req.id,
                    "type": "function",
                    "function": {"name": req.tool_name, "arguments": _json.dumps(req.input, default=str)},
                }
                for req in requests
            ]
        elif entry["content"] is None:
            entry["content"] = ""
        out.append(entry)
    return out


def _parse_arguments(tool_name: str, raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = _json.loads(raw)
    except (_json.JSONDecodeError, TypeError):
        logger.error("Invalid JSON arguments for tool %s: %r", tool_name, raw)
        return {}
    if not isinstance(parsed, dict):
        logger.error("Tool %s arguments are not an object: %r", tool_name, parsed)
        return {}
    return parsed


def _extract_usage(response: Any) -> dict[str, Any]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return {}
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", 0),
        "completion_tokens": getattr(usage, "completion_tokens", 0),
        "total_tokens": getattr(usage, "total_tokens", 0),
    }


def parse_completion(response: Any, model: str = "") -> ReasoningResponse:
    """Turn a litellm completion into content blocks."""
    choice = response.choices[0]
    message = choice.message
    content: list[ContentBlock] = []

    text = getattr(message, "content", None)
    if text:
        content.append(TextBlock(text))

    for tc in getattr(message, "tool_calls", None) or []:
        name = tc.function.name
        content.append(ToolInvocationRequest(
            id=tc.id,
            tool_name=name,
            input=_parse_arguments(name, tc.function.arguments),
        ))

    return ReasoningResponse(
        content=content,
        stop_reason=getattr(choice, "finish_reason", "") or "",
        usage=_extract_usage(response),
        model=getattr(response, "model", None) or model,
    )


# ---------------------------------------------------------------------------
# litellm adapter
# ---------------------------------------------------------------------------


class LiteLLMReasoningService:
    """ReasoningService over ``litellm.acompletion`` with retry on transient errors.

    Args:
        model: Any litellm model string.
        max_tokens: Completion token cap per turn.
        temperature: Sampling temperature.
        timeout: Per-request timeout in seconds.
        num_retries: Retries after the first attempt for rate-limit/transient errors.
        base_delay: Starting delay for backoff (seconds).
        max_delay: Cap on backoff delay (seconds).
        api_base: Optional API base URL.
        on_retry: ``(attempt, error, delay)`` callback fired before each sleep.
    """

    def __init__(
        self,
        model: str,
        *,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        timeout: float = 60.0,
        num_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        api_base: str | None = None,
        max_result_length: int | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.num_retries = num_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.api_base = api_base
        self.max_result_length = max_result_length
        self.on_retry = on_retry

    def _call_kwargs(
        self,
        messages: Sequence[Message],
        tools: Sequence[dict[str, Any]],
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(messages, max_result_length=self.max_result_length),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "timeout": self.timeout,
        }
        if tools:
            kwargs["tools"] = list(tools)
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    async def respond(
        self,
        messages: Sequence[Message],
        tools: Sequence[dict[str, Any]],
    ) -> ReasoningResponse:
        call_kwargs = self._call_kwargs(messages, tools)
        for attempt in range(self.num_retries + 1):
            try:
                response = await litellm.acompletion(**call_kwargs)
                result = parse_completion(response, self.model)
                if not result.content:
                    raise ReasoningEmptyResponseError(
                        f"Empty response from {self.model} (finish_reason={result.stop_reason!r})"
                    )
                if attempt > 0:
                    logger.info("Reasoning call succeeded after %d retries", attempt)
                return result
            except Exception as e:
                if not is_retryable(e) or attempt >= self.num_retries:
                    wrapped = wrap_error(e)
                    if wrapped is e:
                        raise
                    raise wrapped from e
                delay = exponential_backoff(attempt, self.base_delay, self.max_delay)
                if self.on_retry is not None:
                    self.on_retry(attempt, e, delay)
                logger.warning(
                    "Reasoning call attempt %d/%d failed (retrying in %.1fs): %s",
                    attempt + 1,
                    self.num_retries + 1,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
