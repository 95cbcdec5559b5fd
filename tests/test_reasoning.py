"""Tests for mm_agent.reasoning — message conversion and the litellm adapter."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import litellm
import pytest

from mm_agent.errors import (
    ReasoningAuthError,
    ReasoningEmptyResponseError,
    ReasoningTransientError,
)
from mm_agent.models import (
    Message,
    TextBlock,
    ToolInvocationRequest,
    ToolInvocationResult,
)
from mm_agent.reasoning import (
    LiteLLMReasoningService,
    ReasoningService,
    parse_completion,
    to_openai_messages,
)


def _completion(content=None, tool_calls=None, finish_reason="stop"):
    calls = [
        SimpleNamespace(
            id=tc["id"],
            type="function",
            function=SimpleNamespace(name=tc["name"], arguments=tc["arguments"]),
        )
        for tc in (tool_calls or [])
    ]
    message = SimpleNamespace(content=content, tool_calls=calls or None)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        model="test-model",
    )


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


class TestToOpenAIMessages:
    def test_text_only(self) -> None:
        assert to_openai_messages([Message.user("hi")]) == [{"role": "user", "content": "hi"}]

    def test_tool_round_trip_shape(self) -> None:
        messages = [
            Message.user("list it"),
            Message("assistant", (
                TextBlock("Looking."),
                ToolInvocationRequest(id="call_1", tool_name="list_files", input={"directory": "."}),
            )),
            Message("user", (
                ToolInvocationResult("call_1", payload=["a.py"]),
            )),
        ]
        out = to_openai_messages(messages)

        assert out[1]["role"] == "assistant"
        assert out[1]["content"] == "Looking."
        call = out[1]["tool_calls"][0]
        assert call["id"] == "call_1"
        assert call["function"]["name"] == "list_files"
        assert json.loads(call["function"]["arguments"]) == {"directory": "."}

        assert out[2] == {"role": "tool", "tool_call_id": "call_1", "content": '["a.py"]'}

    def test_error_result_not_truncated(self) -> None:
        messages = [
            Message("user", (
                ToolInvocationResult.error("c1", "Tool nope not found"),
                ToolInvocationResult("c2", payload="x" * 50),
            )),
        ]
        out = to_openai_messages(messages, max_result_length=10)
        assert out[0]["content"] == "Error: Tool nope not found"
        assert out[1]["content"].startswith("x" * 10)
        assert "truncated at 10 chars" in out[1]["content"]


class TestParseCompletion:
    def test_text(self) -> None:
        response = parse_completion(_completion(content="42"))
        assert response.text == "42"
        assert response.tool_requests == []
        assert response.usage["total_tokens"] == 15

    def test_tool_calls(self) -> None:
        response = parse_completion(_completion(tool_calls=[
            {"id": "c1", "name": "add", "arguments": '{"a": 1, "b": 2}'},
            {"id": "c2", "name": "add", "arguments": "not json"},
        ]))
        requests = response.tool_requests
        assert [r.id for r in requests] == ["c1", "c2"]
        assert requests[0].input == {"a": 1, "b": 2}
        assert requests[1].input == {}


# ---------------------------------------------------------------------------
# LiteLLMReasoningService
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestLiteLLMReasoningService:
    async def test_satisfies_protocol(self) -> None:
        assert isinstance(LiteLLMReasoningService("gpt-4o"), ReasoningService)

    async def test_passes_tools_and_settings(self) -> None:
        service = LiteLLMReasoningService("gpt-4o", max_tokens=77, temperature=0.1, timeout=5)
        tools = [{"type": "function", "function": {"name": "add", "parameters": {}}}]
        with patch("mm_agent.reasoning.litellm.acompletion", new_callable=AsyncMock) as mock:
            mock.return_value = _completion(content="ok")
            response = await service.respond([Message.user("hi")], tools)

        assert response.text == "ok"
        kwargs = mock.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 77
        assert kwargs["timeout"] == 5
        assert kwargs["tools"] == tools

    async def test_omits_empty_tools(self) -> None:
        service = LiteLLMReasoningService("gpt-4o")
        with patch("mm_agent.reasoning.litellm.acompletion", new_callable=AsyncMock) as mock:
            mock.return_value = _completion(content="pong")
            await service.respond([Message.user("ping")], [])
        assert "tools" not in mock.call_args.kwargs

    async def test_retries_transient_then_succeeds(self) -> None:
        retries: list[int] = []
        service = LiteLLMReasoningService(
            "gpt-4o", num_retries=2, base_delay=0.0, max_delay=0.0,
            on_retry=lambda attempt, err, delay: retries.append(attempt),
        )
        with patch("mm_agent.reasoning.litellm.acompletion", new_callable=AsyncMock) as mock:
            mock.side_effect = [ConnectionError("connection reset"), _completion(content="ok")]
            response = await service.respond([Message.user("hi")], [])
        assert response.text == "ok"
        assert retries == [0]
        assert mock.call_count == 2

    async def test_non_retryable_raises_classified(self) -> None:
        service = LiteLLMReasoningService("gpt-4o", num_retries=3, base_delay=0.0)
        err = litellm.AuthenticationError(message="Invalid API key", model="gpt-4o", llm_provider="openai")
        with patch("mm_agent.reasoning.litellm.acompletion", new_callable=AsyncMock) as mock:
            mock.side_effect = err
            with pytest.raises(ReasoningAuthError) as exc_info:
                await service.respond([Message.user("hi")], [])
        assert mock.call_count == 1
        assert exc_info.value.original is err

    async def test_exhausted_retries_raise_transient(self) -> None:
        service = LiteLLMReasoningService("gpt-4o", num_retries=1, base_delay=0.0, max_delay=0.0)
        with patch("mm_agent.reasoning.litellm.acompletion", new_callable=AsyncMock) as mock:
            mock.side_effect = TimeoutError("timed out")
            with pytest.raises(ReasoningTransientError):
                await service.respond([Message.user("hi")], [])
        assert mock.call_count == 2

    async def test_empty_response(self) -> None:
        service = LiteLLMReasoningService("gpt-4o", num_retries=0)
        with patch("mm_agent.reasoning.litellm.acompletion", new_callable=AsyncMock) as mock:
            mock.return_value = _completion(content="", finish_reason="length")
            with pytest.raises(ReasoningEmptyResponseError, match="finish_reason='length'"):
                await service.respond([Message.user("hi")], [])
