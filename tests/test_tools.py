"""Tests for mm_agent.tools — schema generation, execution, catalogs."""

from __future__ import annotations

import threading
from typing import Optional

import pytest
from pydantic import BaseModel

from mm_agent.errors import ToolExecutionError, ToolNotFoundError
from mm_agent.tools import Tool, ToolCatalog, callable_input_schema


def add(a: int, b: int) -> int:
    """Add two integers."""
    return a + b


async def search(query: str, limit: int = 10) -> list[str]:
    """Search for entities.

    Longer description that should not reach the declaration.
    """
    return [query] * min(limit, 2)


def tagged(tags: list[str], note: Optional[str] = None) -> dict:
    return {"tags": tags, "note": note}


class ReadParams(BaseModel):
    path: str
    encoding: str = "utf-8"


# ---------------------------------------------------------------------------
# callable_input_schema
# ---------------------------------------------------------------------------


class TestCallableInputSchema:
    def test_basic_types(self) -> None:
        schema = callable_input_schema(add)
        assert schema == {
            "type": "object",
            "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
            "required": ["a", "b"],
        }

    def test_default_not_required(self) -> None:
        schema = callable_input_schema(search)
        assert schema["required"] == ["query"]
        assert schema["properties"]["limit"] == {"type": "integer", "default": 10}

    def test_optional_and_list(self) -> None:
        schema = callable_input_schema(tagged)
        assert schema["properties"]["tags"] == {"type": "array", "items": {"type": "string"}}
        assert schema["properties"]["note"] == {"type": "string", "default": None}

    def test_missing_type_hint_raises(self) -> None:
        def untyped(x):  # type: ignore[no-untyped-def]
            return x

        with pytest.raises(ValueError, match="no type annotation"):
            callable_input_schema(untyped)


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------


class TestToolDeclaration:
    def test_from_callable_uses_docstring_first_line(self) -> None:
        tool = Tool.from_callable(search)
        assert tool.name == "search"
        assert tool.description == "Search for entities."

    def test_declaration_openai_format(self) -> None:
        decl = Tool.from_callable(add).declaration()
        assert decl["type"] == "function"
        assert decl["function"]["name"] == "add"
        assert decl["function"]["parameters"]["required"] == ["a", "b"]

    def test_from_model_schema(self) -> None:
        tool = Tool.from_model("read_file", "Read a file", ReadParams, lambda p: p.path)
        assert tool.input_schema["properties"]["path"]["type"] == "string"
        assert tool.input_schema["required"] == ["path"]


@pytest.mark.asyncio
class TestToolExecute:
    async def test_sync_runs_in_worker_thread(self) -> None:
        main_thread = threading.get_ident()
        seen: list[int] = []

        def where() -> str:
            seen.append(threading.get_ident())
            return "ok"

        assert await Tool.from_callable(where).execute({}) == "ok"
        assert seen and seen[0] != main_thread

    async def test_async_function(self) -> None:
        assert await Tool.from_callable(search).execute({"query": "x", "limit": 5}) == ["x", "x"]

    async def test_input_coerced_by_pydantic(self) -> None:
        assert await Tool.from_callable(add).execute({"a": "2", "b": 3}) == 5

    async def test_invalid_input_raises_execution_error(self) -> None:
        with pytest.raises(ToolExecutionError, match="Invalid input for add"):
            await Tool.from_callable(add).execute({"a": "two", "b": 3})

    async def test_handler_exception_wrapped(self) -> None:
        def broken() -> str:
            raise KeyError("missing")

        with pytest.raises(ToolExecutionError) as exc_info:
            await Tool.from_callable(broken).execute({})
        assert exc_info.value.tool_name == "broken"
        assert isinstance(exc_info.value.original, KeyError)

    async def test_from_model_passes_instance(self) -> None:
        tool = Tool.from_model("read_file", "Read", ReadParams, lambda p: f"{p.path}:{p.encoding}")
        assert await tool.execute({"path": "a.txt"}) == "a.txt:utf-8"

    async def test_from_model_validation_error(self) -> None:
        tool = Tool.from_model("read_file", "Read", ReadParams, lambda p: p.path)
        with pytest.raises(ToolExecutionError, match="Invalid input"):
            await tool.execute({})


# ---------------------------------------------------------------------------
# ToolCatalog
# ---------------------------------------------------------------------------


class TestToolCatalog:
    def test_from_functions(self) -> None:
        catalog = ToolCatalog.from_functions("math", "Arithmetic", [add, search])
        assert catalog.names() == ["add", "search"]
        assert len(catalog.declarations()) == 2
        assert "add" in catalog
        assert len(catalog) == 2

    def test_get_unknown_raises(self) -> None:
        catalog = ToolCatalog.from_functions("math", "", [add])
        with pytest.raises(ToolNotFoundError, match="Tool nope not found"):
            catalog.get("nope")

    def test_duplicate_name_raises(self) -> None:
        with pytest.raises(ValueError, match="Duplicate tool name"):
            ToolCatalog.from_functions("math", "", [add, add])

    def test_add(self) -> None:
        catalog = ToolCatalog("empty")
        catalog.add(Tool.from_callable(add))
        assert catalog.get("add").name == "add"
        with pytest.raises(ValueError):
            catalog.add(Tool.from_callable(add))

    def test_empty_catalog(self) -> None:
        catalog = ToolCatalog("none")
        assert catalog.declarations() == []
        assert len(catalog) == 0
