"""Tool Catalog: named, schema-declared callables for one agent.

Build tools from plain Python functions (schema from type hints and docstring)
or from a pydantic input model:

    async def list_files(directory: str, pattern: str = "*") -> list[str]:
        '''List files in a directory.'''
        ...

    catalog = ToolCatalog.from_functions("file", "File operations", [list_files])
    catalog.declarations()  # ready for the reasoning service's tools= parameter

The loop never inspects schema semantics; each tool validates its own input.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Union, get_args, get_origin, get_type_hints

from pydantic import BaseModel, ValidationError, validate_call

from mm_agent.errors import ToolExecutionError, ToolNotFoundError

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Union[Any, Awaitable[Any]]]

# Python type → JSON Schema type
_TYPE_MAP: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
}


def _type_to_json_schema(tp: Any) -> dict[str, Any]:
    """Convert a Python type annotation to a JSON Schema fragment.

    Supports: str, int, float, bool, list[X], dict, Optional[X], Any.
    Raises ValueError for unsupported types.
    """
    if tp is Any:
        return {}

    origin = get_origin(tp)
    args = get_args(tp)

    # Optional[X] and X | None → unwrap to X
    if origin is Union or (origin is not None and type(None) in args):
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1:
            return _type_to_json_schema(non_none[0])

    if origin is list or tp is list:
        schema: dict[str, Any] = {"type": "array"}
        if args:
            schema["items"] = _type_to_json_schema(args[0])
        return schema

    if origin is dict or tp is dict:
        return {"type": "object"}

    if tp in _TYPE_MAP:
        return {"type": _TYPE_MAP[tp]}

    raise ValueError(
        f"Unsupported type annotation: {tp!r}. "
        f"Supported: str, int, float, bool, list[X], dict, Optional[X], Any."
    )


def callable_input_schema(fn: Callable[..., Any]) -> dict[str, Any]:
    """JSON Schema for a callable's keyword parameters.

    Every parameter must have a type annotation (raises ValueError otherwise).
    """
    sig = inspect.signature(fn)
    try:
        hints = get_type_hints(fn)
    except Exception:
        hints = {}

    properties: dict[str, Any] = {}
    required: list[str] = []

    for name, param in sig.parameters.items():
        if name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        if name not in hints:
            raise ValueError(
                f"Parameter {name!r} of {fn.__name__!r} has no type annotation. "
                f"All parameters must be typed for schema generation."
            )
        prop = _type_to_json_schema(hints[name])
        if param.default is not inspect.Parameter.empty:
            prop["default"] = param.default
        else:
            required.append(name)
        properties[name] = prop

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _first_doc_line(fn: Callable[..., Any]) -> str:
    if not fn.__doc__:
        return ""
    return fn.__doc__.strip().split("\n")[0].strip()


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------


@dataclass
class Tool:
    """One executable capability: a name, an input schema and a handler.

    The handler receives the validated input as keyword arguments and may be
    sync or async. Sync handlers run in a worker thread so that parallel
    dispatch in the tool loop does not serialize on blocking I/O.
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler
    input_model: type[BaseModel] | None = None

    @classmethod
    def from_callable(
        cls,
        fn: Callable[..., Any],
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> "Tool":
        """Wrap a typed function; arguments are validated by pydantic on each call."""
        return cls(
            name=name or fn.__name__,
            description=description if description is not None else _first_doc_line(fn),
            input_schema=callable_input_schema(fn),
            handler=validate_call(fn),
        )

    @classmethod
    def from_model(
        cls,
        name: str,
        description: str,
        model: type[BaseModel],
        handler: ToolHandler,
    ) -> "Tool":
        """Tool whose input is validated against *model* and passed as a model instance.

        The handler is called as ``handler(params)``.
        """
        return cls(
            name=name,
            description=description,
            input_schema=model.model_json_schema(),
            handler=handler,
            input_model=model,
        )

    def declaration(self) -> dict[str, Any]:
        """OpenAI function-calling declaration for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    async def execute(self, tool_input: dict[str, Any]) -> Any:
        """Run the handler. Any failure is raised as ToolExecutionError."""
        try:
            if self.input_model is not None:
                params = self.input_model.model_validate(tool_input)
                call = lambda: self.handler(params)  # noqa: E731
            else:
                call = lambda: self.handler(**tool_input)  # noqa: E731

            if _is_async(self.handler):
                result = await call()
            else:
                result = await asyncio.to_thread(call)
                if inspect.isawaitable(result):
                    result = await result
            return result
        except ToolExecutionError:
            raise
        except ValidationError as exc:
            raise ToolExecutionError(self.name, f"Invalid input for {self.name}: {exc}", original=exc) from exc
        except Exception as exc:
            raise ToolExecutionError(self.name, str(exc) or type(exc).__name__, original=exc) from exc


def _is_async(fn: Callable[..., Any]) -> bool:
    if inspect.iscoroutinefunction(fn):
        return True
    # validate_call wrappers keep the original on __wrapped__
    wrapped = getattr(fn, "__wrapped__", None)
    return wrapped is not None and inspect.iscoroutinefunction(wrapped)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass
class ToolCatalog:
    """The set of tools one agent exposes, keyed by unique tool name."""

    name: str
    description: str = ""
    tools: list[Tool] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._by_name: dict[str, Tool] = {}
        for tool in self.tools:
            if tool.name in self._by_name:
                raise ValueError(f"Duplicate tool name {tool.name!r} in catalog {self.name!r}")
            self._by_name[tool.name] = tool

    @classmethod
    def from_functions(
        cls,
        name: str,
        description: str,
        functions: Iterable[Callable[..., Any]],
    ) -> "ToolCatalog":
        return cls(name=name, description=description, tools=[Tool.from_callable(fn) for fn in functions])

    def add(self, tool: Tool) -> None:
        if tool.name in self._by_name:
            raise ValueError(f"Duplicate tool name {tool.name!r} in catalog {self.name!r}")
        self.tools.append(tool)
        self._by_name[tool.name] = tool

    def get(self, tool_name: str) -> Tool:
        try:
            return self._by_name[tool_name]
        except KeyError:
            raise ToolNotFoundError(tool_name) from None

    def names(self) -> list[str]:
        return [t.name for t in self.tools]

    def declarations(self) -> list[dict[str, Any]]:
        return [t.declaration() for t in self.tools]

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._by_name

    def __len__(self) -> int:
        return len(self.tools)
