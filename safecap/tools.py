"""
SafeCap - Tool definitions and the name-keyed tool registry.

Tools are dispatched strictly by their registered name. A name the registry
does not know is handed to the configured fallback handler, so one bogus
tool call from the model never breaks the conversation.

Usage:
    ```python
    from safecap.tools import ToolRegistry, define_tool, generic_tool_handler

    @define_tool(description="Fetch current weather.", parameters={
        "type": "object",
        "properties": {"location": {"type": "string"}},
        "required": ["location"],
    })
    async def get_weather(location: str) -> dict:
        return {"temperature": 72, "location": location}

    registry = ToolRegistry([get_weather], fallback=generic_tool_handler)
    await registry.execute("get_weather", {"location": "Paris"})
    ```
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from .exceptions import ToolExecutionError

logger = logging.getLogger("safecap.tools")

FallbackHandler = Callable[[str, dict], Any]


@dataclass
class ToolDef:
    """Definition for a tool the remote agent can ask us to run.

    ``handler`` is called with the parsed arguments as keyword arguments and
    may be a plain function or a coroutine function.
    """

    name: str
    description: str
    parameters: dict = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {},
        }
    )
    handler: Optional[Callable] = None

    def to_schema(self) -> dict:
        """Return the tool definition as a JSON-schema dict for the LLM."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


def define_tool(
    name: Optional[str] = None,
    description: str = "",
    parameters: Optional[dict] = None,
) -> Callable:
    """Decorator that turns a function into a :class:`ToolDef`.

    The decorated function becomes the tool handler. Its ``__name__`` is
    used as the tool name unless *name* is supplied explicitly.
    """

    def decorator(func: Callable) -> ToolDef:
        tool_name = name or func.__name__
        return ToolDef(
            name=tool_name,
            description=description or (func.__doc__ or "").strip() or f"Tool: {tool_name}",
            parameters=parameters or {"type": "object", "properties": {}},
            handler=func,
        )

    return decorator


def generic_tool_handler(name: str, arguments: dict) -> dict:
    """Best-effort stand-in for tools nobody registered."""
    return {
        "tool": name,
        "arguments": arguments,
        "mock": True,
        "message": f"No executor is registered for '{name}'; returning a placeholder result.",
    }


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ToolRegistry:
    """Maps tool names to handlers.

    ``execute`` raises :class:`ToolExecutionError` when a handler fails, and
    for unknown names unless a ``fallback`` is configured.
    """

    def __init__(
        self,
        tools: Optional[Iterable[ToolDef]] = None,
        fallback: Optional[FallbackHandler] = None,
    ) -> None:
        self._tools: dict[str, ToolDef] = {}
        self.fallback = fallback
        for t in tools or []:
            self.register(t)

    def register(self, tool_def: ToolDef) -> ToolDef:
        if not tool_def.name:
            raise ValueError("Tool name must not be empty")
        if tool_def.handler is None:
            raise ValueError(f"Tool '{tool_def.name}' has no handler")
        self._tools[tool_def.name] = tool_def
        return tool_def

    def register_handler(
        self,
        name: str,
        handler: Callable,
        description: str = "",
        parameters: Optional[dict] = None,
    ) -> ToolDef:
        return self.register(
            ToolDef(
                name=name,
                description=description or f"Tool: {name}",
                parameters=parameters or {"type": "object", "properties": {}},
                handler=handler,
            )
        )

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Optional[ToolDef]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict]:
        """Registered tools in function-calling format."""
        return [{"type": "function", "function": t.to_schema()} for t in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, name: str, arguments: dict) -> Any:
        """Run the tool registered under *name* with *arguments*."""
        tool_def = self._tools.get(name)

        if tool_def is None:
            if self.fallback is None:
                raise ToolExecutionError(f"Unknown tool: {name}", tool_name=name)
            logger.warning("No executor registered for tool '%s', using fallback", name)
            try:
                return await _maybe_await(self.fallback(name, arguments))
            except Exception as e:
                raise ToolExecutionError(
                    f"Fallback for tool '{name}' failed: {e}", tool_name=name
                ) from e

        try:
            return await _maybe_await(tool_def.handler(**arguments))
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(f"Tool '{name}' failed: {e}", tool_name=name) from e
