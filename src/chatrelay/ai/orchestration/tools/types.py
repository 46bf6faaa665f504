"""Tool provider types.

A provider hosts a set of tools and exposes two operations: list them and
call one. Remote transports (MCP over stdio or HTTP) live outside this
package; :class:`~.registry.LocalToolProvider` is the in-process analogue.
"""

from __future__ import annotations

import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, Sequence, runtime_checkable

from ..types import ToolDescriptor, ToolResult

__all__ = [
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "SimpleTool",
    "ToolProvider",
    "ProviderStatus",
    "to_descriptor",
    "wrap_handler_result",
]

_EMPTY_SCHEMA: Mapping[str, Any] = {"type": "object", "properties": {}}


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a locally hosted tool.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's parameters.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def to_descriptor(self, provider_id: str) -> ToolDescriptor:
        """Attach the spec to ``provider_id``."""
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            input_schema=dict(self.parameters) if self.parameters else dict(_EMPTY_SCHEMA),
            provider_id=provider_id,
        )


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

# Synchronous tool handler
ToolHandler = Callable[[Mapping[str, Any]], Any]

# Asynchronous tool handler
AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


def wrap_handler_result(value: Any) -> Any:
    """Shape a plain handler return value like an MCP tool result.

    Values that already look like a result (a ``ToolResult`` or a mapping
    with ``content``) pass through. Strings become one text item; anything
    else is serialized as JSON text.
    """
    if isinstance(value, ToolResult):
        return value
    if isinstance(value, Mapping) and "content" in value:
        return value
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, indent=2, ensure_ascii=False, default=str)
    return {"content": [{"type": "text", "text": text}], "isError": False}


@dataclass
class SimpleTool:
    """Tool implementation wrapping a callable.

    Example:
        def steps(args):
            return [{"date": "2024-01-01", "steps": 100}]

        tool = SimpleTool(
            spec=ToolSpec(name="get_steps", description="Daily steps"),
            handler=steps,
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler
    _is_async: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = inspect.iscoroutinefunction(self.handler)

    @property
    def name(self) -> str:
        """Get the tool's name from its spec."""
        return self.spec.name

    async def execute(self, arguments: Mapping[str, Any]) -> Any:
        """Run the handler and wrap its return value."""
        if self._is_async:
            value = await self.handler(arguments)  # type: ignore[misc]
        else:
            value = self.handler(arguments)
        return wrap_handler_result(value)


# -----------------------------------------------------------------------------
# Provider Protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolProvider(Protocol):
    """Protocol for tool-hosting collaborators.

    Implementations must tolerate concurrent ``call_tool`` invocations.

    Attributes:
        provider_id: Identifier attached to every descriptor this provider lists.
    """

    @property
    def provider_id(self) -> str:
        ...

    async def list_tools(self) -> Sequence[ToolDescriptor | ToolSpec | Mapping[str, Any]]:
        """Return the tools this provider currently offers."""
        ...

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> Any:
        """Invoke ``name`` and return the raw (MCP-shaped) result."""
        ...


@dataclass(slots=True, frozen=True)
class ProviderStatus:
    """Health snapshot of one registered provider.

    Attributes:
        id: Provider identifier.
        connected: Whether the last refresh succeeded.
        tool_count: Number of tools listed at the last refresh.
        error: Failure message from the last refresh, if any.
    """

    id: str
    connected: bool
    tool_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "connected": self.connected,
            "toolCount": self.tool_count,
            "error": self.error,
        }


def to_descriptor(entry: ToolDescriptor | ToolSpec | Mapping[str, Any], provider_id: str) -> ToolDescriptor:
    """Normalize a listed tool into a descriptor owned by ``provider_id``."""
    if isinstance(entry, ToolDescriptor):
        if entry.provider_id == provider_id:
            return entry
        return ToolDescriptor(
            name=entry.name,
            description=entry.description,
            input_schema=entry.input_schema,
            provider_id=provider_id,
        )
    if isinstance(entry, ToolSpec):
        return entry.to_descriptor(provider_id)
    if isinstance(entry, Mapping):
        schema = entry.get("inputSchema") or entry.get("input_schema") or entry.get("parameters")
        return ToolDescriptor(
            name=str(entry["name"]),
            description=str(entry.get("description") or ""),
            input_schema=dict(schema) if schema else dict(_EMPTY_SCHEMA),
            provider_id=provider_id,
        )
    raise TypeError(f"Unsupported tool listing entry: {type(entry).__name__}")
