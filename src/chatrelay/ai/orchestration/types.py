"""Core type definitions for the orchestration loop.

This module defines the immutable dataclasses that flow between the model
stream, the tool executor, the chart detector and the caller. Every type is
frozen so instances can be shared freely across stages; the only mutable
state in a run is the working history list owned by the orchestrator.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    # Stream events
    "ContentFragment",
    "ToolCallFragment",
    "FinishSignal",
    "StreamEvent",
    # Conversation
    "MessageRole",
    "ToolCallRequest",
    "ConversationMessage",
    # Tools
    "ToolDescriptor",
    "ContentItem",
    "ToolResult",
    # Charts
    "ChartKind",
    "ChartDescriptor",
    # Turn output
    "AccumulatedTurn",
]


# -----------------------------------------------------------------------------
# Helper
# -----------------------------------------------------------------------------


def _utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Model Stream Events
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ContentFragment:
    """A piece of assistant text, forwarded to the caller as soon as it arrives."""

    text: str


@dataclass(slots=True, frozen=True)
class ToolCallFragment:
    """A partial tool call keyed by its positional index within the turn.

    Attributes:
        index: Position of the call in the model's tool-call list.
        id: Call identifier, usually present only on the first fragment.
        type: Call type (always ``"function"`` for current providers).
        name: Function name, usually present only on the first fragment.
        arguments: A slice of the JSON argument string.
    """

    index: int
    id: str | None = None
    type: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(slots=True, frozen=True)
class FinishSignal:
    """The finish reason reported by the model for the current turn."""

    reason: str


StreamEvent = ContentFragment | ToolCallFragment | FinishSignal


# -----------------------------------------------------------------------------
# Conversation Types
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class ToolCallRequest:
    """A complete tool call assembled from streamed fragments.

    Attributes:
        id: Identifier unique within the turn.
        name: Name of the requested tool.
        arguments: Raw JSON argument string as produced by the model.
        index: Position in the model's tool-call list.
    """

    id: str
    name: str
    arguments: str = "{}"
    index: int = 0

    def to_chat_param(self) -> dict[str, Any]:
        """Convert to the OpenAI ``tool_calls`` entry format."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_chat_param(cls, payload: Mapping[str, Any], index: int = 0) -> ToolCallRequest:
        function = payload.get("function") or {}
        return cls(
            id=str(payload.get("id", "")),
            name=str(function.get("name", "")),
            arguments=str(function.get("arguments") or "{}"),
            index=index,
        )


@dataclass(slots=True, frozen=True)
class ConversationMessage:
    """Immutable chat message.

    History order forms the prompt given to the model. Charts and the
    timestamp travel with the message for the caller but are never sent to
    the model.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        tool_calls: Tool calls requested by the assistant, or ``None``.
        tool_call_id: ID linking a tool result to its call.
        timestamp: Creation time (UTC).
        charts: Chart descriptors detected in a tool result.
    """

    role: MessageRole
    content: str
    tool_calls: tuple[ToolCallRequest, ...] | None = None
    tool_call_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    charts: tuple[ChartDescriptor, ...] = ()

    def __post_init__(self) -> None:
        if self.tool_calls is not None and not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if not isinstance(self.charts, tuple):
            object.__setattr__(self, "charts", tuple(self.charts))

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [call.to_chat_param() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire format used by chat front-ends."""
        payload: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": int(self.timestamp.timestamp() * 1000),
        }
        if self.tool_calls:
            payload["tool_calls"] = [call.to_chat_param() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.charts:
            payload["chartData"] = [chart.to_dict() for chart in self.charts]
        return payload

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> ConversationMessage:
        """Create a message from a chat-completions style mapping."""
        raw_calls = param.get("tool_calls")
        tool_calls = None
        if raw_calls:
            tool_calls = tuple(
                ToolCallRequest.from_chat_param(call, index=idx) for idx, call in enumerate(raw_calls)
            )
        timestamp = param.get("timestamp")
        kwargs: dict[str, Any] = {}
        if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            kwargs["timestamp"] = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
        return cls(
            role=param.get("role", "user"),  # type: ignore[arg-type]
            content=str(param.get("content") or ""),
            tool_calls=tool_calls,
            tool_call_id=param.get("tool_call_id"),
            **kwargs,
        )

    @classmethod
    def system(cls, content: str) -> ConversationMessage:
        """Create a system message."""
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ConversationMessage:
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[ToolCallRequest] | None = None,
    ) -> ConversationMessage:
        """Create an assistant message; an empty call list is stored as ``None``."""
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(
        cls,
        content: str,
        tool_call_id: str,
        charts: Sequence[ChartDescriptor] = (),
    ) -> ConversationMessage:
        """Create a tool result message."""
        return cls(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            charts=tuple(charts),
        )


# -----------------------------------------------------------------------------
# Tool Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolDescriptor:
    """A tool offered by a provider.

    Attributes:
        name: Tool name the model uses to request it.
        description: Human-readable description for the model.
        input_schema: JSON Schema for the tool's arguments.
        provider_id: Identifier of the provider that hosts the tool.
    """

    name: str
    description: str = ""
    input_schema: Mapping[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    provider_id: str = ""

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI function-tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.input_schema),
            },
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": dict(self.input_schema),
            "serverId": self.provider_id,
        }


@dataclass(slots=True, frozen=True)
class ContentItem:
    """One entry of a tool result.

    Text items carry ``text``; every other type carries structured ``data``.
    Some providers serialize JSON into ``text``; the chart detector looks at
    both.
    """

    type: str
    text: str | None = None
    data: Any = None

    @property
    def is_text(self) -> bool:
        return self.type == "text"

    @classmethod
    def of_text(cls, text: str) -> ContentItem:
        return cls(type="text", text=text)

    @classmethod
    def of_data(cls, data: Any, type: str = "data") -> ContentItem:
        return cls(type=type, data=data)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> ContentItem:
        """Build an item from a provider mapping that has a ``type`` key."""
        text = payload.get("text")
        return cls(
            type=str(payload["type"]),
            text=text if isinstance(text, str) else None,
            data=payload.get("data"),
        )

    def render(self) -> str:
        """Return the text the model sees for this item, or ``""``."""
        if self.is_text and self.text:
            return self.text
        if self.data:
            return json.dumps(self.data, indent=2, ensure_ascii=False, default=str)
        return ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.text is not None:
            payload["text"] = self.text
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Normalized result of one tool execution.

    ``content`` is never empty once it leaves the executor.
    """

    content: tuple[ContentItem, ...]
    is_error: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.content, tuple):
            object.__setattr__(self, "content", tuple(self.content))

    @classmethod
    def text(cls, text: str, *, is_error: bool = False) -> ToolResult:
        """Create a single-item text result."""
        return cls(content=(ContentItem.of_text(text),), is_error=is_error)

    def format_for_model(self) -> str:
        """Join item renderings with blank lines, skipping empty ones."""
        parts = [item.render() for item in self.content]
        return "\n\n".join(part for part in parts if part)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": [item.to_dict() for item in self.content],
            "isError": self.is_error,
        }


# -----------------------------------------------------------------------------
# Chart Types
# -----------------------------------------------------------------------------

ChartKind = Literal["line", "bar", "area"]


@dataclass(slots=True, frozen=True)
class ChartDescriptor:
    """A chart derived from tabular tool output.

    The generated ``id`` is excluded from equality so repeated detection over
    the same result compares equal.

    Attributes:
        kind: Chart type.
        title: Human-readable title.
        rows: Flattened records backing the chart.
        x_key: Field used for the X axis.
        y_keys: Fields plotted on the Y axis.
        colors: One color per Y key.
        labels: Display label per Y key.
        id: Unique chart identifier.
    """

    kind: ChartKind
    title: str
    rows: tuple[Mapping[str, Any], ...]
    x_key: str
    y_keys: tuple[str, ...]
    colors: tuple[str, ...] = ()
    labels: Mapping[str, str] = field(default_factory=dict)
    id: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        for name in ("rows", "y_keys", "colors"):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the chart payload consumed by the renderer."""
        return {
            "id": self.id,
            "type": self.kind,
            "title": self.title,
            "data": [dict(row) for row in self.rows],
            "config": {
                "xKey": self.x_key,
                "yKeys": list(self.y_keys),
                "colors": list(self.colors),
                "labels": dict(self.labels),
            },
        }


# -----------------------------------------------------------------------------
# Turn Output
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class AccumulatedTurn:
    """Fully assembled result of one streamed model turn.

    Attributes:
        message: The assistant message (with ``tool_calls`` only if any survived).
        tool_calls: Complete tool calls in index order.
        finish_reason: ``"tool_calls"`` when any tool delta arrived, else the
            stream's own reason (default ``"stop"``).
    """

    message: ConversationMessage
    tool_calls: tuple[ToolCallRequest, ...] = ()
    finish_reason: str = "stop"

    def __post_init__(self) -> None:
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def requests_tools(self) -> bool:
        """True when the loop should execute tools before the next turn."""
        return self.finish_reason == "tool_calls" and bool(self.tool_calls)
