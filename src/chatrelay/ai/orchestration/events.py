"""Events produced by the orchestration loop.

Each event serializes to the tagged wire record a transport forwards to the
client verbatim. ``format_sse`` renders one server-sent-events frame.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar

from .types import ChartDescriptor

__all__ = [
    "ContentEvent",
    "ToolExecutionStartEvent",
    "ToolExecutionResultEvent",
    "ChartDataEvent",
    "DoneEvent",
    "ErrorEvent",
    "OrchestrationEvent",
    "format_sse",
    "SSE_DONE_FRAME",
]

SSE_DONE_FRAME = "data: [DONE]\n\n"


@dataclass(slots=True, frozen=True)
class ContentEvent:
    """A content fragment from the model, in arrival order."""

    type: ClassVar[str] = "content"

    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(slots=True, frozen=True)
class ToolExecutionStartEvent:
    """Emitted right before a tool is dispatched."""

    type: ClassVar[str] = "tool_execution_start"

    tool_name: str
    tool_call_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "toolName": self.tool_name, "toolCallId": self.tool_call_id}


@dataclass(slots=True, frozen=True)
class ToolExecutionResultEvent:
    """Emitted once a tool's result (or failure) is in the history."""

    type: ClassVar[str] = "tool_execution_result"

    tool_name: str
    tool_call_id: str
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolName": self.tool_name,
            "toolCallId": self.tool_call_id,
            "isError": self.is_error,
        }


@dataclass(slots=True, frozen=True)
class ChartDataEvent:
    """A chart detected in a tool result, emitted as soon as it is found."""

    type: ClassVar[str] = "chart_data"

    chart: ChartDescriptor

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "chartData": self.chart.to_dict()}


@dataclass(slots=True, frozen=True)
class ErrorEvent:
    """A fatal error for the current run."""

    type: ClassVar[str] = "error"

    error: str
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "error": self.error}


@dataclass(slots=True, frozen=True)
class DoneEvent:
    """Always the last event of a run."""

    type: ClassVar[str] = "done"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


OrchestrationEvent = (
    ContentEvent
    | ToolExecutionStartEvent
    | ToolExecutionResultEvent
    | ChartDataEvent
    | ErrorEvent
    | DoneEvent
)


def format_sse(event: OrchestrationEvent) -> str:
    """Render ``event`` as a single ``data:`` frame."""
    return f"data: {json.dumps(event.to_dict(), ensure_ascii=False, default=str)}\n\n"
