"""Tests for the orchestration wire events."""

from __future__ import annotations

import json

from chatrelay.ai.orchestration.events import (
    SSE_DONE_FRAME,
    ChartDataEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ToolExecutionResultEvent,
    ToolExecutionStartEvent,
    format_sse,
)
from chatrelay.ai.orchestration.types import ChartDescriptor


def test_event_payloads_use_wire_keys() -> None:
    assert ContentEvent("hi").to_dict() == {"type": "content", "content": "hi"}
    assert ToolExecutionStartEvent("get_steps", "call_1").to_dict() == {
        "type": "tool_execution_start",
        "toolName": "get_steps",
        "toolCallId": "call_1",
    }
    assert ToolExecutionResultEvent("get_steps", "call_1", is_error=True).to_dict() == {
        "type": "tool_execution_result",
        "toolName": "get_steps",
        "toolCallId": "call_1",
        "isError": True,
    }
    assert ErrorEvent("boom", code="timeout").to_dict() == {"type": "error", "error": "boom"}
    assert DoneEvent().to_dict() == {"type": "done"}


def test_chart_event_embeds_descriptor() -> None:
    chart = ChartDescriptor(
        kind="area",
        title="Steps - Get Steps",
        rows=[{"date": "2024-01-01", "steps": 1}],
        x_key="date",
        y_keys=["steps"],
        colors=["#00D9FF"],
        labels={"steps": "Steps"},
        id="chart-1",
    )
    payload = ChartDataEvent(chart).to_dict()
    assert payload["type"] == "chart_data"
    assert payload["chartData"] == {
        "id": "chart-1",
        "type": "area",
        "title": "Steps - Get Steps",
        "data": [{"date": "2024-01-01", "steps": 1}],
        "config": {"xKey": "date", "yKeys": ["steps"], "colors": ["#00D9FF"], "labels": {"steps": "Steps"}},
    }


def test_format_sse_frames() -> None:
    frame = format_sse(ContentEvent("héllo"))
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):]) == {"type": "content", "content": "héllo"}
    assert SSE_DONE_FRAME == "data: [DONE]\n\n"
