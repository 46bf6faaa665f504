"""Tests for orchestration types and errors."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from chatrelay.ai.orchestration.errors import (
    ErrorCode,
    IterationCapExceeded,
    OrchestrationError,
    ToolError,
    ToolExecutionTimeout,
    UnknownTool,
    UpstreamUnavailable,
)
from chatrelay.ai.orchestration.types import (
    AccumulatedTurn,
    ChartDescriptor,
    ContentItem,
    ConversationMessage,
    ToolCallRequest,
    ToolDescriptor,
)


class TestConversationMessage:
    def test_chat_param_omits_charts_and_timestamp(self) -> None:
        chart = ChartDescriptor(kind="bar", title="t", rows=[{"a": "x", "b": 1}], x_key="a", y_keys=["b"])
        message = ConversationMessage.tool("payload", "call_1", [chart])
        assert message.to_chat_param() == {"role": "tool", "content": "payload", "tool_call_id": "call_1"}
        assert message.to_dict()["chartData"][0]["type"] == "bar"

    def test_assistant_with_tool_calls(self) -> None:
        call = ToolCallRequest(id="c1", name="get_steps", arguments='{"days": 7}')
        message = ConversationMessage.assistant("", [call])
        assert message.to_chat_param()["tool_calls"] == [
            {"id": "c1", "type": "function", "function": {"name": "get_steps", "arguments": '{"days": 7}'}}
        ]
        assert ConversationMessage.assistant("hi", []).tool_calls is None

    def test_from_chat_param_round_trips_tool_calls(self) -> None:
        param = {
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "x", "arguments": ""}}],
            "timestamp": 1_704_067_200_000,
        }
        message = ConversationMessage.from_chat_param(param)
        assert message.content == ""
        assert message.tool_calls == (ToolCallRequest(id="c1", name="x", arguments="{}"),)
        assert message.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert message.to_dict()["timestamp"] == 1_704_067_200_000

    def test_messages_are_immutable(self) -> None:
        message = ConversationMessage.user("hi")
        with pytest.raises(AttributeError):
            message.content = "changed"  # type: ignore[misc]


def test_tool_descriptor_openai_shape() -> None:
    tool = ToolDescriptor(name="get_steps", description="Steps", input_schema={"type": "object"}, provider_id="g")
    assert tool.to_openai_tool() == {
        "type": "function",
        "function": {"name": "get_steps", "description": "Steps", "parameters": {"type": "object"}},
    }
    assert tool.to_dict()["serverId"] == "g"


def test_content_item_render() -> None:
    assert ContentItem.of_text("x").render() == "x"
    assert ContentItem.of_data([1]).render() == "[\n  1\n]"
    assert ContentItem(type="image").render() == ""
    assert ContentItem.from_mapping({"type": "text", "text": "t", "extra": 1}) == ContentItem.of_text("t")


def test_accumulated_turn_requests_tools_only_with_calls() -> None:
    message = ConversationMessage.assistant("")
    assert not AccumulatedTurn(message=message, finish_reason="tool_calls").requests_tools
    call = ToolCallRequest(id="c", name="n")
    assert AccumulatedTurn(message=message, tool_calls=[call], finish_reason="tool_calls").requests_tools
    assert not AccumulatedTurn(message=message, tool_calls=[call], finish_reason="stop").requests_tools


class TestErrors:
    def test_upstream_unavailable_message(self) -> None:
        error = UpstreamUnavailable.for_endpoint("http://localhost:1234/v1")
        assert str(error) == "Cannot reach LLM endpoint at http://localhost:1234/v1. Is the server running?"
        assert error.to_dict() == {"error": ErrorCode.UPSTREAM_UNAVAILABLE, "message": str(error)}
        assert not error.recoverable

    def test_tool_errors_are_recoverable(self) -> None:
        error = ToolExecutionTimeout.after("slow", 30.0)
        assert isinstance(error, ToolError)
        assert isinstance(error, OrchestrationError)
        assert error.recoverable
        assert str(error) == "Tool execution timed out after 30s"
        assert UnknownTool.named("x").error_code == ErrorCode.UNKNOWN_TOOL

    def test_iteration_cap_default_message(self) -> None:
        error = IterationCapExceeded(max_iterations=10, details={"tool_call_count": 10})
        assert error.message == "Maximum tool execution iterations reached. Stopping for safety."
        assert error.to_dict()["details"] == {"tool_call_count": 10}

    def test_errors_can_be_raised_and_caught(self) -> None:
        with pytest.raises(OrchestrationError, match="not found"):
            raise UnknownTool.named("x")
