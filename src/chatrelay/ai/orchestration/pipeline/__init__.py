"""Pipeline stages for one orchestration iteration.

This package contains the stages the loop drives each iteration:
- execute: Stream a model turn and assemble its tool calls
- tools: Execute tool calls and normalize their results
"""

from .execute import (
    ModelClient,
    TurnAccumulator,
    aggregate_stream_events,
    execute_model,
)

from .tools import (
    DEFAULT_TOOL_TIMEOUT,
    ToolCaller,
    ToolExecutionResult,
    execute_tool,
    execute_tool_call,
    format_tool_error,
    normalize_tool_result,
    parse_tool_arguments,
    resolve_tool,
)

__all__ = [
    # execute.py exports
    "ModelClient",
    "TurnAccumulator",
    "aggregate_stream_events",
    "execute_model",
    # tools.py exports
    "DEFAULT_TOOL_TIMEOUT",
    "ToolCaller",
    "ToolExecutionResult",
    "execute_tool",
    "execute_tool_call",
    "format_tool_error",
    "normalize_tool_result",
    "parse_tool_arguments",
    "resolve_tool",
]
