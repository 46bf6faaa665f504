"""Pipeline stage: Tools.

This module resolves a requested tool to its provider, parses the model's
arguments, dispatches under a timeout and normalizes whatever the provider
returns into a :class:`ToolResult`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..errors import (
    InvalidArguments,
    MalformedToolResult,
    ToolError,
    ToolExecutionTimeout,
    ToolProviderError,
    UnknownTool,
)
from ..types import ContentItem, ToolCallRequest, ToolDescriptor, ToolResult

__all__ = [
    "ToolCaller",
    "ToolExecutionResult",
    "DEFAULT_TOOL_TIMEOUT",
    "parse_tool_arguments",
    "normalize_tool_result",
    "resolve_tool",
    "execute_tool",
    "execute_tool_call",
    "format_tool_error",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT = 30.0

_MCP_SHAPE_HINT = 'The MCP server needs to return: {content: [{type: "text", text: "..."}]}'
_MISSING = object()


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolCaller(Protocol):
    """Anything that can route a tool call to a provider.

    The ToolProviderRegistry class conforms to this protocol.
    """

    async def call_tool(
        self,
        provider_id: str,
        name: str,
        arguments: Mapping[str, Any],
    ) -> Any:
        """Invoke ``name`` on ``provider_id`` and return the provider's raw result."""
        ...


# -----------------------------------------------------------------------------
# Result Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolExecutionResult:
    """Outcome of executing a single tool call.

    Attributes:
        call: The tool call that was executed.
        result: The normalized result, or ``None`` when execution failed.
        error: The tool-level error, or ``None`` on success.
        duration_ms: Execution time in milliseconds.
    """

    call: ToolCallRequest
    result: ToolResult | None = None
    error: ToolError | None = None
    duration_ms: float = 0.0

    @classmethod
    def from_success(
        cls,
        call: ToolCallRequest,
        result: ToolResult,
        duration_ms: float = 0.0,
    ) -> ToolExecutionResult:
        """Create a successful result."""
        return cls(call=call, result=result, duration_ms=duration_ms)

    @classmethod
    def from_error(
        cls,
        call: ToolCallRequest,
        error: ToolError,
        duration_ms: float = 0.0,
    ) -> ToolExecutionResult:
        """Create a failed result."""
        return cls(call=call, error=error, duration_ms=duration_ms)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def is_error(self) -> bool:
        """True when execution failed or the provider flagged its result."""
        if self.result is None:
            return True
        return self.result.is_error

    @property
    def content(self) -> str:
        """The text the model sees for this call."""
        if self.result is not None:
            return self.result.format_for_model()
        return format_tool_error(self.call.name, self.error)


def format_tool_error(tool_name: str, error: BaseException | None) -> str:
    """Render the tool message recorded for a failed execution."""
    if error is None:
        return f"Error executing {tool_name}"
    return f"Error executing {tool_name}: {str(error) or type(error).__name__}"


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def parse_tool_arguments(arguments: str, *, tool_name: str = "") -> dict[str, Any]:
    """Parse tool arguments from a JSON string.

    An empty string means no arguments.

    Raises:
        InvalidArguments: If the string is not a JSON object.
    """
    if not arguments or not arguments.strip():
        return {}

    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise InvalidArguments(
            message=f"Invalid tool arguments: {exc}",
            tool_name=tool_name,
            raw_arguments=arguments,
        ) from exc
    if not isinstance(parsed, dict):
        raise InvalidArguments(
            message=f"Invalid tool arguments: expected a JSON object, got {type(parsed).__name__}",
            tool_name=tool_name,
            raw_arguments=arguments,
        )
    return parsed


def resolve_tool(name: str, known_tools: Sequence[ToolDescriptor]) -> ToolDescriptor:
    """Find the descriptor for ``name``.

    Raises:
        UnknownTool: If no descriptor carries that name.
    """
    for descriptor in known_tools:
        if descriptor.name == name:
            return descriptor
    raise UnknownTool.named(name)


def _as_mapping(value: Any) -> Mapping[str, Any] | None:
    if isinstance(value, Mapping):
        return value
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        dumped = dump()
        if isinstance(dumped, Mapping):
            return dumped
    return None


def _coerce_item(item: Any) -> ContentItem | None:
    if isinstance(item, ContentItem):
        return item
    payload = _as_mapping(item)
    if payload is None:
        item_type = getattr(item, "type", None)
        if not item_type or isinstance(item, (str, bytes)):
            return None
        return ContentItem(
            type=str(item_type),
            text=getattr(item, "text", None) if isinstance(getattr(item, "text", None), str) else None,
            data=getattr(item, "data", None),
        )
    if not payload.get("type"):
        return None
    return ContentItem.from_mapping(payload)


def _split_raw_result(raw: Any) -> tuple[Any, bool]:
    payload = _as_mapping(raw)
    if payload is not None:
        flag = payload.get("isError", payload.get("is_error", False))
        return payload.get("content", _MISSING), bool(flag)
    flag = getattr(raw, "isError", getattr(raw, "is_error", False))
    return getattr(raw, "content", _MISSING), bool(flag)


def normalize_tool_result(
    raw: Any,
    *,
    tool_name: str,
    arguments: Mapping[str, Any] | None = None,
) -> ToolResult:
    """Coerce a provider result into a non-empty :class:`ToolResult`.

    Shape problems become a single synthetic text item: missing or non-list
    content and all-invalid items are flagged as errors; an empty list is a
    legitimate "no data" answer and is not.
    """
    if isinstance(raw, ToolResult):
        content: Any = list(raw.content)
        is_error = raw.is_error
    else:
        content, is_error = _split_raw_result(raw)

    if content is _MISSING or content is None:
        LOGGER.error("Tool '%s' returned result without 'content' field", tool_name)
        return ToolResult.text(
            f"Tool '{tool_name}' returned invalid response: missing 'content' field.\n\n{_MCP_SHAPE_HINT}",
            is_error=True,
        )

    if isinstance(content, (str, bytes, Mapping)) or not isinstance(content, Sequence):
        LOGGER.error("Tool '%s' returned non-list content: %r", tool_name, content)
        return ToolResult.text(
            f"Tool '{tool_name}' returned invalid response: 'content' must be an array, "
            f"got {type(content).__name__}.\n\n{_MCP_SHAPE_HINT}",
            is_error=True,
        )

    if not content:
        LOGGER.warning("Tool '%s' returned empty content list", tool_name)
        requested = json.dumps(dict(arguments or {}), indent=2, ensure_ascii=False, default=str)
        return ToolResult.text(
            f"Tool '{tool_name}' returned no data. This could mean:\n"
            "- No data available for the requested parameters\n"
            "- The MCP server found nothing to return\n"
            "- There may be an issue with the tool implementation\n\n"
            f"Requested: {requested}",
            is_error=False,
        )

    items: list[ContentItem] = []
    for entry in content:
        item = _coerce_item(entry)
        if item is None:
            LOGGER.warning("Skipping invalid content item from '%s': %r", tool_name, entry)
            continue
        items.append(item)

    if not items:
        error = MalformedToolResult(
            message=(
                f"Tool '{tool_name}' returned invalid content items. "
                "Each item must have a 'type' field and appropriate data."
            ),
            tool_name=tool_name,
        )
        LOGGER.error("%s", error.message)
        return ToolResult.text(error.message, is_error=True)

    return ToolResult(content=tuple(items), is_error=is_error)


def _log_orphan_failure(task: asyncio.Task[Any], tool_name: str) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOGGER.debug("Timed-out tool %s later failed: %s", tool_name, exc)


# -----------------------------------------------------------------------------
# Tool Execution
# -----------------------------------------------------------------------------


async def execute_tool(
    call: ToolCallRequest,
    known_tools: Sequence[ToolDescriptor],
    caller: ToolCaller,
    *,
    timeout_seconds: float | None = DEFAULT_TOOL_TIMEOUT,
) -> ToolResult:
    """Execute one tool call and return its normalized result.

    Invalid arguments come back as an error-flagged text result so the model
    can correct itself. The timeout only abandons the wait: the provider call
    keeps running and its outcome is discarded.

    Args:
        call: The tool call requested by the model.
        known_tools: Descriptors available for this run.
        caller: Routes the call to the owning provider.
        timeout_seconds: Upper bound for the provider call; ``None`` or ``0``
            disables it.

    Raises:
        UnknownTool: If ``call.name`` is not among ``known_tools``.
        ToolExecutionTimeout: If the provider does not answer in time.
        ToolProviderError: If the provider raises.
    """
    descriptor = resolve_tool(call.name, known_tools)

    try:
        arguments = parse_tool_arguments(call.arguments, tool_name=call.name)
    except InvalidArguments as exc:
        LOGGER.warning("Failed to parse arguments for tool %s: %s", call.name, exc)
        return ToolResult.text(exc.message, is_error=True)

    LOGGER.debug("Dispatching %s to provider %s", call.name, descriptor.provider_id)
    task = asyncio.ensure_future(caller.call_tool(descriptor.provider_id, call.name, arguments))
    try:
        if timeout_seconds:
            raw = await asyncio.wait_for(asyncio.shield(task), timeout=timeout_seconds)
        else:
            raw = await asyncio.shield(task)
    except asyncio.TimeoutError as exc:
        if task.done():
            # The provider raised TimeoutError itself.
            raise ToolProviderError(
                message=str(exc) or type(exc).__name__,
                tool_name=call.name,
                provider_id=descriptor.provider_id,
            ) from exc
        task.add_done_callback(lambda t: _log_orphan_failure(t, call.name))
        raise ToolExecutionTimeout.after(call.name, float(timeout_seconds or 0)) from exc
    except asyncio.CancelledError:
        # The caller went away; let the provider call finish on its own.
        task.add_done_callback(lambda t: _log_orphan_failure(t, call.name))
        raise
    except ToolError:
        raise
    except Exception as exc:
        raise ToolProviderError(
            message=str(exc) or type(exc).__name__,
            tool_name=call.name,
            provider_id=descriptor.provider_id,
        ) from exc

    return normalize_tool_result(raw, tool_name=call.name, arguments=arguments)


async def execute_tool_call(
    call: ToolCallRequest,
    known_tools: Sequence[ToolDescriptor],
    caller: ToolCaller,
    *,
    timeout_seconds: float | None = DEFAULT_TOOL_TIMEOUT,
) -> ToolExecutionResult:
    """Execute a tool call, turning tool-level failures into a result.

    Returns:
        The execution result (success or error).
    """
    start_time = time.perf_counter()
    try:
        result = await execute_tool(call, known_tools, caller, timeout_seconds=timeout_seconds)
    except ToolError as exc:
        duration_ms = (time.perf_counter() - start_time) * 1000
        LOGGER.warning("Tool %s failed: %s", call.name, exc)
        return ToolExecutionResult.from_error(call, exc, duration_ms=duration_ms)

    duration_ms = (time.perf_counter() - start_time) * 1000
    return ToolExecutionResult.from_success(call, result, duration_ms=duration_ms)
