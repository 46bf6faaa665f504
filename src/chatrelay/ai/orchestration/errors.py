"""Error taxonomy for the orchestration loop.

Errors fall in two families. Stream-level errors (``UpstreamUnavailable``)
are fatal to the current orchestration call and surface as a single ``error``
event. Tool-level errors (``UnknownTool``, ``InvalidArguments``,
``ToolExecutionTimeout``, ``MalformedToolResult``, ``ToolProviderError``) are
caught at the tool-execution boundary and become conversation content the
model can react to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ErrorCode",
    "OrchestrationError",
    "UpstreamUnavailable",
    "ToolError",
    "UnknownTool",
    "InvalidArguments",
    "ToolExecutionTimeout",
    "MalformedToolResult",
    "ToolProviderError",
    "IterationCapExceeded",
]


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------


class ErrorCode:
    """Machine-readable error identifiers."""

    # Model stream
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"

    # Tool execution
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    TIMEOUT = "timeout"
    MALFORMED_RESULT = "malformed_result"
    PROVIDER_ERROR = "provider_error"

    # Loop safety
    ITERATION_CAP = "iteration_cap_exceeded"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------


@dataclass
class OrchestrationError(Exception):
    """Base exception for everything raised by the orchestration layer.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    # Tool-level errors are recovered inside the loop; the rest are fatal.
    recoverable: ClassVar[bool] = False

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for logs and error events."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return self.message


# -----------------------------------------------------------------------------
# Stream-level Errors
# -----------------------------------------------------------------------------


@dataclass
class UpstreamUnavailable(OrchestrationError):
    """Raised when the model endpoint cannot be reached."""

    error_code: str = field(default=ErrorCode.UPSTREAM_UNAVAILABLE)
    message: str = field(default="The model endpoint is unavailable")
    details: dict[str, Any] = field(default_factory=dict)

    base_url: str | None = field(default=None)

    @classmethod
    def for_endpoint(cls, base_url: str | None) -> "UpstreamUnavailable":
        """Build the error with the standard connection-refused wording."""
        target = base_url or "the configured endpoint"
        return cls(
            message=f"Cannot reach LLM endpoint at {target}. Is the server running?",
            base_url=base_url,
        )


@dataclass
class IterationCapExceeded(OrchestrationError):
    """Raised when the tool loop exhausts its iteration budget."""

    DEFAULT_MESSAGE: ClassVar[str] = (
        "Maximum tool execution iterations reached. Stopping for safety."
    )

    error_code: str = field(default=ErrorCode.ITERATION_CAP)
    message: str = field(default=DEFAULT_MESSAGE)
    details: dict[str, Any] = field(default_factory=dict)

    max_iterations: int = field(default=0)


# -----------------------------------------------------------------------------
# Tool-level Errors
# -----------------------------------------------------------------------------


@dataclass
class ToolError(OrchestrationError):
    """Base class for failures scoped to a single tool execution."""

    recoverable: ClassVar[bool] = True

    tool_name: str = field(default="")


@dataclass
class UnknownTool(ToolError):
    """Raised when the model requests a tool that no provider offers."""

    error_code: str = field(default=ErrorCode.UNKNOWN_TOOL)
    message: str = field(default="Tool not found")
    details: dict[str, Any] = field(default_factory=dict)
    tool_name: str = field(default="")

    @classmethod
    def named(cls, tool_name: str) -> "UnknownTool":
        return cls(message=f"Tool '{tool_name}' not found", tool_name=tool_name)


@dataclass
class InvalidArguments(ToolError):
    """Raised when model-generated arguments are not a JSON object."""

    error_code: str = field(default=ErrorCode.INVALID_ARGUMENTS)
    message: str = field(default="Invalid tool arguments")
    details: dict[str, Any] = field(default_factory=dict)
    tool_name: str = field(default="")

    raw_arguments: str = field(default="")


@dataclass
class ToolExecutionTimeout(ToolError):
    """Raised when a tool does not answer within the allotted time."""

    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="Tool execution timed out")
    details: dict[str, Any] = field(default_factory=dict)
    tool_name: str = field(default="")

    timeout_seconds: float = field(default=0.0)

    @classmethod
    def after(cls, tool_name: str, timeout_seconds: float) -> "ToolExecutionTimeout":
        return cls(
            message=f"Tool execution timed out after {timeout_seconds:g}s",
            tool_name=tool_name,
            timeout_seconds=timeout_seconds,
        )


@dataclass
class MalformedToolResult(ToolError):
    """Describes a provider result that does not match the expected shape."""

    error_code: str = field(default=ErrorCode.MALFORMED_RESULT)
    message: str = field(default="Tool returned a malformed result")
    details: dict[str, Any] = field(default_factory=dict)
    tool_name: str = field(default="")


@dataclass
class ToolProviderError(ToolError):
    """Wraps an exception raised by a tool provider's call-tool operation."""

    error_code: str = field(default=ErrorCode.PROVIDER_ERROR)
    message: str = field(default="Tool provider failed")
    details: dict[str, Any] = field(default_factory=dict)
    tool_name: str = field(default="")

    provider_id: str = field(default="")
