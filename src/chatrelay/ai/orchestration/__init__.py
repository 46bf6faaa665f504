"""Tool-execution orchestration between a streaming model and tool providers."""

# Core types
from .types import (
    AccumulatedTurn,
    ChartDescriptor,
    ContentFragment,
    ContentItem,
    ConversationMessage,
    FinishSignal,
    StreamEvent,
    ToolCallFragment,
    ToolCallRequest,
    ToolDescriptor,
    ToolResult,
)

# Events
from .events import (
    SSE_DONE_FRAME,
    ChartDataEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    OrchestrationEvent,
    ToolExecutionResultEvent,
    ToolExecutionStartEvent,
    format_sse,
)

# Errors
from .errors import (
    ErrorCode,
    InvalidArguments,
    IterationCapExceeded,
    MalformedToolResult,
    OrchestrationError,
    ToolError,
    ToolExecutionTimeout,
    ToolProviderError,
    UnknownTool,
    UpstreamUnavailable,
)

# Orchestrator
from .runner import (
    ChatOrchestrator,
    LoopState,
    OrchestratorConfig,
    create_orchestrator,
)

# Tool providers
from .tools import (
    LocalToolProvider,
    ProviderStatus,
    ToolProvider,
    ToolProviderRegistry,
    ToolSpec,
)

from .event_log import ChatEventLogger, EventLogRun

__all__ = [
    # Core types
    "AccumulatedTurn",
    "ChartDescriptor",
    "ContentFragment",
    "ContentItem",
    "ConversationMessage",
    "FinishSignal",
    "StreamEvent",
    "ToolCallFragment",
    "ToolCallRequest",
    "ToolDescriptor",
    "ToolResult",
    # Events
    "SSE_DONE_FRAME",
    "ChartDataEvent",
    "ContentEvent",
    "DoneEvent",
    "ErrorEvent",
    "OrchestrationEvent",
    "ToolExecutionResultEvent",
    "ToolExecutionStartEvent",
    "format_sse",
    # Errors
    "ErrorCode",
    "InvalidArguments",
    "IterationCapExceeded",
    "MalformedToolResult",
    "OrchestrationError",
    "ToolError",
    "ToolExecutionTimeout",
    "ToolProviderError",
    "UnknownTool",
    "UpstreamUnavailable",
    # Orchestrator
    "ChatOrchestrator",
    "LoopState",
    "OrchestratorConfig",
    "create_orchestrator",
    # Tool providers
    "LocalToolProvider",
    "ProviderStatus",
    "ToolProvider",
    "ToolProviderRegistry",
    "ToolSpec",
    # Event log
    "ChatEventLogger",
    "EventLogRun",
]
