"""Pipeline stage: Execute Model.

This module streams one model turn. Content fragments are forwarded to the
caller the moment they arrive; tool-call fragments are merged by positional
index and materialized once the stream ends.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..types import (
    AccumulatedTurn,
    ContentFragment,
    ConversationMessage,
    FinishSignal,
    StreamEvent,
    ToolCallFragment,
    ToolCallRequest,
    ToolDescriptor,
)

__all__ = [
    "ModelClient",
    "TurnAccumulator",
    "aggregate_stream_events",
    "execute_model",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ModelClient(Protocol):
    """Protocol for model clients that can stream one chat turn.

    The AIClient class conforms to this protocol.
    """

    def stream_turn(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[ToolDescriptor] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream typed events for a single model turn.

        Args:
            messages: The conversation messages in chat-completions format.
            tools: Tool descriptors offered to the model.

        Returns:
            An async iterator of ``ContentFragment``, ``ToolCallFragment`` and
            ``FinishSignal`` events.
        """
        ...


# -----------------------------------------------------------------------------
# Streaming Aggregation
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _PartialToolCall:
    index: int
    id: str = ""
    type: str = ""
    name: str = ""
    arguments_parts: list[str] = field(default_factory=list)


class TurnAccumulator:
    """Merges the events of one streamed turn.

    Feed every event in arrival order, then call :meth:`finish`. ``feed``
    returns the text to forward for content fragments and ``None`` otherwise.
    """

    def __init__(self) -> None:
        self._content_parts: list[str] = []
        self._tool_calls_by_index: dict[int, _PartialToolCall] = {}
        self._saw_tool_fragment = False
        self._stream_reason: str | None = None

    @property
    def content(self) -> str:
        return "".join(self._content_parts)

    def feed(self, event: StreamEvent) -> str | None:
        if isinstance(event, ContentFragment):
            if not event.text:
                return None
            self._content_parts.append(event.text)
            return event.text
        if isinstance(event, ToolCallFragment):
            self._merge(event)
            return None
        if isinstance(event, FinishSignal):
            if event.reason:
                self._stream_reason = event.reason
            return None
        raise TypeError(f"Unsupported stream event: {type(event).__name__}")

    def _merge(self, fragment: ToolCallFragment) -> None:
        self._saw_tool_fragment = True
        partial = self._tool_calls_by_index.get(fragment.index)
        if partial is None:
            partial = _PartialToolCall(index=fragment.index)
            self._tool_calls_by_index[fragment.index] = partial
        if fragment.id:
            partial.id = fragment.id
        if fragment.type:
            partial.type = fragment.type
        if fragment.name:
            partial.name = fragment.name
        if fragment.arguments:
            partial.arguments_parts.append(fragment.arguments)

    def finish(self) -> AccumulatedTurn:
        """Materialize the turn; partial calls missing an id or name are dropped."""
        tool_calls: list[ToolCallRequest] = []
        for index in sorted(self._tool_calls_by_index):
            partial = self._tool_calls_by_index[index]
            if not partial.id or not partial.name:
                LOGGER.debug(
                    "Dropping incomplete tool call at index %d (id=%r, name=%r)",
                    index,
                    partial.id,
                    partial.name,
                )
                continue
            tool_calls.append(
                ToolCallRequest(
                    id=partial.id,
                    name=partial.name,
                    arguments="".join(partial.arguments_parts) or "{}",
                    index=index,
                )
            )

        if self._saw_tool_fragment:
            finish_reason = "tool_calls"
        else:
            finish_reason = self._stream_reason or "stop"

        return AccumulatedTurn(
            message=ConversationMessage.assistant(self.content, tool_calls),
            tool_calls=tuple(tool_calls),
            finish_reason=finish_reason,
        )


def aggregate_stream_events(events: Sequence[StreamEvent]) -> AccumulatedTurn:
    """Aggregate a complete sequence of stream events into a turn."""
    accumulator = TurnAccumulator()
    for event in events:
        accumulator.feed(event)
    return accumulator.finish()


# -----------------------------------------------------------------------------
# Model Execution
# -----------------------------------------------------------------------------


async def execute_model(
    messages: Sequence[ConversationMessage],
    client: ModelClient,
    *,
    tools: Sequence[ToolDescriptor] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> AsyncIterator[ContentFragment | AccumulatedTurn]:
    """Stream one model turn.

    Yields each non-empty ``ContentFragment`` as it arrives, then the
    ``AccumulatedTurn`` as the final item. When ``cancel_event`` is set the
    upstream stream is abandoned and the turn is assembled from what arrived.
    Closing this generator closes the upstream stream.

    Args:
        messages: Conversation history to send.
        client: The model client to stream from.
        tools: Tool descriptors offered to the model.
        cancel_event: Optional event that stops consumption when set.
    """
    message_params = [message.to_chat_param() for message in messages]
    accumulator = TurnAccumulator()
    stream = client.stream_turn(message_params, tools=list(tools) if tools else None)
    try:
        async for event in stream:
            text = accumulator.feed(event)
            if text is not None:
                yield ContentFragment(text)
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.debug("Model stream abandoned after cancellation")
                break
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    yield accumulator.finish()
