"""Shared test helpers and stub classes.

This module contains reusable fakes used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Mapping, Sequence

from chatrelay.ai.orchestration.types import (
    ContentFragment,
    FinishSignal,
    StreamEvent,
    ToolCallFragment,
    ToolDescriptor,
)


def text_turn(*chunks: str, finish_reason: str = "stop") -> list[StreamEvent]:
    """Events for a plain content answer."""
    events: list[StreamEvent] = [ContentFragment(chunk) for chunk in chunks]
    events.append(FinishSignal(finish_reason))
    return events


def tool_turn(
    name: str,
    arguments: str = "{}",
    *,
    call_id: str = "call_1",
    index: int = 0,
    text: str = "",
) -> list[StreamEvent]:
    """Events for a turn requesting a single tool, with split arguments."""
    events: list[StreamEvent] = []
    if text:
        events.append(ContentFragment(text))
    middle = len(arguments) // 2
    events.append(ToolCallFragment(index=index, id=call_id, type="function", name=name, arguments=arguments[:middle]))
    events.append(ToolCallFragment(index=index, arguments=arguments[middle:]))
    events.append(FinishSignal("tool_calls"))
    return events


def descriptor(name: str, provider_id: str = "test") -> ToolDescriptor:
    return ToolDescriptor(name=name, description=f"{name} tool", provider_id=provider_id)


class ScriptedModelClient:
    """Model client replaying one scripted event list per turn.

    Once the script runs out the last turn is repeated. An exception placed in
    a turn's event list is raised at that point of the stream.
    """

    def __init__(self, turns: Iterable[Sequence[StreamEvent | BaseException]]) -> None:
        self._turns = [list(turn) for turn in turns]
        self.calls: list[tuple[list[dict[str, Any]], list[ToolDescriptor]]] = []
        self.closed_streams = 0

    async def stream_turn(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[ToolDescriptor] | None = None,
    ):
        self.calls.append(([dict(message) for message in messages], list(tools or [])))
        turn = self._turns[min(len(self.calls), len(self._turns)) - 1]
        try:
            for event in turn:
                if isinstance(event, BaseException):
                    raise event
                yield event
        finally:
            self.closed_streams += 1


class RecordingToolCaller:
    """Tool caller returning canned results and recording every call."""

    def __init__(
        self,
        results: Mapping[str, Any] | None = None,
        *,
        errors: Mapping[str, Exception] | None = None,
        delays: Mapping[str, float] | None = None,
    ) -> None:
        self.results = dict(results or {})
        self.errors = dict(errors or {})
        self.delays = dict(delays or {})
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.finished: list[str] = []

    async def call_tool(self, provider_id: str, name: str, arguments: Mapping[str, Any]) -> Any:
        self.calls.append((provider_id, name, dict(arguments)))
        delay = self.delays.get(name, 0.0)
        if delay:
            await asyncio.sleep(delay)
        self.finished.append(name)
        if name in self.errors:
            raise self.errors[name]
        return self.results.get(name, {"content": [{"type": "text", "text": f"Result for {name}"}]})
