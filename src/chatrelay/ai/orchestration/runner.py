"""Chat orchestrator: drives the tool-execution loop.

This module wires the pipeline stages (execute model → execute tools → detect
charts) into a loop that repeats until the model gives a final answer or the
iteration cap is hit, emitting a uniform event stream to the caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence

from ..charts.detector import ChartDetector
from .errors import IterationCapExceeded
from .event_log import ChatEventLogger, EventLogRun
from .events import (
    ChartDataEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    OrchestrationEvent,
    ToolExecutionResultEvent,
    ToolExecutionStartEvent,
)
from .pipeline.execute import ModelClient, execute_model
from .pipeline.tools import DEFAULT_TOOL_TIMEOUT, ToolCaller, ToolExecutionResult, execute_tool_call
from .types import (
    AccumulatedTurn,
    ChartDescriptor,
    ContentFragment,
    ConversationMessage,
    ToolCallRequest,
    ToolDescriptor,
)

__all__ = [
    "ChatOrchestrator",
    "OrchestratorConfig",
    "LoopState",
    "HistoryEntry",
    "create_orchestrator",
]

LOGGER = logging.getLogger(__name__)

HistoryEntry = ConversationMessage | Mapping[str, Any]


# -----------------------------------------------------------------------------
# Loop State
# -----------------------------------------------------------------------------


class LoopState(str, enum.Enum):
    """States of the orchestration loop."""

    REQUESTING = "requesting"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    EXECUTING_TOOLS = "executing_tools"
    FINAL = "final"
    DONE = "done"
    FAILED = "failed"


# -----------------------------------------------------------------------------
# Orchestrator Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class OrchestratorConfig:
    """Configuration for the chat orchestrator.

    Attributes:
        max_iterations: Maximum model turns per run.
        tool_timeout: Timeout for a single tool execution in seconds.
        parallel_tools: Run the tool calls of one turn concurrently.
        system_prompt: Prepended when the history has no system message.
        log_pipeline_stages: Whether to log each loop stage at DEBUG.
    """

    max_iterations: int = 10
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT
    parallel_tools: bool = False
    system_prompt: str | None = None
    log_pipeline_stages: bool = True

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.tool_timeout < 0:
            raise ValueError("tool_timeout must not be negative")

    def with_updates(self, **kwargs: Any) -> OrchestratorConfig:
        """Return a new OrchestratorConfig with updated values."""
        return replace(self, **kwargs)


# -----------------------------------------------------------------------------
# Chat Orchestrator
# -----------------------------------------------------------------------------


class ChatOrchestrator:
    """Runs the tool-execution loop for one conversation at a time.

    Each call to :meth:`run` keeps its own history, iteration count and
    state, so concurrent runs on one instance do not interfere. The
    ``state``, ``iterations`` and ``history`` properties reflect whichever
    run last advanced.

    Example:
        >>> orchestrator = ChatOrchestrator(client=ai_client, tool_caller=registry)
        >>> async for event in orchestrator.run(history, await registry.refresh()):
        ...     print(event.to_dict())
    """

    def __init__(
        self,
        client: ModelClient,
        tool_caller: ToolCaller,
        *,
        config: OrchestratorConfig | None = None,
        chart_detector: ChartDetector | None = None,
        event_logger: ChatEventLogger | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client: Model client streaming chat turns.
            tool_caller: Routes tool calls to providers.
            config: Optional loop configuration.
            chart_detector: Optional detector; a default one is created.
            event_logger: Optional JSONL event logger for debugging.
        """
        self._client = client
        self._tool_caller = tool_caller
        self._config = config or OrchestratorConfig()
        self._chart_detector = chart_detector or ChartDetector()
        self._event_logger = event_logger
        self._state = LoopState.DONE
        self._history: list[ConversationMessage] = []
        self._iterations = 0

    @property
    def client(self) -> ModelClient:
        """The model client."""
        return self._client

    @property
    def tool_caller(self) -> ToolCaller:
        """The tool caller."""
        return self._tool_caller

    @property
    def config(self) -> OrchestratorConfig:
        """The loop configuration."""
        return self._config

    @property
    def chart_detector(self) -> ChartDetector:
        return self._chart_detector

    @property
    def state(self) -> LoopState:
        """State of the most recent run."""
        return self._state

    @property
    def iterations(self) -> int:
        """Model turns taken by the most recent run."""
        return self._iterations

    @property
    def history(self) -> tuple[ConversationMessage, ...]:
        """Working history of the most recent run, including appended turns."""
        return tuple(self._history)

    def with_config(self, config: OrchestratorConfig) -> ChatOrchestrator:
        """Return a new orchestrator with the specified config."""
        return ChatOrchestrator(
            client=self._client,
            tool_caller=self._tool_caller,
            config=config,
            chart_detector=self._chart_detector,
            event_logger=self._event_logger,
        )

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    async def run(
        self,
        history: Sequence[HistoryEntry],
        tools: Sequence[ToolDescriptor],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[OrchestrationEvent]:
        """Run the loop and yield events in order.

        The stream always ends with a ``DoneEvent``. Closing the generator
        early closes the upstream model stream; setting ``cancel_event``
        stops the loop at the next fragment or before the next tool.

        Args:
            history: Conversation so far, oldest first.
            tools: Tool descriptors available for this run.
            cancel_event: Optional cancellation signal.
        """
        run_id = uuid.uuid4().hex
        config = self._config
        known_tools = tuple(tools)
        working = self._prepare_history(history)
        iteration = 0
        state = LoopState.REQUESTING
        self._publish(working, iteration, state)

        log_run = self._start_event_log(run_id, working, known_tools)
        tool_call_count = 0
        final_text = ""
        capped = False
        cancelled = False

        if config.log_pipeline_stages:
            LOGGER.debug(
                "Starting run %s with %d tools, max_iterations=%d",
                run_id,
                len(known_tools),
                config.max_iterations,
            )

        with log_run:
            while iteration < config.max_iterations:
                if _is_set(cancel_event):
                    cancelled = True
                    break
                iteration += 1
                state = LoopState.REQUESTING
                self._publish(working, iteration, state)
                if config.log_pipeline_stages:
                    LOGGER.debug("Run %s iteration %d/%d", run_id, iteration, config.max_iterations)

                # Stage: Execute model
                turn: AccumulatedTurn | None = None
                try:
                    async with contextlib.aclosing(
                        execute_model(working, self._client, tools=known_tools, cancel_event=cancel_event)
                    ) as stream:
                        async for item in stream:
                            if isinstance(item, ContentFragment):
                                yield ContentEvent(item.text)
                            else:
                                turn = item
                    if turn is None:
                        raise RuntimeError("Model stream ended without a completed turn")
                except Exception as exc:
                    state = LoopState.FAILED
                    self._publish(working, iteration, state)
                    message = str(exc) or type(exc).__name__
                    LOGGER.exception("Run %s failed in iteration %d", run_id, iteration)
                    log_run.failed(message, details={"iteration": iteration})
                    yield ErrorEvent(error=message, code=getattr(exc, "error_code", None))
                    break

                log_run.model_turn(iteration, turn)
                if config.log_pipeline_stages:
                    LOGGER.debug(
                        "Run %s finish reason: %s, tool calls: %d",
                        run_id,
                        turn.finish_reason,
                        len(turn.tool_calls),
                    )

                if _is_set(cancel_event):
                    cancelled = True
                    if turn.message.content:
                        working.append(ConversationMessage.assistant(turn.message.content))
                    break

                if not turn.requests_tools:
                    state = LoopState.FINAL
                    self._publish(working, iteration, state)
                    working.append(turn.message)
                    final_text = turn.message.content
                    break

                # Stage: Execute tools
                state = LoopState.TOOL_CALLS_PENDING
                working.append(turn.message)
                state = LoopState.EXECUTING_TOOLS
                self._publish(working, iteration, state)
                async for event in self._stage_tools(
                    turn.tool_calls,
                    known_tools,
                    working,
                    log_run,
                    iteration=iteration,
                    cancel_event=cancel_event,
                ):
                    if isinstance(event, ToolExecutionResultEvent):
                        tool_call_count += 1
                    yield event

                if _is_set(cancel_event):
                    cancelled = True
                    break
            else:
                capped = True

            if capped:
                state = LoopState.FAILED
                error = IterationCapExceeded(max_iterations=config.max_iterations)
                LOGGER.warning("Run %s reached max iterations (%d)", run_id, config.max_iterations)
                log_run.failed(
                    error.message,
                    details={"max_iterations": config.max_iterations, "tool_call_count": tool_call_count},
                )
                yield ErrorEvent(error=error.message, code=error.error_code)
            elif state is not LoopState.FAILED:
                if cancelled:
                    LOGGER.debug("Run %s cancelled after %d iteration(s)", run_id, iteration)
                state = LoopState.DONE
                log_run.completed(
                    iterations=iteration,
                    tool_calls=tool_call_count,
                    response_text=final_text,
                    cancelled=cancelled,
                )
            self._publish(working, iteration, state)

        yield DoneEvent()

    def _publish(self, working: list[ConversationMessage], iteration: int, state: LoopState) -> None:
        # Snapshot for the inspection properties; the loop never reads these back.
        self._history = working
        self._iterations = iteration
        self._state = state

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    async def _stage_tools(
        self,
        calls: Sequence[ToolCallRequest],
        known_tools: Sequence[ToolDescriptor],
        working: list[ConversationMessage],
        log_run: EventLogRun,
        *,
        iteration: int,
        cancel_event: asyncio.Event | None,
    ) -> AsyncIterator[OrchestrationEvent]:
        """Execute the turn's tool calls in model order and record results."""
        if self._config.log_pipeline_stages:
            LOGGER.debug("Stage: Tools (%d calls, parallel=%s)", len(calls), self._config.parallel_tools)

        user_query = _last_user_query(working)
        timeout = self._config.tool_timeout

        if self._config.parallel_tools:
            if _is_set(cancel_event):
                return
            for call in calls:
                yield ToolExecutionStartEvent(tool_name=call.name, tool_call_id=call.id)
            outcomes = await asyncio.gather(
                *(
                    execute_tool_call(call, known_tools, self._tool_caller, timeout_seconds=timeout)
                    for call in calls
                )
            )
            if _is_set(cancel_event):
                return
            for outcome in outcomes:
                for event in self._record_outcome(outcome, user_query, working, log_run, iteration):
                    yield event
            return

        for call in calls:
            if _is_set(cancel_event):
                LOGGER.debug("Skipping tool %s after cancellation", call.name)
                return
            LOGGER.debug("Executing tool: %s", call.name)
            yield ToolExecutionStartEvent(tool_name=call.name, tool_call_id=call.id)
            outcome = await execute_tool_call(call, known_tools, self._tool_caller, timeout_seconds=timeout)
            if _is_set(cancel_event):
                LOGGER.debug("Discarding result of %s after cancellation", call.name)
                return
            for event in self._record_outcome(outcome, user_query, working, log_run, iteration):
                yield event

    def _record_outcome(
        self,
        outcome: ToolExecutionResult,
        user_query: str,
        working: list[ConversationMessage],
        log_run: EventLogRun,
        iteration: int,
    ) -> list[OrchestrationEvent]:
        """Detect charts, append the tool message and build the result events."""
        call = outcome.call
        charts = self._detect_charts(outcome, user_query)
        events: list[OrchestrationEvent] = [ChartDataEvent(chart) for chart in charts]

        content = outcome.content
        working.append(ConversationMessage.tool(content, call.id, charts))
        log_run.tool_outcome(iteration, outcome, charts)
        if outcome.success:
            LOGGER.debug("Tool %s succeeded in %.1fms", call.name, outcome.duration_ms)

        events.append(
            ToolExecutionResultEvent(
                tool_name=call.name,
                tool_call_id=call.id,
                is_error=outcome.is_error,
            )
        )
        return events

    def _detect_charts(self, outcome: ToolExecutionResult, user_query: str) -> list[ChartDescriptor]:
        if outcome.result is None or outcome.result.is_error:
            return []
        try:
            return self._chart_detector.detect(outcome.result, outcome.call.name, user_query)
        except Exception:
            LOGGER.warning("Chart detection failed for %s", outcome.call.name, exc_info=True)
            return []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _prepare_history(self, history: Sequence[HistoryEntry]) -> list[ConversationMessage]:
        messages = [
            entry if isinstance(entry, ConversationMessage) else ConversationMessage.from_chat_param(entry)
            for entry in history
        ]
        system_prompt = self._config.system_prompt
        if system_prompt and not any(message.role == "system" for message in messages):
            messages.insert(0, ConversationMessage.system(system_prompt))
        return messages

    def _start_event_log(
        self,
        run_id: str,
        working: Sequence[ConversationMessage],
        tools: Sequence[ToolDescriptor],
    ) -> EventLogRun:
        if self._event_logger is None:
            return EventLogRun(run_id)
        log_run = self._event_logger.open_run(run_id)
        log_run.started(
            history=working,
            tools=tools,
            config={
                "max_iterations": self._config.max_iterations,
                "tool_timeout": self._config.tool_timeout,
                "parallel_tools": self._config.parallel_tools,
            },
        )
        return log_run


def _is_set(event: asyncio.Event | None) -> bool:
    return event is not None and event.is_set()


def _last_user_query(history: Sequence[ConversationMessage]) -> str:
    for message in reversed(history):
        if message.role == "user":
            return message.content
    return ""


# -----------------------------------------------------------------------------
# Factory Functions
# -----------------------------------------------------------------------------


def create_orchestrator(
    client: ModelClient,
    tool_caller: ToolCaller,
    *,
    max_iterations: int | None = None,
    tool_timeout: float | None = None,
    parallel_tools: bool | None = None,
    system_prompt: str | None = None,
    chart_detector: ChartDetector | None = None,
    event_logger: ChatEventLogger | None = None,
) -> ChatOrchestrator:
    """Create a ChatOrchestrator, overriding only the options given.

    Example:
        >>> orchestrator = create_orchestrator(
        ...     client=ai_client,
        ...     tool_caller=registry,
        ...     max_iterations=5,
        ... )
    """
    updates: dict[str, Any] = {}
    if max_iterations is not None:
        updates["max_iterations"] = max_iterations
    if tool_timeout is not None:
        updates["tool_timeout"] = tool_timeout
    if parallel_tools is not None:
        updates["parallel_tools"] = parallel_tools
    if system_prompt:
        updates["system_prompt"] = system_prompt

    return ChatOrchestrator(
        client=client,
        tool_caller=tool_caller,
        config=OrchestratorConfig(**updates),
        chart_detector=chart_detector,
        event_logger=event_logger,
    )
