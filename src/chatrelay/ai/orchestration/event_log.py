"""JSONL trace of orchestration runs for debugging.

When enabled, every run gets its own file under ``<log dir>/events`` with one
JSON object per line: ``run_started``, one ``model_turn`` per iteration, one
``tool_outcome`` per executed call and a final ``run_completed`` or
``run_failed`` record.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Sequence, TextIO

from ...utils import logging as logging_utils
from .types import AccumulatedTurn, ChartDescriptor, ConversationMessage, ToolDescriptor

if TYPE_CHECKING:
    from .pipeline.tools import ToolExecutionResult

__all__ = ["ChatEventLogger", "EventLogRun"]

LOGGER = logging.getLogger(__name__)

_PREVIEW_LIMIT = 2_000


def _events_dir() -> Path:
    active = logging_utils.get_log_path()
    root = active.parent if active is not None else logging_utils.default_log_dir()
    return root / "events"


def _encode_fallback(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return repr(value)


def _preview(text: str) -> str:
    if len(text) <= _PREVIEW_LIMIT:
        return text
    return f"{text[:_PREVIEW_LIMIT]}... [{len(text) - _PREVIEW_LIMIT} more chars]"


class EventLogRun:
    """Trace writer for a single run.

    A run opened without a path is inert: every method returns immediately.
    Leaving the ``with`` block before :meth:`completed` or :meth:`failed` was
    called records a failure, so an abandoned stream still closes its trace.
    """

    def __init__(self, run_id: str, path: Path | None = None) -> None:
        self.run_id = run_id
        self.path = path
        self._stream: TextIO | None = path.open("w", encoding="utf-8") if path is not None else None

    @property
    def active(self) -> bool:
        return self._stream is not None

    def __enter__(self) -> EventLogRun:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.active:
            reason = (str(exc) or type(exc).__name__) if exc is not None else "run ended without completion"
            self.failed(reason)
        return False

    def started(
        self,
        *,
        history: Sequence[ConversationMessage],
        tools: Sequence[ToolDescriptor],
        config: Mapping[str, Any],
    ) -> None:
        self._emit(
            "run_started",
            history=[message.to_dict() for message in history],
            tools=[tool.name for tool in tools],
            config=dict(config),
        )

    def model_turn(self, iteration: int, turn: AccumulatedTurn) -> None:
        self._emit(
            "model_turn",
            iteration=iteration,
            finish_reason=turn.finish_reason,
            content=_preview(turn.message.content),
            tool_calls=[call.to_chat_param() for call in turn.tool_calls],
        )

    def tool_outcome(
        self,
        iteration: int,
        outcome: ToolExecutionResult,
        charts: Sequence[ChartDescriptor] = (),
    ) -> None:
        self._emit(
            "tool_outcome",
            iteration=iteration,
            tool_name=outcome.call.name,
            tool_call_id=outcome.call.id,
            is_error=outcome.is_error,
            error_code=outcome.error.error_code if outcome.error is not None else None,
            duration_ms=round(outcome.duration_ms, 3),
            content=_preview(outcome.content),
            chart_ids=[chart.id for chart in charts],
        )

    def completed(self, *, iterations: int, tool_calls: int, response_text: str, cancelled: bool = False) -> None:
        self._emit(
            "run_completed",
            iterations=iterations,
            tool_calls=tool_calls,
            cancelled=cancelled,
            response_text=_preview(response_text),
        )
        self._close()

    def failed(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        self._emit("run_failed", message=message, details=dict(details or {}))
        self._close()

    def _emit(self, kind: str, **fields: Any) -> None:
        if self._stream is None:
            return
        record = {"kind": kind, "run_id": self.run_id, "at": datetime.now(timezone.utc), **fields}
        line = json.dumps(record, ensure_ascii=False, default=_encode_fallback)
        try:
            self._stream.write(line + "\n")
            self._stream.flush()
        except OSError as exc:
            LOGGER.warning("Event log disabled for run %s after write failure: %s", self.run_id, exc)
            self._close()

    def _close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.close()
        except OSError as exc:
            LOGGER.warning("Could not close event log for run %s: %s", self.run_id, exc)


class ChatEventLogger:
    """Opens :class:`EventLogRun` traces when debug event logging is on."""

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self._base_dir = Path(base_dir) if base_dir else _events_dir()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def open_run(self, run_id: str) -> EventLogRun:
        """Return a trace for ``run_id``; inert when disabled or the file cannot be created."""
        if not self.enabled:
            return EventLogRun(run_id)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        path = self._base_dir / f"run-{stamp}-{run_id[:12]}.jsonl"
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            log_run = EventLogRun(run_id, path)
        except OSError as exc:
            LOGGER.warning("Event log disabled for run %s: %s", run_id, exc)
            return EventLogRun(run_id)
        LOGGER.debug("Writing event log for run %s to %s", run_id, path)
        return log_run
