"""Tests for the per-run JSONL event log."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from chatrelay.ai.orchestration import ChatOrchestrator
from chatrelay.ai.orchestration.errors import ToolExecutionTimeout
from chatrelay.ai.orchestration.event_log import ChatEventLogger, EventLogRun
from chatrelay.ai.orchestration.pipeline.tools import ToolExecutionResult
from chatrelay.ai.orchestration.types import (
    AccumulatedTurn,
    ConversationMessage,
    ToolCallRequest,
    ToolResult,
)
from chatrelay.utils import logging as logging_utils

from helpers import RecordingToolCaller, ScriptedModelClient, descriptor, text_turn, tool_turn


def _read_records(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def _single_log(directory: Path) -> Path:
    log_files = list(directory.glob("*.jsonl"))
    assert len(log_files) == 1
    return log_files[0]


def test_run_records_each_stage(tmp_path: Path) -> None:
    call = ToolCallRequest(id="call-1", name="get_steps")
    turn = AccumulatedTurn(
        message=ConversationMessage.assistant("", [call]),
        tool_calls=(call,),
        finish_reason="tool_calls",
    )
    outcome = ToolExecutionResult.from_success(call, ToolResult.text("[]"), duration_ms=1.23456)

    with ChatEventLogger(enabled=True, base_dir=tmp_path).open_run("0123456789abcdef") as run:
        run.started(history=[ConversationMessage.user("Hi")], tools=[descriptor("get_steps")], config={"max_iterations": 10})
        run.model_turn(1, turn)
        run.tool_outcome(1, outcome)
        run.completed(iterations=2, tool_calls=1, response_text="Done")

    path = _single_log(tmp_path)
    assert path.name.startswith("run-") and path.name.endswith("-0123456789ab.jsonl")
    records = _read_records(path)
    assert [record["kind"] for record in records] == ["run_started", "model_turn", "tool_outcome", "run_completed"]
    assert all(record["run_id"] == "0123456789abcdef" for record in records)
    assert records[0]["tools"] == ["get_steps"]
    assert records[0]["history"][0]["content"] == "Hi"
    assert records[1]["tool_calls"][0]["function"]["name"] == "get_steps"
    assert records[2]["duration_ms"] == 1.235
    assert records[2]["error_code"] is None
    assert records[-1]["tool_calls"] == 1
    assert run.active is False


def test_tool_failure_carries_error_code(tmp_path: Path) -> None:
    call = ToolCallRequest(id="c", name="slow")
    outcome = ToolExecutionResult.from_error(call, ToolExecutionTimeout.after("slow", 0.5))

    with ChatEventLogger(enabled=True, base_dir=tmp_path).open_run("run") as run:
        run.tool_outcome(3, outcome)

    records = _read_records(_single_log(tmp_path))
    assert records[0]["is_error"] is True
    assert records[0]["error_code"] == "timeout"
    assert records[-1]["kind"] == "run_failed"


def test_disabled_logger_writes_nothing(tmp_path: Path) -> None:
    run = ChatEventLogger(enabled=False, base_dir=tmp_path).open_run("no-log")
    with run:
        run.completed(iterations=0, tool_calls=0, response_text="")

    assert run.active is False
    assert list(tmp_path.glob("*.jsonl")) == []


def test_exception_records_failure(tmp_path: Path) -> None:
    logger = ChatEventLogger(enabled=True, base_dir=tmp_path)

    with pytest.raises(RuntimeError):
        with logger.open_run("boom"):
            raise RuntimeError("stream broke")

    records = _read_records(_single_log(tmp_path))
    assert records[-1]["kind"] == "run_failed"
    assert records[-1]["message"] == "stream broke"


def test_nothing_is_written_after_the_run_closes(tmp_path: Path) -> None:
    with ChatEventLogger(enabled=True, base_dir=tmp_path).open_run("twice") as run:
        run.failed("first", details={"iteration": 1})
        run.completed(iterations=1, tool_calls=0, response_text="late")

    records = _read_records(_single_log(tmp_path))
    assert [record["kind"] for record in records] == ["run_failed"]
    assert records[0]["details"] == {"iteration": 1}


def test_long_content_is_truncated(tmp_path: Path) -> None:
    with ChatEventLogger(enabled=True, base_dir=tmp_path).open_run("long") as run:
        run.completed(iterations=1, tool_calls=0, response_text="x" * 2_500)

    record = _read_records(_single_log(tmp_path))[0]
    assert record["response_text"].endswith("... [500 more chars]")


def test_inert_run_without_path() -> None:
    run = EventLogRun("inert")
    run.failed("ignored")
    assert run.path is None
    assert run.active is False


def test_default_directory_follows_log_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logging_utils, "_LOG_PATH", None)
    logger = ChatEventLogger(enabled=True)
    assert logger.base_dir == tmp_path / "logs" / "events"


@pytest.mark.asyncio
async def test_orchestrator_records_run(tmp_path: Path) -> None:
    client = ScriptedModelClient([tool_turn("get_steps"), text_turn("All done")])
    orchestrator = ChatOrchestrator(
        client=client,
        tool_caller=RecordingToolCaller(),
        event_logger=ChatEventLogger(enabled=True, base_dir=tmp_path),
    )

    events = [
        event
        async for event in orchestrator.run([{"role": "user", "content": "steps?"}], [descriptor("get_steps")])
    ]

    assert events[-1].type == "done"
    records = _read_records(_single_log(tmp_path))
    assert [record["kind"] for record in records] == [
        "run_started",
        "model_turn",
        "tool_outcome",
        "model_turn",
        "run_completed",
    ]
    assert records[0]["config"]["max_iterations"] == 10
    assert records[2]["tool_name"] == "get_steps"
    assert records[-1]["tool_calls"] == 1
    assert records[-1]["response_text"] == "All done"


class _FullDisk(io.StringIO):
    def write(self, text: str) -> int:
        raise OSError(28, "No space left on device")


def test_write_failure_disables_the_run(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    run = ChatEventLogger(enabled=True, base_dir=tmp_path).open_run("disk-full")
    run._close()
    run._stream = _FullDisk()

    run.started(history=[], tools=[], config={})

    assert run.active is False
    assert "Event log disabled for run disk-full" in caplog.text
    run.completed(iterations=1, tool_calls=0, response_text="ignored")


@pytest.mark.asyncio
async def test_orchestrator_finishes_when_event_log_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    logger = ChatEventLogger(enabled=True, base_dir=tmp_path)
    open_run = logger.open_run

    def failing_run(run_id: str) -> EventLogRun:
        run = open_run(run_id)
        run._close()
        run._stream = _FullDisk()
        return run

    monkeypatch.setattr(logger, "open_run", failing_run)
    orchestrator = ChatOrchestrator(
        ScriptedModelClient([tool_turn("get_steps"), text_turn("done")]),
        RecordingToolCaller(),
        event_logger=logger,
    )

    events = [event async for event in orchestrator.run([ConversationMessage.user("Hi")], [descriptor("get_steps")])]

    assert [event.type for event in events] == [
        "tool_execution_start",
        "tool_execution_result",
        "content",
        "done",
    ]
