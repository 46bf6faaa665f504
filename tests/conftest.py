"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture
def daily_steps() -> list[dict]:
    return [
        {"date": "2024-01-01", "steps": 100},
        {"date": "2024-01-02", "steps": 200},
    ]


@pytest.fixture(autouse=True)
def _isolate_chatrelay_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep developer CHATRELAY_* variables and log files out of tests."""
    for name in list(os.environ):
        if name.startswith("CHATRELAY_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CHATRELAY_LOG_DIR", str(tmp_path / "logs"))
