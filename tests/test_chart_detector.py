"""Tests for the chart detector."""

from __future__ import annotations

import json
from datetime import date
from itertools import count

import pytest

from chatrelay.ai.charts.detector import ChartDetector, flatten_records, title_case
from chatrelay.ai.charts.patterns import DEFAULT_PALETTE
from chatrelay.ai.orchestration.types import ContentItem, ToolResult


def _sequential_ids():
    counter = count(1)
    return lambda: f"chart-{next(counter)}"


def text_result(payload, *, is_error: bool = False) -> ToolResult:
    return ToolResult.text(json.dumps(payload), is_error=is_error)


@pytest.fixture
def detector() -> ChartDetector:
    return ChartDetector(id_factory=_sequential_ids())


def test_daily_steps_become_area_chart(detector: ChartDetector, daily_steps: list[dict]) -> None:
    charts = detector.detect(text_result(daily_steps), "get_steps", "how many steps")

    assert len(charts) == 1
    chart = charts[0]
    assert chart.kind == "area"
    assert chart.x_key == "date"
    assert chart.y_keys == ("steps",)
    assert chart.colors == (DEFAULT_PALETTE[0],)
    assert chart.labels == {"steps": "Steps"}
    assert chart.title == "Steps - Get Steps"
    assert chart.id == "chart-1"
    assert chart.to_dict()["config"] == {
        "xKey": "date",
        "yKeys": ["steps"],
        "colors": [DEFAULT_PALETTE[0]],
        "labels": {"steps": "Steps"},
    }


def test_single_record_yields_nothing(detector: ChartDetector) -> None:
    assert detector.detect(text_result([{"date": "2024-01-01", "steps": 100}]), "get_steps") == []


def test_error_results_are_skipped(detector: ChartDetector, daily_steps: list[dict]) -> None:
    assert detector.detect(text_result(daily_steps, is_error=True), "get_steps", "steps") == []


def test_detect_is_idempotent(daily_steps: list[dict]) -> None:
    detector = ChartDetector()
    result = text_result(daily_steps)

    first = detector.detect(result, "get_steps", "steps")
    second = detector.detect(result, "get_steps", "steps")

    assert first == second
    assert first[0].id != second[0].id
    assert json.loads(result.content[0].text or "") == daily_steps


def test_plain_text_and_malformed_json_are_ignored(detector: ChartDetector) -> None:
    result = ToolResult(content=(ContentItem.of_text("It is sunny"), ContentItem.of_text("[{broken")))
    assert detector.detect(result, "weather") == []


def test_nested_stats_are_flattened(detector: ChartDetector) -> None:
    rows = [
        {"calendarDate": "2024-01-01", "stats": {"totalSteps": 5000, "restingHeartRate": 60, "zones": [1, 2]}},
        {"calendarDate": "2024-01-02", "stats": {"totalSteps": 7000, "restingHeartRate": 58, "zones": [3]}},
    ]
    charts = detector.detect(text_result(rows), "get_stats", "what was my resting heart rate")

    assert len(charts) == 1
    chart = charts[0]
    assert chart.x_key == "calendarDate"
    assert chart.y_keys == ("restingHeartRate",)
    assert "zones" not in chart.rows[0]
    assert chart.rows[0]["totalSteps"] == 5000


def test_each_list_field_yields_a_chart(detector: ChartDetector) -> None:
    payload = {
        "steps": [{"day": "Mon", "steps": 1}, {"day": "Tue", "steps": 2}],
        "calories": [{"day": "Mon", "calories": 10}, {"day": "Tue", "calories": 20}],
        "note": "weekly",
    }
    charts = detector.detect(text_result(payload), "weekly_summary")

    assert [chart.y_keys for chart in charts] == [("steps",), ("calories",)]
    assert [chart.id for chart in charts] == ["chart-1", "chart-2"]


def test_structured_data_items_are_inspected(detector: ChartDetector, daily_steps: list[dict]) -> None:
    result = ToolResult(content=(ContentItem.of_data({"rows": daily_steps}),))
    charts = detector.detect(result, "export")
    assert len(charts) == 1
    assert charts[0].y_keys == ("steps",)


def test_requires_a_string_key(detector: ChartDetector) -> None:
    rows = [{"x": 1, "y": 2}, {"x": 2, "y": 4}]
    assert detector.detect(text_result(rows), "series") == []


def test_numeric_check_is_exact(detector: ChartDetector) -> None:
    rows = [{"date": "2024-01-01", "steps": "100"}, {"date": "2024-01-02", "steps": "200"}]
    assert detector.detect(text_result(rows), "get_steps") == []


def test_booleans_are_not_numeric(detector: ChartDetector) -> None:
    rows = [{"name": "a", "active": True}, {"name": "b", "active": False}]
    assert detector.analyze(rows, "flags") is None


def test_excluded_fields_are_never_plotted(detector: ChartDetector) -> None:
    rows = [
        {"date": "2024-01-01", "userProfileId": 7, "stepGoal": 9000},
        {"date": "2024-01-02", "userProfileId": 7, "stepGoal": 9000},
    ]
    assert detector.detect(text_result(rows), "get_goals") == []


def test_query_metric_returns_at_most_two_fields(detector: ChartDetector) -> None:
    rows = [
        {"date": "2024-01-01", "totalSteps": 1, "wellnessSteps": 2, "dailyStepsAvg": 3, "calories": 4},
        {"date": "2024-01-02", "totalSteps": 5, "wellnessSteps": 6, "dailyStepsAvg": 7, "calories": 8},
    ]
    chart = detector.analyze(rows, "tool", "steps please")
    assert chart is not None
    assert chart.y_keys == ("dailyStepsAvg", "totalSteps")
    assert chart.colors == DEFAULT_PALETTE[:2]


def test_tool_name_is_used_when_query_has_no_metric(detector: ChartDetector) -> None:
    rows = [
        {"date": "2024-01-01", "calories": 1, "stressLevel": 10},
        {"date": "2024-01-02", "calories": 2, "stressLevel": 20},
    ]
    chart = detector.analyze(rows, "get_stress_data", "show me the chart")
    assert chart is not None
    assert chart.y_keys == ("stressLevel",)
    assert chart.title == "Stress Level - Get Stress Data"


def test_primary_metric_fallback(detector: ChartDetector) -> None:
    rows = [
        {"label": "a", "alpha": 1, "averageStressLevel": 30},
        {"label": "b", "alpha": 2, "averageStressLevel": 40},
    ]
    chart = detector.analyze(rows, "summary", "")
    assert chart is not None
    assert chart.y_keys == ("averageStressLevel",)


def test_first_numeric_field_as_last_resort(detector: ChartDetector) -> None:
    rows = [{"city": "Oslo", "zeta": 1, "beta": 2}, {"city": "Rome", "zeta": 3, "beta": 4}]
    chart = detector.analyze(rows, "cities")
    assert chart is not None
    assert chart.y_keys == ("beta",)
    assert chart.kind == "bar"
    assert chart.x_key == "city"


def test_chart_kind_rules(detector: ChartDetector) -> None:
    assert detector.chart_kind([{"day": "Mon"}], "day") == "area"
    assert detector.chart_kind([{"when": date(2024, 1, 1)}], "when") == "area"
    assert detector.chart_kind([{"x": 3}], "x") == "line"
    assert detector.chart_kind([{"city": "Oslo"}], "city") == "bar"


def test_flatten_records_hoists_one_level() -> None:
    rows = [{"date": "d", "stats": {"a": 1, "deep": {"b": 2}}, "tags": ["x"]}, 5]
    assert flatten_records(rows) == [{"date": "d", "a": 1, "tags": ["x"]}, 5]


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("get_daily_steps", "Get Daily Steps"),
        ("restingHeartRate", "Resting Heart Rate"),
        ("spo2", "Spo2"),
    ],
)
def test_title_case(name: str, expected: str) -> None:
    assert title_case(name) == expected
