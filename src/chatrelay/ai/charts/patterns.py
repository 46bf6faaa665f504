"""Pattern tables that drive chart detection.

Every regex the detector consults lives in a :class:`ChartPatterns` instance
so the heuristics can be swapped or extended without touching the detector.
All patterns are matched case-insensitively with ``re.search`` semantics.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

__all__ = [
    "MetricPattern",
    "ChartPatterns",
    "DEFAULT_PALETTE",
    "DEFAULT_CHART_PATTERNS",
    "compile_patterns",
]


def compile_patterns(*patterns: str) -> tuple[re.Pattern[str], ...]:
    """Compile ``patterns`` case-insensitively."""
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


def _any_match(patterns: Iterable[re.Pattern[str]], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


# -----------------------------------------------------------------------------
# Metric Patterns
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class MetricPattern:
    """A named metric and how to recognise it.

    Attributes:
        name: Metric identifier (``"steps"``, ``"heart_rate"``...).
        query_patterns: Matched against the user's question and the tool name.
        field_patterns: Matched against numeric field names in the data.
        priority: Lower values win when several metrics match.
    """

    name: str
    query_patterns: tuple[re.Pattern[str], ...]
    field_patterns: tuple[re.Pattern[str], ...]
    priority: int

    @classmethod
    def build(
        cls,
        name: str,
        query: Sequence[str],
        fields: Sequence[str] | None = None,
        *,
        priority: int,
    ) -> MetricPattern:
        """Build a metric from raw regex strings; ``fields`` defaults to ``query``."""
        return cls(
            name=name,
            query_patterns=compile_patterns(*query),
            field_patterns=compile_patterns(*(fields if fields is not None else query)),
            priority=priority,
        )

    def matches_query(self, text: str) -> bool:
        return bool(text) and _any_match(self.query_patterns, text)

    def matching_fields(self, fields: Sequence[str]) -> list[str]:
        """Return the fields whose names match, preserving order."""
        return [name for name in fields if _any_match(self.field_patterns, name)]


# -----------------------------------------------------------------------------
# Pattern Set
# -----------------------------------------------------------------------------

DEFAULT_PALETTE: tuple[str, ...] = ("#00D9FF", "#7B2CBF", "#39FF14", "#FFD60A", "#FF206E")


@dataclass(slots=True, frozen=True)
class ChartPatterns:
    """Configuration for :class:`~chatrelay.ai.charts.detector.ChartDetector`.

    Attributes:
        metrics: Metric table used to pick Y-axis fields from intent.
        excluded_fields: Numeric fields that are never plotted.
        priority_fields: Ordering for the remaining numeric fields.
        date_fields: Field names treated as dates for the X axis and chart kind.
        primary_metric_fallbacks: Single-metric choices when intent is unknown.
        palette: Series colors, cycled by index.
        min_rows: Minimum number of records for a chart.
        min_keys: Minimum number of keys in the first record.
        max_metric_fields: Maximum Y keys taken from an intent match.
    """

    metrics: tuple[MetricPattern, ...]
    excluded_fields: tuple[re.Pattern[str], ...]
    priority_fields: tuple[re.Pattern[str], ...]
    date_fields: tuple[re.Pattern[str], ...]
    primary_metric_fallbacks: tuple[re.Pattern[str], ...]
    palette: tuple[str, ...] = DEFAULT_PALETTE
    min_rows: int = 2
    min_keys: int = 2
    max_metric_fields: int = 2
    _ordered_metrics: tuple[MetricPattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.palette:
            raise ValueError("palette must contain at least one color")
        object.__setattr__(
            self,
            "_ordered_metrics",
            tuple(sorted(self.metrics, key=lambda metric: metric.priority)),
        )

    def metric_for(self, text: str) -> MetricPattern | None:
        """Return the highest-priority metric whose query patterns match ``text``."""
        if not text:
            return None
        for metric in self._ordered_metrics:
            if metric.matches_query(text):
                return metric
        return None

    def is_excluded(self, field_name: str) -> bool:
        return _any_match(self.excluded_fields, field_name)

    def is_date_field(self, field_name: str) -> bool:
        return _any_match(self.date_fields, field_name)

    def field_priority(self, field_name: str) -> int | None:
        """Index of the first priority pattern matching ``field_name``, if any."""
        for index, pattern in enumerate(self.priority_fields):
            if pattern.search(field_name):
                return index
        return None

    def color(self, index: int) -> str:
        return self.palette[index % len(self.palette)]


DEFAULT_CHART_PATTERNS = ChartPatterns(
    metrics=(
        MetricPattern.build("steps", [r"steps", r"walked", r"walking"], priority=1),
        MetricPattern.build("heart_rate", [r"heart.*rate", r"hr\b", r"pulse", r"bpm"], priority=2),
        MetricPattern.build("calories", [r"calories", r"kcal", r"burned"], priority=3),
        MetricPattern.build("distance", [r"distance", r"miles", r"kilometers", r"km\b"], priority=4),
        MetricPattern.build("stress", [r"stress", r"anxiety"], priority=5),
        MetricPattern.build("sleep", [r"sleep", r"asleep", r"sleeping"], priority=6),
        MetricPattern.build("battery", [r"battery", r"energy"], priority=7),
        MetricPattern.build("floors", [r"floors", r"climbed", r"stairs"], priority=8),
        MetricPattern.build("spo2", [r"spo2", r"oxygen", r"o2"], priority=9),
        MetricPattern.build("respiration", [r"respiration", r"breathing", r"breath"], priority=10),
    ),
    excluded_fields=compile_patterns(
        r"Id$",
        r"^id$",
        r"profile",
        r"duration.*milliseconds",
        r"version",
        r"goal",
        r"constant",
    ),
    priority_fields=compile_patterns(
        r"steps",
        r"calories",
        r"heart.*rate",
        r"distance",
        r"stress",
        r"battery",
        r"spo2",
        r"respiration",
        r"sleep",
        r"floors",
        r"active.*seconds",
    ),
    date_fields=compile_patterns(r"date|time|timestamp|day|month|year"),
    primary_metric_fallbacks=compile_patterns(
        r"^totalSteps$",
        r"^restingHeartRate$",
        r"^heartRate$",
        r"^averageStressLevel$",
        r"^totalCalories$",
        r"^totalDistance",
    ),
)
