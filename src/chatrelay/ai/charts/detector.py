"""Detect chart-worthy tabular data in tool results.

The detector is a pure function over one :class:`ToolResult`: it never mutates
its input and returns an empty list when nothing qualifies, which is the
common case.
"""

from __future__ import annotations

import json
import logging
import math
import re
import uuid
from datetime import date
from typing import Any, Callable, Iterator, Mapping, Sequence

from ..orchestration.types import ChartDescriptor, ChartKind, ContentItem, ToolResult
from .patterns import DEFAULT_CHART_PATTERNS, ChartPatterns

__all__ = [
    "ChartDetector",
    "flatten_records",
    "title_case",
    "default_chart_id",
]

LOGGER = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_WORD_SEPARATORS = re.compile(r"[_\-\s]+")


def default_chart_id() -> str:
    return f"chart-{uuid.uuid4().hex[:12]}"


def title_case(name: str) -> str:
    """Convert ``snake_case`` or ``camelCase`` to ``Title Case``."""
    spaced = _CAMEL_BOUNDARY.sub(" ", name)
    words = [word for word in _WORD_SEPARATORS.split(spaced) if word]
    return " ".join(word[:1].upper() + word[1:] for word in words)


def _is_record(value: Any) -> bool:
    return isinstance(value, Mapping)


def _is_number(value: Any) -> bool:
    if type(value) is int:
        return True
    return type(value) is float and not math.isnan(value)


def _is_text_or_date(value: Any) -> bool:
    return isinstance(value, (str, date))


def flatten_records(rows: Sequence[Any]) -> list[Any]:
    """Hoist scalar sub-fields of nested records one level up.

    ``[{"date": d, "stats": {"totalSteps": 1}}]`` becomes
    ``[{"date": d, "totalSteps": 1}]``. Non-record rows and list values are
    copied as-is; nested non-scalars are dropped.
    """
    flattened: list[Any] = []
    for row in rows:
        if not _is_record(row):
            flattened.append(row)
            continue
        flat: dict[str, Any] = {}
        for key, value in row.items():
            if _is_record(value):
                for nested_key, nested_value in value.items():
                    if not isinstance(nested_value, (Mapping, list, tuple)):
                        flat[nested_key] = nested_value
            else:
                flat[key] = value
        flattened.append(flat)
    return flattened


class ChartDetector:
    """Turns tool results into chart descriptors.

    Args:
        patterns: Regex tables driving field selection.
        id_factory: Produces a unique id per descriptor.
    """

    def __init__(
        self,
        patterns: ChartPatterns = DEFAULT_CHART_PATTERNS,
        *,
        id_factory: Callable[[], str] = default_chart_id,
    ) -> None:
        self._patterns = patterns
        self._id_factory = id_factory

    @property
    def patterns(self) -> ChartPatterns:
        return self._patterns

    def detect(self, result: ToolResult, tool_name: str, user_query: str = "") -> list[ChartDescriptor]:
        """Return one descriptor per chartable list found in ``result``."""
        if result.is_error:
            return []

        charts: list[ChartDescriptor] = []
        for item in result.content:
            for candidate in self._candidate_lists(item):
                chart = self.analyze(flatten_records(candidate), tool_name, user_query)
                if chart is not None:
                    charts.append(chart)
        if charts:
            LOGGER.debug("Detected %d chart(s) in result from %s", len(charts), tool_name)
        return charts

    # ------------------------------------------------------------------
    # Candidate discovery
    # ------------------------------------------------------------------
    @staticmethod
    def _candidate_lists(item: ContentItem) -> Iterator[list[Any]]:
        data = item.data
        if isinstance(data, list):
            yield data
        elif _is_record(data):
            for value in data.values():
                if isinstance(value, list):
                    yield value

        if item.text:
            try:
                parsed = json.loads(item.text)
            except ValueError:
                return
            if isinstance(parsed, list):
                yield parsed
            elif isinstance(parsed, dict):
                for value in parsed.values():
                    if isinstance(value, list):
                        yield value

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    def analyze(self, rows: Sequence[Any], tool_name: str, user_query: str = "") -> ChartDescriptor | None:
        """Build a descriptor for already-flattened ``rows`` or return ``None``."""
        patterns = self._patterns
        if len(rows) < patterns.min_rows:
            return None
        if not all(_is_record(row) for row in rows):
            return None

        keys = list(rows[0].keys())
        if len(keys) < patterns.min_keys:
            return None

        numeric_keys = [key for key in keys if all(_is_number(row.get(key)) for row in rows)]
        if not numeric_keys:
            return None

        candidate_keys = self.filter_numeric_fields(numeric_keys)
        if not candidate_keys:
            return None

        string_keys = [key for key in keys if all(_is_text_or_date(row.get(key)) for row in rows)]
        if not string_keys:
            return None

        x_key = next((key for key in string_keys if patterns.is_date_field(key)), string_keys[0])
        y_keys = self.select_metrics(candidate_keys, tool_name, user_query)
        kind = self.chart_kind(rows, x_key)

        return ChartDescriptor(
            kind=kind,
            title=self.chart_title(tool_name, y_keys),
            rows=tuple(dict(row) for row in rows),
            x_key=x_key,
            y_keys=tuple(y_keys),
            colors=tuple(patterns.color(index) for index in range(len(y_keys))),
            labels={key: title_case(key) for key in y_keys},
            id=self._id_factory(),
        )

    def filter_numeric_fields(self, numeric_keys: Sequence[str]) -> list[str]:
        """Drop excluded fields, then order by priority pattern and name."""
        patterns = self._patterns
        kept = [key for key in numeric_keys if not patterns.is_excluded(key)]

        def sort_key(key: str) -> tuple[int, int, str]:
            priority = patterns.field_priority(key)
            if priority is None:
                return (1, 0, key)
            return (0, priority, key)

        return sorted(kept, key=sort_key)

    def select_metrics(self, numeric_keys: Sequence[str], tool_name: str, user_query: str) -> list[str]:
        """Pick the Y-axis fields that match what the user asked about."""
        patterns = self._patterns
        metric = patterns.metric_for(user_query) or patterns.metric_for(tool_name)
        if metric is not None:
            matching = metric.matching_fields(numeric_keys)
            if matching:
                return matching[: patterns.max_metric_fields]

        for fallback in patterns.primary_metric_fallbacks:
            for key in numeric_keys:
                if fallback.search(key):
                    return [key]

        return [numeric_keys[0]]

    def chart_kind(self, rows: Sequence[Mapping[str, Any]], x_key: str) -> ChartKind:
        first_value = rows[0].get(x_key)
        if self._patterns.is_date_field(x_key) or isinstance(first_value, date):
            return "area"
        if _is_number(first_value):
            return "line"
        return "bar"

    @staticmethod
    def chart_title(tool_name: str, y_keys: Sequence[str]) -> str:
        metrics = ", ".join(title_case(key) for key in y_keys)
        return f"{metrics} - {title_case(tool_name)}"
