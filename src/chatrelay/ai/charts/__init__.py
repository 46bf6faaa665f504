"""Chart detection for structured tool output."""

from .detector import ChartDetector, default_chart_id, flatten_records, title_case
from .patterns import DEFAULT_CHART_PATTERNS, DEFAULT_PALETTE, ChartPatterns, MetricPattern, compile_patterns

__all__ = [
    "ChartDetector",
    "ChartPatterns",
    "MetricPattern",
    "DEFAULT_CHART_PATTERNS",
    "DEFAULT_PALETTE",
    "compile_patterns",
    "default_chart_id",
    "flatten_records",
    "title_case",
]
