"""AI client, orchestration loop and chart detection."""

from .client import AIClient, ClientSettings
from .orchestration import ChatOrchestrator, OrchestratorConfig
from .charts import ChartDetector, ChartPatterns

__all__ = [
    "AIClient",
    "ClientSettings",
    "ChatOrchestrator",
    "OrchestratorConfig",
    "ChartDetector",
    "ChartPatterns",
]
