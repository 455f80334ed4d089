"""Review orchestration for elreview."""

from elreview.orchestrator.metrics import Metrics, MetricsSnapshot
from elreview.orchestrator.runs import (
    ReviewAlreadyRunning,
    ReviewRun,
    RunRegistry,
    RunStatus,
    run_key,
)
from elreview.orchestrator.service import ReviewOrchestrator

__all__ = [
    "ReviewOrchestrator",
    "Metrics",
    "MetricsSnapshot",
    "ReviewRun",
    "RunRegistry",
    "RunStatus",
    "ReviewAlreadyRunning",
    "run_key",
]
