"""Source health monitoring and adaptive scraping-method selection."""

from .errors import ErrorCategory, classify_error, guidance_for
from .monitor import (
    HealthAction,
    HealthAssessment,
    HealthReport,
    MethodSelector,
    MethodStats,
    SourceHealthMonitor,
    evaluate_sources,
    health_score,
)
from .probe import ProbeResult, probe_source

__all__ = [
    "ErrorCategory",
    "classify_error",
    "guidance_for",
    "HealthAction",
    "HealthAssessment",
    "HealthReport",
    "MethodSelector",
    "MethodStats",
    "SourceHealthMonitor",
    "evaluate_sources",
    "health_score",
    "ProbeResult",
    "probe_source",
]
