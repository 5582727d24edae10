"""configflow data models."""

from configflow.models.enums import (
    Category,
    ChangeKind,
    DocumentFormat,
    Priority,
    RiskLevel,
    TuningStatus,
    VirtualKind,
)
from configflow.models.runtime import (
    AutoTuningSession,
    ConfigBackup,
    ConfigChangeEvent,
    ConfigFile,
    ConfigParameter,
    ConfigTarget,
    ImpactAnalysis,
    MetricsSnapshot,
    MetricsSummary,
    OptimizationSuggestion,
    PerformanceBaseline,
    RealFile,
    TuningStats,
    ValidationResult,
    VirtualTarget,
    parse_target,
    target_label,
)

__all__ = [
    "ChangeKind",
    "Priority",
    "Category",
    "RiskLevel",
    "TuningStatus",
    "VirtualKind",
    "DocumentFormat",
    "RealFile",
    "VirtualTarget",
    "ConfigTarget",
    "parse_target",
    "target_label",
    "MetricsSnapshot",
    "MetricsSummary",
    "ConfigChangeEvent",
    "PerformanceBaseline",
    "ImpactAnalysis",
    "OptimizationSuggestion",
    "ConfigBackup",
    "ValidationResult",
    "AutoTuningSession",
    "TuningStats",
    "ConfigFile",
    "ConfigParameter",
]
