"""Frozen dataclass models for metrics, analyses, suggestions and tuning sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from configflow.models.enums import (
    Category,
    ChangeKind,
    DocumentFormat,
    Priority,
    RiskLevel,
    TuningStatus,
    VirtualKind,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- Targets ---


@dataclass(frozen=True, slots=True)
class RealFile:
    """A configuration file on disk."""

    path: str


@dataclass(frozen=True, slots=True)
class VirtualTarget:
    """A suggestion target that is not a file (system-level advice)."""

    kind: VirtualKind


ConfigTarget = RealFile | VirtualTarget


def parse_target(label: str) -> ConfigTarget:
    """Map a stored target label back onto the tagged variant."""
    try:
        return VirtualTarget(VirtualKind(label))
    except ValueError:
        return RealFile(label)


def target_label(target: ConfigTarget) -> str:
    if isinstance(target, VirtualTarget):
        return target.kind.value
    return target.path


# --- Metrics ---


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """One sampled instant of process and system state."""

    snapshot_id: str
    timestamp: datetime
    cpu_percent: float
    memory_percent: float
    process_memory_mb: float = 0.0
    config_hash: str = ""
    pid: int | None = None


@dataclass(frozen=True, slots=True)
class MetricsSummary:
    """Averaged view over a window of snapshots."""

    avg_cpu: float
    avg_memory: float
    stability: float
    sample_count: int = 0


# --- Analysis ---


@dataclass(frozen=True, slots=True)
class ConfigChangeEvent:
    """A detected mutation to a monitored file."""

    change_id: str
    timestamp: datetime
    config_file: str
    change_kind: ChangeKind
    config_hash: str
    parameter: str | None = None


@dataclass(frozen=True, slots=True)
class PerformanceBaseline:
    """Aggregate behaviour of one configuration state."""

    config_hash: str
    avg_cpu: float
    max_cpu: float
    avg_memory: float
    max_memory: float
    sample_count: int
    stability: float  # 0-1, higher is steadier
    computed_at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class ImpactAnalysis:
    """Before/after effect of a single change event."""

    change_id: str
    config_file: str
    impact_score: float  # -1 (harmful) .. 1 (beneficial)
    confidence: float
    cpu_delta: float
    memory_delta: float
    stability_delta: float
    evidence: tuple[str, ...]
    recommendation: str
    parameter: str | None = None
    analyzed_at: datetime = field(default_factory=_now)


# --- Optimization ---


@dataclass(frozen=True, slots=True)
class OptimizationSuggestion:
    """A proposed, not yet applied, parameter change."""

    suggestion_id: str
    priority: Priority
    category: Category
    target: ConfigTarget
    parameter: str
    current_value: Any
    suggested_value: Any
    expected_impact: str
    confidence: float
    risk_level: RiskLevel
    rollback_plan: str
    reasoning: tuple[str, ...] = ()
    estimated_gain: dict[str, float] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        # Unknown vocabulary is rejected here rather than ranked later
        object.__setattr__(self, "priority", Priority(self.priority))
        object.__setattr__(self, "category", Category(self.category))
        object.__setattr__(self, "risk_level", RiskLevel(self.risk_level))

    @property
    def target_label(self) -> str:
        return target_label(self.target)


# --- Auto-tuning ---


@dataclass(frozen=True, slots=True)
class ConfigBackup:
    """Pre-change copy of a target's bytes."""

    backup_id: str
    timestamp: datetime
    target: ConfigTarget
    original_content: bytes
    reason: str
    suggestion_id: str | None = None


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of comparing pre- and post-change metrics."""

    is_valid: bool
    confidence: float
    improvement: float
    issues: tuple[str, ...]
    recommendation: str  # "keep" or "rollback"


@dataclass(frozen=True, slots=True)
class AutoTuningSession:
    """One attempt to apply and validate a suggestion.

    Sessions are never mutated in place; each transition produces a new
    instance through ``dataclasses.replace``.
    """

    session_id: str
    suggestion_id: str
    target: ConfigTarget
    parameter: str
    original_value: Any
    new_value: Any
    status: TuningStatus = TuningStatus.PENDING
    started_at: datetime = field(default_factory=_now)
    backup_id: str | None = None
    pre_change_metrics: MetricsSummary | None = None
    post_change_metrics: MetricsSummary | None = None
    improvement_measured: float | None = None
    rollback_reason: str | None = None
    ended_at: datetime | None = None
    due_at: datetime | None = None

    @property
    def target_label(self) -> str:
        return target_label(self.target)


@dataclass(frozen=True, slots=True)
class TuningStats:
    """Aggregate counters over completed sessions."""

    total: int = 0
    successful: int = 0
    rolled_back: int = 0
    success_rate: float = 0.0
    avg_improvement: float = 0.0


# --- Scanner ---


@dataclass(frozen=True, slots=True)
class ConfigFile:
    """A configuration file discovered under the watch root."""

    path: str
    format: DocumentFormat
    size: int
    modified_at: datetime


@dataclass(frozen=True, slots=True)
class ConfigParameter:
    """A leaf value inside a structured configuration document."""

    config_file: str
    key_path: str  # dotted
    value: Any
