"""Before/after impact scoring of configuration changes."""

from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from configflow.config import AnalysisConfig
from configflow.core.baseline import BaselineTracker, ChangeLedger, average, stability
from configflow.models.enums import ChangeKind
from configflow.models.runtime import (
    ConfigChangeEvent,
    ImpactAnalysis,
    MetricsSnapshot,
    PerformanceBaseline,
)

logger = logging.getLogger("configflow.analyzer")

# Samples required on each side of a change before it can be scored
MIN_WINDOW_SAMPLES = 3

CPU_WEIGHT = 0.4
MEMORY_WEIGHT = 0.3
STABILITY_WEIGHT = 0.3

KEEP_THRESHOLD = 0.3
REVERT_THRESHOLD = -0.3
NEUTRAL_BAND = 0.1

NO_IMPACT_EVIDENCE = "No significant performance impact detected"


def change_hash(config_file: str, timestamp: datetime) -> str:
    """Hash identifying the configuration state introduced by a change."""
    millis = int(timestamp.timestamp() * 1000)
    return hashlib.md5(f"{config_file}_{millis}".encode()).hexdigest()


def impact_score(cpu_delta: float, memory_delta: float, stability_delta: float) -> float:
    """Resource increases push the score down, stability gains push it up."""
    score = 0.0
    score -= (cpu_delta / 100) * CPU_WEIGHT
    score -= (memory_delta / 100) * MEMORY_WEIGHT
    score += stability_delta * STABILITY_WEIGHT
    return max(-1.0, min(1.0, score))


def impact_confidence(before_samples: int, after_samples: int, magnitude: float) -> float:
    sample_confidence = min(1.0, min(before_samples, after_samples) / 10)
    magnitude_confidence = min(1.0, abs(magnitude) * 10)
    return (sample_confidence + magnitude_confidence) / 2


def build_evidence(
    cpu_delta: float,
    memory_delta: float,
    stability_delta: float,
    significance_threshold: float,
) -> tuple[str, ...]:
    evidence = []
    if abs(cpu_delta) > significance_threshold * 100:
        direction = "increased" if cpu_delta > 0 else "decreased"
        evidence.append(f"CPU usage {direction} by {abs(cpu_delta):.2f}%")
    if abs(memory_delta) > significance_threshold * 100:
        direction = "increased" if memory_delta > 0 else "decreased"
        evidence.append(f"Memory usage {direction} by {abs(memory_delta):.2f}%")
    if abs(stability_delta) > significance_threshold:
        direction = "improved" if stability_delta > 0 else "degraded"
        evidence.append(f"System stability {direction} by {abs(stability_delta * 100):.1f}%")
    if not evidence:
        evidence.append(NO_IMPACT_EVIDENCE)
    return tuple(evidence)


def recommendation_for(score: float, config_file: str) -> str:
    if score > KEEP_THRESHOLD:
        return f"Positive impact detected. Consider keeping this configuration change in {config_file}."
    if score < REVERT_THRESHOLD:
        return f"Negative impact detected. Consider reverting changes to {config_file}."
    if abs(score) < NEUTRAL_BAND:
        return f"Minimal impact detected. Configuration change in {config_file} appears neutral."
    return f"Minor impact detected. Monitor {config_file} for additional changes."


def split_window(
    change: ConfigChangeEvent,
    history: Sequence[MetricsSnapshot],
    config: AnalysisConfig,
) -> tuple[list[MetricsSnapshot], list[MetricsSnapshot]]:
    """Partition history into the before and after windows around a change."""
    window = config.analysis_window
    t0 = change.timestamp
    before = [s for s in history if t0 - window < s.timestamp < t0]
    after = [s for s in history if t0 < s.timestamp < t0 + window]
    return before, after


def compute_impact(
    change: ConfigChangeEvent,
    history: Sequence[MetricsSnapshot],
    config: AnalysisConfig,
) -> ImpactAnalysis | None:
    """Score one change. Returns None when either window is too thin."""
    before, after = split_window(change, history, config)
    if len(before) < MIN_WINDOW_SAMPLES or len(after) < MIN_WINDOW_SAMPLES:
        return None

    before_cpu = [s.cpu_percent for s in before]
    after_cpu = [s.cpu_percent for s in after]
    cpu_delta = average(after_cpu) - average(before_cpu)
    memory_delta = average([s.memory_percent for s in after]) - average(
        [s.memory_percent for s in before]
    )
    stability_delta = stability(after_cpu) - stability(before_cpu)

    score = impact_score(cpu_delta, memory_delta, stability_delta)
    return ImpactAnalysis(
        change_id=change.change_id,
        config_file=change.config_file,
        parameter=change.parameter,
        impact_score=score,
        confidence=impact_confidence(len(before), len(after), score),
        cpu_delta=cpu_delta,
        memory_delta=memory_delta,
        stability_delta=stability_delta,
        evidence=build_evidence(
            cpu_delta, memory_delta, stability_delta, config.significance_threshold
        ),
        recommendation=recommendation_for(score, change.config_file),
    )


class ImpactAnalyzer:
    """Correlates change events with metrics history."""

    def __init__(self, config: AnalysisConfig | None = None) -> None:
        self.config = config or AnalysisConfig()
        self.tracker = BaselineTracker(self.config.min_sample_size)
        self.ledger = ChangeLedger(self.config.analysis_window)
        self._analyses: list[ImpactAnalysis] = []
        self._analyzed: set[str] = set()
        logger.info(
            "Impact analyzer ready (window=%ss, min samples=%d)",
            self.config.analysis_window_seconds,
            self.config.min_sample_size,
        )

    def record_config_change(
        self,
        config_file: str,
        change_kind: ChangeKind | str,
        timestamp: datetime | None = None,
        parameter: str | None = None,
    ) -> ConfigChangeEvent:
        ts = timestamp or datetime.now(timezone.utc)
        event = ConfigChangeEvent(
            change_id=uuid.uuid4().hex,
            timestamp=ts,
            config_file=config_file,
            change_kind=ChangeKind(change_kind),
            config_hash=change_hash(config_file, ts),
            parameter=parameter,
        )
        self.ledger.record(event, ts)
        logger.info("Recorded config change: %s in %s", event.change_kind.value, config_file)
        return event

    def analyze_metrics(
        self,
        history: Sequence[MetricsSnapshot],
        now: datetime | None = None,
    ) -> list[ImpactAnalysis]:
        """Refresh baselines and score recent changes. Returns new analyses."""
        if len(history) < self.config.min_sample_size:
            logger.debug("Not enough metrics for analysis yet (%d)", len(history))
            return []

        self.tracker.refresh(history)

        produced = []
        for change in self.ledger.recent(now):
            if change.change_id in self._analyzed:
                continue
            analysis = compute_impact(change, history, self.config)
            if analysis is None:
                continue
            self._analyzed.add(change.change_id)
            self._analyses.append(analysis)
            produced.append(analysis)
            logger.info(
                "Impact of %s: score=%.3f confidence=%.1f%%",
                analysis.config_file,
                analysis.impact_score,
                analysis.confidence * 100,
            )
        return produced

    def analyses(self) -> list[ImpactAnalysis]:
        return list(self._analyses)

    def baselines(self) -> list[PerformanceBaseline]:
        return self.tracker.baselines()

    def change_history(self) -> list[ConfigChangeEvent]:
        return self.ledger.events()
