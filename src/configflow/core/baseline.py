"""Per-configuration performance baselines and the bounded change ledger."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

from configflow.models.runtime import (
    ConfigChangeEvent,
    MetricsSnapshot,
    MetricsSummary,
    PerformanceBaseline,
)

logger = logging.getLogger("configflow.baseline")


def average(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def stability(values: Sequence[float]) -> float:
    """Return ``max(0, 1 - coefficient_of_variation)`` for a series.

    Uses the population standard deviation. Series shorter than two samples,
    and series whose mean is not positive, are treated as perfectly stable
    with respect to variation (cv = 0).
    """
    if len(values) < 2:
        return 1.0
    mean = average(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    stddev = math.sqrt(max(0.0, variance))
    cv = stddev / mean if mean > 0 else 0.0
    return min(1.0, max(0.0, 1.0 - cv))


def summarize(snapshots: Sequence[MetricsSnapshot]) -> MetricsSummary:
    """Average CPU/memory and CPU stability over a window of snapshots."""
    if not snapshots:
        return MetricsSummary(avg_cpu=0.0, avg_memory=0.0, stability=1.0, sample_count=0)
    cpu = [s.cpu_percent for s in snapshots]
    return MetricsSummary(
        avg_cpu=average(cpu),
        avg_memory=average([s.memory_percent for s in snapshots]),
        stability=stability(cpu),
        sample_count=len(snapshots),
    )


def compute_baseline(
    config_hash: str, snapshots: Sequence[MetricsSnapshot]
) -> PerformanceBaseline:
    cpu = [s.cpu_percent for s in snapshots]
    memory = [s.memory_percent for s in snapshots]
    return PerformanceBaseline(
        config_hash=config_hash,
        avg_cpu=average(cpu),
        max_cpu=max(cpu),
        avg_memory=average(memory),
        max_memory=max(memory),
        sample_count=len(snapshots),
        stability=(stability(cpu) + stability(memory)) / 2,
    )


class BaselineTracker:
    """Holds the latest baseline for every configuration hash with enough samples."""

    def __init__(self, min_sample_size: int = 5) -> None:
        self.min_sample_size = min_sample_size
        self._baselines: dict[str, PerformanceBaseline] = {}

    def refresh(self, history: Iterable[MetricsSnapshot]) -> list[PerformanceBaseline]:
        """Recompute baselines from the full history. Returns those recomputed."""
        groups: dict[str, list[MetricsSnapshot]] = {}
        for snap in history:
            groups.setdefault(snap.config_hash, []).append(snap)

        updated = []
        for config_hash, snaps in groups.items():
            if len(snaps) < self.min_sample_size:
                continue
            # Superseded wholesale, never merged
            baseline = compute_baseline(config_hash, snaps)
            self._baselines[config_hash] = baseline
            updated.append(baseline)

        logger.debug("Refreshed %d baselines (%d tracked)", len(updated), len(self._baselines))
        return updated

    def get(self, config_hash: str) -> PerformanceBaseline | None:
        return self._baselines.get(config_hash)

    def baselines(self) -> list[PerformanceBaseline]:
        return list(self._baselines.values())

    def __len__(self) -> int:
        return len(self._baselines)


class ChangeLedger:
    """Recent configuration change events, pruned to ``2 x window``."""

    def __init__(self, window: timedelta) -> None:
        self.window = window
        self._events: list[ConfigChangeEvent] = []

    def record(self, event: ConfigChangeEvent, now: datetime | None = None) -> None:
        self._events.append(event)
        self.prune(now or event.timestamp)

    def prune(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.window * 2
        before = len(self._events)
        self._events = [e for e in self._events if e.timestamp > cutoff]
        return before - len(self._events)

    def recent(self, now: datetime | None = None) -> list[ConfigChangeEvent]:
        """Events newer than ``now - window``."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.window
        return [e for e in self._events if e.timestamp > cutoff]

    def events(self) -> list[ConfigChangeEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)
