"""Process and system metrics sampling via psutil."""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import psutil

from configflow.config import MetricsConfig
from configflow.models.runtime import MetricsSnapshot

logger = logging.getLogger("configflow.monitor")


def capture_snapshot(
    proc: psutil.Process,
    config_hash: str = "",
    cpu_interval: float = 0.0,
    now: datetime | None = None,
) -> MetricsSnapshot | None:
    """Read one snapshot for ``proc``. Returns None if the process is unreadable."""
    try:
        cpu = proc.cpu_percent(interval=cpu_interval)
        rss = proc.memory_info().rss / (1024 * 1024)
        memory = psutil.virtual_memory().percent
    except psutil.NoSuchProcess:
        logger.warning("Process %d no longer exists", proc.pid)
    except psutil.AccessDenied:
        logger.warning("Access denied reading process %d", proc.pid)
    except psutil.ZombieProcess:
        logger.warning("Zombie process %d", proc.pid)
    else:
        return MetricsSnapshot(
            snapshot_id=uuid.uuid4().hex,
            timestamp=now or datetime.now(timezone.utc),
            cpu_percent=round(cpu, 1),
            memory_percent=round(memory, 1),
            process_memory_mb=round(rss, 2),
            config_hash=config_hash,
            pid=proc.pid,
        )
    return None


class MetricsFeed:
    """Rolling in-memory history of snapshots for one observed process."""

    def __init__(
        self,
        config: MetricsConfig | None = None,
        config_hash: Callable[[], str] | None = None,
    ) -> None:
        self.config = config or MetricsConfig()
        self.pid = self.config.pid or os.getpid()
        self._config_hash = config_hash or (lambda: "")
        self._proc: psutil.Process | None = None
        self._history: list[MetricsSnapshot] = []

    def _process(self) -> psutil.Process:
        if self._proc is None:
            self._proc = psutil.Process(self.pid)
            # The first non-blocking cpu_percent call only primes the counter
            self._proc.cpu_percent(interval=None)
        return self._proc

    def sample(self, now: datetime | None = None) -> MetricsSnapshot | None:
        """Take and record one snapshot. Failures are logged and skipped."""
        try:
            proc = self._process()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as exc:
            logger.warning("Cannot attach to process %d: %s", self.pid, exc)
            return None

        try:
            config_hash = self._config_hash()
        except OSError as exc:
            logger.warning("Config fingerprint unavailable: %s", exc)
            config_hash = ""

        snap = capture_snapshot(proc, config_hash, self.config.cpu_sample_interval, now)
        if snap is None:
            self._proc = None
            return None
        self._history.append(snap)
        return snap

    def record(self, snapshot: MetricsSnapshot) -> None:
        """Append an externally supplied snapshot."""
        self._history.append(snapshot)

    def prune(self, now: datetime | None = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(
            seconds=self.config.retention_seconds
        )
        before = len(self._history)
        self._history = [s for s in self._history if s.timestamp >= cutoff]
        removed = before - len(self._history)
        if removed:
            logger.debug("Pruned %d snapshots older than %s", removed, cutoff.isoformat())
        return removed

    def get_history(self) -> list[MetricsSnapshot]:
        return list(self._history)

    def get_latest(self) -> MetricsSnapshot | None:
        return self._history[-1] if self._history else None

    def __len__(self) -> int:
        return len(self._history)
