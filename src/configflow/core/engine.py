"""Wires the feed, analyzer, optimizer and tuner onto one scheduler."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from configflow.config import ConfigflowConfig
from configflow.core.analyzer import ImpactAnalyzer
from configflow.core.backups import BackupStore
from configflow.core.monitor import MetricsFeed
from configflow.core.optimizer import OptimizationEngine
from configflow.core.scanner import ConfigScanner, ConfigWatcher
from configflow.core.scheduler import Clock, Scheduler, utc_now
from configflow.core.store import ConfigflowStore
from configflow.core.tuner import AutoTuningEngine
from configflow.models import (
    AutoTuningSession,
    ChangeKind,
    ConfigChangeEvent,
    ImpactAnalysis,
    MetricsSnapshot,
    OptimizationSuggestion,
    PerformanceBaseline,
    TuningStats,
)

logger = logging.getLogger("configflow.engine")


class ConfigflowEngine:
    """One engine instance owns every component and all mutable state.

    All ticks run on the scheduler's thread. The watcher thread only queues
    events, which are drained at the next sample tick.
    """

    def __init__(
        self,
        config: ConfigflowConfig,
        store: ConfigflowStore | None = None,
        feed: MetricsFeed | None = None,
        watcher: ConfigWatcher | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.clock = clock or utc_now
        self.scheduler = Scheduler(self.clock)
        self.scanner = ConfigScanner(config.watch_path)
        self.feed = feed or MetricsFeed(config.metrics, config_hash=self.scanner.fingerprint)
        if watcher is None and config.watch.enabled:
            watcher = ConfigWatcher(config.watch_path)
        self.watcher = watcher

        self.analyzer = ImpactAnalyzer(config.analysis)
        self.optimizer = OptimizationEngine()
        self.tuner = AutoTuningEngine(
            config.tuning,
            BackupStore(config.backup_dir),
            history=self.feed.get_history,
            scheduler=self.scheduler,
        )

        # Work handed from one tick to the next
        self._unsuggested: list[ImpactAnalysis] = []
        self._untuned: list[OptimizationSuggestion] = []
        self._started = False

    # --- Intake ---

    def notify_config_change(
        self,
        path: str,
        kind: ChangeKind | str = ChangeKind.MODIFIED,
        timestamp: datetime | None = None,
    ) -> ConfigChangeEvent:
        event = self.analyzer.record_config_change(path, kind, timestamp or self.clock())
        if self.store is not None:
            self.store.save_change_event(event)
        return event

    # --- Ticks ---

    def sample_tick(self, now: datetime) -> MetricsSnapshot | None:
        if self.watcher is not None:
            for path, kind in self.watcher.drain():
                self.notify_config_change(path, kind, now)

        snap = self.feed.sample(now)
        if self.store is not None:
            if snap is not None:
                self.store.save_snapshots([snap])
            self.store.save_sessions(self.tuner.all_sessions())
        return snap

    def analysis_tick(self, now: datetime) -> list[ImpactAnalysis]:
        produced = self.analyzer.analyze_metrics(self.feed.get_history(), now)
        self._unsuggested.extend(produced)
        if self.store is not None:
            self.store.save_analyses(produced)
            self.store.upsert_baselines(self.analyzer.baselines())
        return produced

    def suggestion_tick(self, now: datetime) -> list[OptimizationSuggestion]:
        analyses, self._unsuggested = self._unsuggested, []
        suggestions = self.optimizer.generate_suggestions(
            analyses, self.analyzer.baselines(), self.feed.get_history()
        )
        self._untuned.extend(suggestions)
        if self.store is not None:
            self.store.save_suggestions(suggestions)
        return suggestions

    def tuning_tick(self, now: datetime) -> list[AutoTuningSession]:
        pending, self._untuned = self._untuned, []
        self.tuner.enforce_rollback_timeout(now)
        created = self.tuner.process_suggestions(pending, self.feed.get_history(), now)
        # Suggestions refused only for lack of a slot are retried next tick
        self._untuned = self.tuner.deferred() + self._untuned
        if self.store is not None:
            self.store.save_sessions(self.tuner.all_sessions())
        return created

    def status_tick(self, now: datetime) -> None:
        stats = self.tuner.stats()
        logger.info(
            "Status: %d snapshots, %d changes, %d analyses, %d baselines, %d suggestions, "
            "%d active sessions, %d completed (%.1f%% successful)",
            len(self.feed),
            len(self.analyzer.change_history()),
            len(self.analyzer.analyses()),
            len(self.analyzer.baselines()),
            self.optimizer.count(),
            len(self.tuner.active_sessions()),
            stats.total,
            stats.success_rate,
        )
        if self.store is not None:
            self.store.set_meta("last_tick_at", now.isoformat())
            self.store.set_meta("tuning_enabled", "true" if self.tuner.enabled else "false")

    def housekeeping_tick(self, now: datetime) -> None:
        removed = self.tuner.cleanup_old_backups(now)
        self.tuner.enforce_rollback_timeout(now)
        pruned = self.feed.prune(now)
        self.analyzer.ledger.prune(now)
        if self.store is not None:
            retention = timedelta(seconds=self.config.metrics.retention_seconds)
            self.store.prune_snapshots(now - retention)
            self.store.save_sessions(self.tuner.all_sessions())
        logger.debug("Housekeeping: %d backups purged, %d snapshots pruned", len(removed), pruned)

    # --- Lifecycle ---

    def start(self) -> None:
        if self._started:
            return
        now = self.clock()
        schedule = self.config.schedule
        self.scheduler.every("sample", self.config.metrics.interval_seconds, self.sample_tick, now)
        self.scheduler.every("analysis", schedule.analysis_seconds, self.analysis_tick, now)
        self.scheduler.every("suggestions", schedule.suggestion_seconds, self.suggestion_tick, now)
        self.scheduler.every("tuning", schedule.tuning_seconds, self.tuning_tick, now)
        self.scheduler.every("status", schedule.status_seconds, self.status_tick, now)
        self.scheduler.every("housekeeping", schedule.housekeeping_seconds, self.housekeeping_tick, now)

        if self.watcher is not None:
            self.watcher.start()
        if self.store is not None:
            self.store.set_meta("started_at", now.isoformat())
            self.store.set_meta("tuning_enabled", "true" if self.tuner.enabled else "false")
        self._started = True
        logger.info(
            "configflow started on %s (auto-tuning %s)",
            self.config.watch_path,
            "enabled" if self.tuner.enabled else "disabled",
        )

    def run_once(self, now: datetime | None = None) -> None:
        """Run every tick once, in pipeline order."""
        now = now or self.clock()
        for tick in (
            self.sample_tick,
            self.analysis_tick,
            self.suggestion_tick,
            self.tuning_tick,
            self.status_tick,
        ):
            try:
                tick(now)
            except Exception:
                logger.exception("Tick %s failed", tick.__name__)

    def run(self, stop_event: threading.Event) -> None:
        self.start()
        try:
            self.scheduler.run_forever(stop_event)
        finally:
            self.stop()

    def stop(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
        abandoned = self.tuner.abandon_active()
        self.scheduler.shutdown()
        if self.store is not None:
            self.store.save_sessions(self.tuner.all_sessions())
        self._log_final_report(len(abandoned))
        self._started = False

    def _log_final_report(self, abandoned: int) -> None:
        stats = self.tuner.stats()
        logger.info(
            "Final report: %d changes tracked, %d analyses, %d suggestions",
            len(self.analyzer.change_history()),
            len(self.analyzer.analyses()),
            self.optimizer.count(),
        )
        logger.info(
            "Auto-tuning: %d sessions, %d successful, %d rolled back, %.1f%% success, "
            "avg improvement %.2f, %d abandoned",
            stats.total,
            stats.successful,
            stats.rolled_back,
            stats.success_rate,
            stats.avg_improvement,
            abandoned,
        )

    # --- Read accessors ---

    def history(self) -> list[MetricsSnapshot]:
        return self.feed.get_history()

    def change_history(self) -> list[ConfigChangeEvent]:
        return self.analyzer.change_history()

    def analyses(self) -> list[ImpactAnalysis]:
        return self.analyzer.analyses()

    def baselines(self) -> list[PerformanceBaseline]:
        return self.analyzer.baselines()

    def suggestions(self) -> list[OptimizationSuggestion]:
        return self.optimizer.all_suggestions()

    def active_sessions(self) -> list[AutoTuningSession]:
        return self.tuner.active_sessions()

    def completed_sessions(self) -> list[AutoTuningSession]:
        return self.tuner.completed_sessions()

    def stats(self) -> TuningStats:
        return self.tuner.stats()
