"""Safety-gated auto-tuning: backup, apply, validate, then keep or roll back."""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from configflow.config import TuningConfig
from configflow.core.backups import BackupNotFoundError, BackupStorageError, BackupStore
from configflow.core.baseline import summarize
from configflow.core.documents import (
    DocumentError,
    get_path,
    read_document,
    set_path,
    write_document,
)
from configflow.core.scheduler import Scheduler
from configflow.models.enums import TuningStatus
from configflow.models.runtime import (
    AutoTuningSession,
    MetricsSnapshot,
    MetricsSummary,
    OptimizationSuggestion,
    RealFile,
    TuningStats,
    ValidationResult,
    VirtualTarget,
)

logger = logging.getLogger("configflow.tuner")

MIN_CONFIDENCE = 0.7
PRE_CHANGE_WINDOW = 5
KEEP_IMPROVEMENT = 2.0
CPU_CEILING = 90.0
MEMORY_CEILING = 95.0

VALIDATION_ERROR = "Validation error"
ROLLBACK_TIMEOUT = "Rollback timeout"
UNKNOWN_PARAMETER = "unknown"

HistorySource = Callable[[], Sequence[MetricsSnapshot]]


def validate_performance_change(before: MetricsSummary, after: MetricsSummary) -> ValidationResult:
    """Weigh resource savings against stability and decide keep or rollback."""
    cpu_improvement = before.avg_cpu - after.avg_cpu
    memory_improvement = before.avg_memory - after.avg_memory
    stability_improvement = after.stability - before.stability

    improvement = cpu_improvement * 0.4 + memory_improvement * 0.4 + stability_improvement * 20
    is_valid = improvement > 0 and after.avg_cpu < CPU_CEILING and after.avg_memory < MEMORY_CEILING

    issues = []
    if after.avg_cpu > before.avg_cpu * 1.1:
        issues.append("CPU increased >10%")
    if after.avg_memory > before.avg_memory * 1.1:
        issues.append("Memory increased >10%")
    if after.stability < before.stability * 0.9:
        issues.append("Stability dropped >10%")

    return ValidationResult(
        is_valid=is_valid,
        confidence=min(1.0, abs(improvement) / 10),
        improvement=improvement,
        issues=tuple(issues),
        recommendation="keep" if is_valid and improvement > KEEP_IMPROVEMENT else "rollback",
    )


def rollback_reason(result: ValidationResult) -> str:
    if result.issues:
        return result.issues[0]
    return f"Improvement below threshold ({result.improvement:.2f})"


def session_stats(sessions: Iterable[AutoTuningSession]) -> TuningStats:
    """Aggregate finalised sessions. Non-terminal sessions are ignored."""
    finished = [s for s in sessions if s.status in (TuningStatus.SUCCESSFUL, TuningStatus.ROLLED_BACK)]
    successful = [s for s in finished if s.status is TuningStatus.SUCCESSFUL]
    gains = [s.improvement_measured or 0.0 for s in successful]
    total = len(finished)
    return TuningStats(
        total=total,
        successful=len(successful),
        rolled_back=total - len(successful),
        success_rate=len(successful) / total * 100 if total else 0.0,
        avg_improvement=sum(gains) / len(gains) if gains else 0.0,
    )


def _new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:16]}"


class AutoTuningEngine:
    """Owns tuning sessions and is the only writer of monitored config files."""

    def __init__(
        self,
        config: TuningConfig | None = None,
        backups: BackupStore | None = None,
        history: HistorySource | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.config = config or TuningConfig()
        self.backups = backups
        self.scheduler = scheduler or Scheduler()
        self._history: HistorySource = history or (lambda: [])

        self._active: dict[str, AutoTuningSession] = {}
        self._awaiting: dict[str, tuple[AutoTuningSession, OptimizationSuggestion]] = {}
        self._completed: list[AutoTuningSession] = []
        self._failed: list[AutoTuningSession] = []
        self._processed: set[str] = set()
        self._deferred: list[OptimizationSuggestion] = []

        self._storage_ready = False
        if self.backups is not None:
            try:
                self.backups.open()
                self._storage_ready = True
            except BackupStorageError as exc:
                logger.error("Auto-tuning disabled: %s", exc)
        else:
            logger.error("Auto-tuning disabled: no backup storage configured")

        logger.info(
            "Auto-tuning engine ready (enabled=%s, safety=%s, max concurrent=%d, risk<=%s, test=%ss)",
            self.enabled,
            "on" if self.config.safety_mode else "off",
            self.config.effective_max_concurrent,
            self.config.effective_risk_threshold.value,
            self.config.test_duration_seconds,
        )
        for override in self.config.safety_overrides():
            logger.warning("Safety mode: %s", override)

    @property
    def enabled(self) -> bool:
        return self.config.enabled and self._storage_ready

    # --- Admission ---

    def ineligibility_reason(self, suggestion: OptimizationSuggestion) -> str | None:
        """Why a suggestion cannot be applied right now, or None if it can."""
        threshold = self.config.effective_risk_threshold
        if suggestion.risk_level.rank > threshold.rank:
            return f"risk too high ({suggestion.risk_level.value})"
        if suggestion.confidence < MIN_CONFIDENCE:
            return f"confidence too low ({suggestion.confidence * 100:.1f}%)"
        if isinstance(suggestion.target, RealFile):
            path = Path(suggestion.target.path)
            if not path.is_file() or not os.access(path, os.W_OK):
                return f"file not modifiable ({path})"
        if suggestion.suggestion_id in self._processed:
            return "already processed"
        key = (suggestion.target_label, suggestion.parameter)
        held = list(self._active.values()) + [s for s, _ in self._awaiting.values()]
        if any((s.target_label, s.parameter) == key for s in held):
            return "session already open on this parameter"
        return None

    def process_suggestions(
        self,
        suggestions: Sequence[OptimizationSuggestion],
        metrics: Sequence[MetricsSnapshot],
        now: datetime | None = None,
    ) -> list[AutoTuningSession]:
        """Admit eligible suggestions up to capacity. Returns the sessions created.

        Eligible suggestions that find no free slot are kept in ``deferred()``.
        """
        self._deferred = []
        if not self.enabled:
            logger.debug("Auto-tuning is disabled")
            return []

        now = now or self.scheduler.clock()
        eligible = []
        batch_keys: set[tuple[str, str]] = set()
        for suggestion in suggestions:
            reason = self.ineligibility_reason(suggestion)
            key = (suggestion.target_label, suggestion.parameter)
            if reason is None and key in batch_keys:
                reason = "duplicate parameter in batch"
            if reason:
                logger.debug("Skipping %s: %s", suggestion.suggestion_id, reason)
                continue
            batch_keys.add(key)
            eligible.append(suggestion)

        if not eligible:
            logger.info("No eligible suggestions for auto-tuning")
            return []

        slots = self.config.effective_max_concurrent - len(self._active) - len(self._awaiting)
        admitted = eligible[: max(0, slots)]
        self._deferred = eligible[len(admitted) :]
        logger.info(
            "%d eligible suggestions, %d admitted (%d slots)", len(eligible), len(admitted), max(0, slots)
        )

        created = []
        for suggestion in admitted:
            self._processed.add(suggestion.suggestion_id)
            if self.config.approval_required:
                created.append(self._hold_for_approval(suggestion, now))
            else:
                created.append(self._apply(suggestion, metrics, now))
        return created

    def deferred(self) -> list[OptimizationSuggestion]:
        """Eligible suggestions from the last batch that found no free slot."""
        return list(self._deferred)

    def _hold_for_approval(
        self, suggestion: OptimizationSuggestion, now: datetime
    ) -> AutoTuningSession:
        session = self._new_session(suggestion, now, TuningStatus.AWAITING_APPROVAL)
        self._awaiting[session.session_id] = (session, suggestion)
        logger.info(
            "Session %s awaiting approval: %s %s -> %s",
            session.session_id,
            session.target_label,
            session.parameter,
            session.new_value,
        )
        return session

    def approve(self, session_id: str, now: datetime | None = None) -> AutoTuningSession:
        """Release a held session into apply. Raises KeyError for unknown ids."""
        session, suggestion = self._awaiting[session_id]
        if len(self._active) >= self.config.effective_max_concurrent:
            logger.warning("No capacity to apply %s yet", session_id)
            return session
        del self._awaiting[session_id]
        return self._apply(
            suggestion, self._history(), now or self.scheduler.clock(), session_id=session_id
        )

    def reject(self, session_id: str, now: datetime | None = None) -> AutoTuningSession:
        session, _ = self._awaiting.pop(session_id)
        rejected = replace(
            session,
            status=TuningStatus.FAILED,
            rollback_reason="Rejected by operator",
            ended_at=now or self.scheduler.clock(),
        )
        self._failed.append(rejected)
        logger.info("Session %s rejected", session_id)
        return rejected

    # --- Apply ---

    def _new_session(
        self,
        suggestion: OptimizationSuggestion,
        now: datetime,
        status: TuningStatus = TuningStatus.PENDING,
        session_id: str | None = None,
    ) -> AutoTuningSession:
        return AutoTuningSession(
            session_id=session_id or _new_session_id(),
            suggestion_id=suggestion.suggestion_id,
            target=suggestion.target,
            parameter=suggestion.parameter,
            original_value=suggestion.current_value,
            new_value=suggestion.suggested_value,
            status=status,
            started_at=now,
        )

    def _apply(
        self,
        suggestion: OptimizationSuggestion,
        metrics: Sequence[MetricsSnapshot],
        now: datetime,
        session_id: str | None = None,
    ) -> AutoTuningSession:
        session = self._new_session(suggestion, now, session_id=session_id)
        session = replace(
            session, pre_change_metrics=summarize(list(metrics)[-PRE_CHANGE_WINDOW:])
        )
        logger.info(
            "Starting session %s: %s (confidence %.1f%%)",
            session.session_id,
            suggestion.expected_impact,
            suggestion.confidence * 100,
        )

        try:
            backup = self.backups.create(
                suggestion.target,
                reason=f"Auto-tuning: {suggestion.suggestion_id}",
                suggestion_id=suggestion.suggestion_id,
                now=now,
            )
            session = replace(session, backup_id=backup.backup_id)
            self._mutate(suggestion)
        except (OSError, DocumentError, BackupStorageError) as exc:
            failed = replace(
                session,
                status=TuningStatus.FAILED,
                rollback_reason=f"Apply failed: {exc}",
                ended_at=now,
            )
            self._failed.append(failed)
            logger.error("Failed to apply suggestion %s: %s", suggestion.suggestion_id, exc)
            return failed

        due_at = now + self.config.test_duration
        session = replace(session, status=TuningStatus.TESTING, due_at=due_at)
        self._active[session.session_id] = session
        self.scheduler.call_at(
            f"validate:{session.session_id}",
            due_at,
            self.validate_and_finalize,
            {"session_id": session.session_id, "backup_id": session.backup_id, "due_at": due_at},
        )
        logger.info("Session %s testing until %s", session.session_id, due_at.isoformat())
        return session

    def _mutate(self, suggestion: OptimizationSuggestion) -> None:
        target = suggestion.target
        if isinstance(target, VirtualTarget) or suggestion.parameter == UNKNOWN_PARAMETER:
            logger.info(
                "Virtual configuration change: %s %s = %s",
                suggestion.target_label,
                suggestion.parameter,
                suggestion.suggested_value,
            )
            return
        doc = read_document(target.path)
        previous = get_path(doc, suggestion.parameter)
        set_path(doc, suggestion.parameter, suggestion.suggested_value)
        write_document(target.path, doc)
        logger.info(
            "Modified %s in %s: %r -> %r",
            suggestion.parameter,
            Path(target.path).name,
            previous,
            suggestion.suggested_value,
        )

    # --- Validation ---

    def _post_change_metrics(self, session: AutoTuningSession, now: datetime) -> MetricsSummary:
        after = [s for s in self._history() if session.started_at < s.timestamp <= now]
        if not after:
            raise ValueError(f"No metrics collected since {session.started_at.isoformat()}")
        return summarize(after)

    def validate_and_finalize(
        self,
        now: datetime,
        session_id: str,
        backup_id: str | None,
        due_at: datetime | None = None,
    ) -> AutoTuningSession | None:
        session = self._active.get(session_id)
        if session is None or session.status is not TuningStatus.TESTING:
            logger.warning("Session %s not found for validation", session_id)
            return None

        logger.info("Validating session %s", session_id)
        try:
            if session.pre_change_metrics is None or session.pre_change_metrics.sample_count == 0:
                raise ValueError("No pre-change metrics recorded")
            post = self._post_change_metrics(session, now)
            session = replace(session, post_change_metrics=post)
            self._active[session_id] = session
            result = validate_performance_change(session.pre_change_metrics, post)
        except Exception:
            logger.exception("Error during validation for session %s", session_id)
            return self.rollback(session_id, backup_id, VALIDATION_ERROR, now)

        logger.info(
            "Validation of %s: %s (improvement %.2f, confidence %.1f%%)",
            session_id,
            result.recommendation,
            result.improvement,
            result.confidence * 100,
        )
        if result.recommendation == "keep" and result.is_valid:
            kept = replace(
                session,
                status=TuningStatus.SUCCESSFUL,
                improvement_measured=result.improvement,
                ended_at=now,
            )
            self._finalize(kept)
            logger.info("Session %s successful: improvement %.2f", session_id, result.improvement)
            return kept
        return self.rollback(session_id, backup_id, rollback_reason(result), now)

    def rollback(
        self,
        session_id: str,
        backup_id: str | None,
        reason: str,
        now: datetime | None = None,
    ) -> AutoTuningSession | None:
        """Restore the backup and close the session as ROLLED_BACK."""
        session = self._active.get(session_id)
        if session is None:
            logger.warning("Session %s not active, nothing to roll back", session_id)
            return None

        logger.info("Rolling back session %s: %s", session_id, reason)
        self.scheduler.cancel(f"validate:{session_id}")
        if backup_id is None:
            logger.error("Session %s has no backup; %s may remain modified", session_id, session.target_label)
        else:
            try:
                self.backups.restore(backup_id)
            except (OSError, BackupNotFoundError, ValueError) as exc:
                logger.error(
                    "Rollback of %s failed, %s may remain modified: %s",
                    session_id,
                    session.target_label,
                    exc,
                )

        rolled = replace(
            session,
            status=TuningStatus.ROLLED_BACK,
            rollback_reason=reason,
            ended_at=now or self.scheduler.clock(),
        )
        self._finalize(rolled)
        return rolled

    def _finalize(self, session: AutoTuningSession) -> None:
        self._active.pop(session.session_id, None)
        self._completed.append(session)

    # --- Housekeeping ---

    def cleanup_old_backups(self, now: datetime | None = None) -> list[str]:
        if not self._storage_ready:
            return []
        keep = {s.backup_id for s in self._active.values() if s.backup_id}
        return self.backups.purge_older_than(self.config.backup_retention_days, now, keep=keep)

    def enforce_rollback_timeout(self, now: datetime | None = None) -> list[AutoTuningSession]:
        """Force rollback of sessions still testing well past their validation time."""
        now = now or self.scheduler.clock()
        forced = []
        for session in list(self._active.values()):
            if session.due_at is None or now < session.due_at + self.config.rollback_timeout:
                continue
            rolled = self.rollback(session.session_id, session.backup_id, ROLLBACK_TIMEOUT, now)
            if rolled is not None:
                forced.append(rolled)
        return forced

    def abandon_active(self) -> list[AutoTuningSession]:
        """Leave testing sessions unvalidated at shutdown. Files stay as applied."""
        abandoned = list(self._active.values())
        for session in abandoned:
            logger.warning(
                "Abandoning session %s on %s without validation",
                session.session_id,
                session.target_label,
            )
        return abandoned

    # --- Read surface ---

    def active_sessions(self) -> list[AutoTuningSession]:
        return list(self._active.values())

    def completed_sessions(self) -> list[AutoTuningSession]:
        return list(self._completed)

    def successful_sessions(self) -> list[AutoTuningSession]:
        return [s for s in self._completed if s.status is TuningStatus.SUCCESSFUL]

    def failed_sessions(self) -> list[AutoTuningSession]:
        return list(self._failed)

    def pending_approvals(self) -> list[AutoTuningSession]:
        return [s for s, _ in self._awaiting.values()]

    def all_sessions(self) -> list[AutoTuningSession]:
        return (
            self.pending_approvals()
            + self.active_sessions()
            + self.completed_sessions()
            + self.failed_sessions()
        )

    def stats(self) -> TuningStats:
        return session_stats(self._completed)
