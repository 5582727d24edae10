"""SQLite store with WAL mode, shared by the daemon, the CLI and the MCP server."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from configflow.models import (
    AutoTuningSession,
    ChangeKind,
    ConfigChangeEvent,
    ImpactAnalysis,
    MetricsSnapshot,
    MetricsSummary,
    OptimizationSuggestion,
    PerformanceBaseline,
    TuningStatus,
    parse_target,
    target_label,
)

logger = logging.getLogger("configflow.store")

SCHEMA_VERSION = "1"

# Migration functions keyed by target version; each migrates from (version - 1).
_MIGRATIONS: dict[str, callable] = {}

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS configflow_meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS snapshots (
    snapshot_id       TEXT PRIMARY KEY,
    timestamp         TEXT NOT NULL,
    cpu_percent       REAL NOT NULL,
    memory_percent    REAL NOT NULL,
    process_memory_mb REAL NOT NULL DEFAULT 0.0,
    config_hash       TEXT NOT NULL DEFAULT '',
    pid               INTEGER
);
CREATE INDEX IF NOT EXISTS idx_snapshots_time ON snapshots(timestamp);

CREATE TABLE IF NOT EXISTS change_events (
    change_id    TEXT PRIMARY KEY,
    timestamp    TEXT NOT NULL,
    config_file  TEXT NOT NULL,
    change_kind  TEXT NOT NULL,
    config_hash  TEXT NOT NULL,
    parameter    TEXT
);
CREATE INDEX IF NOT EXISTS idx_changes_time ON change_events(timestamp);

CREATE TABLE IF NOT EXISTS baselines (
    config_hash   TEXT PRIMARY KEY,
    avg_cpu       REAL NOT NULL,
    max_cpu       REAL NOT NULL,
    avg_memory    REAL NOT NULL,
    max_memory    REAL NOT NULL,
    sample_count  INTEGER NOT NULL,
    stability     REAL NOT NULL,
    computed_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS analyses (
    change_id        TEXT PRIMARY KEY REFERENCES change_events(change_id),
    config_file      TEXT NOT NULL,
    parameter        TEXT,
    impact_score     REAL NOT NULL,
    confidence       REAL NOT NULL,
    cpu_delta        REAL NOT NULL,
    memory_delta     REAL NOT NULL,
    stability_delta  REAL NOT NULL,
    evidence         TEXT NOT NULL DEFAULT '[]',
    recommendation   TEXT NOT NULL,
    analyzed_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS suggestions (
    suggestion_id    TEXT PRIMARY KEY,
    priority         TEXT NOT NULL,
    category         TEXT NOT NULL,
    target           TEXT NOT NULL,
    parameter        TEXT NOT NULL,
    current_value    TEXT,
    suggested_value  TEXT,
    expected_impact  TEXT NOT NULL,
    confidence       REAL NOT NULL,
    risk_level       TEXT NOT NULL,
    rollback_plan    TEXT NOT NULL,
    reasoning        TEXT NOT NULL DEFAULT '[]',
    estimated_gain   TEXT NOT NULL DEFAULT '{}',
    created_at       TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_suggestions_time ON suggestions(created_at);

CREATE TABLE IF NOT EXISTS sessions (
    session_id            TEXT PRIMARY KEY,
    suggestion_id         TEXT NOT NULL,
    target                TEXT NOT NULL,
    parameter             TEXT NOT NULL,
    original_value        TEXT,
    new_value             TEXT,
    status                TEXT NOT NULL,
    started_at            TEXT NOT NULL,
    backup_id             TEXT,
    pre_change_metrics    TEXT,
    post_change_metrics   TEXT,
    improvement_measured  REAL,
    rollback_reason       TEXT,
    ended_at              TEXT,
    due_at                TEXT
);
CREATE INDEX IF NOT EXISTS idx_sessions_status ON sessions(status);
"""


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _parse_dt(s: str | None) -> datetime | None:
    if s is None:
        return None
    return datetime.fromisoformat(s)


def _dump(value: Any) -> str:
    return json.dumps(value, default=str)


def _summary_to_json(m: MetricsSummary | None) -> str | None:
    if m is None:
        return None
    return json.dumps(
        {
            "avg_cpu": m.avg_cpu,
            "avg_memory": m.avg_memory,
            "stability": m.stability,
            "sample_count": m.sample_count,
        }
    )


def _summary_from_json(s: str | None) -> MetricsSummary | None:
    if s is None:
        return None
    return MetricsSummary(**json.loads(s))


def _row_to_snapshot(r: sqlite3.Row) -> MetricsSnapshot:
    return MetricsSnapshot(
        snapshot_id=r["snapshot_id"],
        timestamp=datetime.fromisoformat(r["timestamp"]),
        cpu_percent=r["cpu_percent"],
        memory_percent=r["memory_percent"],
        process_memory_mb=r["process_memory_mb"],
        config_hash=r["config_hash"],
        pid=r["pid"],
    )


def _row_to_suggestion(r: sqlite3.Row) -> OptimizationSuggestion:
    return OptimizationSuggestion(
        suggestion_id=r["suggestion_id"],
        priority=r["priority"],
        category=r["category"],
        target=parse_target(r["target"]),
        parameter=r["parameter"],
        current_value=json.loads(r["current_value"]),
        suggested_value=json.loads(r["suggested_value"]),
        expected_impact=r["expected_impact"],
        confidence=r["confidence"],
        risk_level=r["risk_level"],
        rollback_plan=r["rollback_plan"],
        reasoning=tuple(json.loads(r["reasoning"])),
        estimated_gain=json.loads(r["estimated_gain"]),
        created_at=datetime.fromisoformat(r["created_at"]),
    )


def _row_to_session(r: sqlite3.Row) -> AutoTuningSession:
    return AutoTuningSession(
        session_id=r["session_id"],
        suggestion_id=r["suggestion_id"],
        target=parse_target(r["target"]),
        parameter=r["parameter"],
        original_value=json.loads(r["original_value"]),
        new_value=json.loads(r["new_value"]),
        status=TuningStatus(r["status"]),
        started_at=datetime.fromisoformat(r["started_at"]),
        backup_id=r["backup_id"],
        pre_change_metrics=_summary_from_json(r["pre_change_metrics"]),
        post_change_metrics=_summary_from_json(r["post_change_metrics"]),
        improvement_measured=r["improvement_measured"],
        rollback_reason=r["rollback_reason"],
        ended_at=_parse_dt(r["ended_at"]),
        due_at=_parse_dt(r["due_at"]),
    )


class ConfigflowStore:
    """SQLite-backed store for configflow runtime data."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> ConfigflowStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA_SQL)
        self._ensure_schema_version()
        self._run_migrations()

    def _ensure_schema_version(self) -> None:
        cur = self.conn.execute(
            "SELECT value FROM configflow_meta WHERE key='schema_version'"
        )
        if cur.fetchone() is None:
            self.conn.execute(
                "INSERT INTO configflow_meta(key, value) VALUES ('schema_version', ?)",
                (SCHEMA_VERSION,),
            )
            self.conn.commit()

    def _run_migrations(self) -> None:
        current = self.get_meta("schema_version") or "0"
        if current == SCHEMA_VERSION:
            return

        for version_num in range(int(current) + 1, int(SCHEMA_VERSION) + 1):
            version_key = str(version_num)
            migrate_fn = _MIGRATIONS.get(version_key)
            if migrate_fn is None:
                raise RuntimeError(f"Missing migration for schema version {version_key}")
            logger.info("Migrating store schema to version %s", version_key)
            migrate_fn(self.conn)
            self.set_meta("schema_version", version_key)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Store is not open")
        return self._conn

    # --- Snapshots ---

    def save_snapshots(self, snapshots: Iterable[MetricsSnapshot]) -> int:
        rows = [
            (
                s.snapshot_id,
                _iso(s.timestamp),
                s.cpu_percent,
                s.memory_percent,
                s.process_memory_mb,
                s.config_hash,
                s.pid,
            )
            for s in snapshots
        ]
        if not rows:
            return 0
        self.conn.executemany(
            """INSERT OR IGNORE INTO snapshots(snapshot_id, timestamp, cpu_percent,
               memory_percent, process_memory_mb, config_hash, pid)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        self.conn.commit()
        return len(rows)

    def list_snapshots(self, limit: int = 100) -> list[MetricsSnapshot]:
        """Most recent snapshots, oldest first."""
        cur = self.conn.execute(
            "SELECT * FROM snapshots ORDER BY timestamp DESC LIMIT ?", (limit,)
        )
        return [_row_to_snapshot(r) for r in reversed(cur.fetchall())]

    def prune_snapshots(self, before: datetime) -> int:
        cur = self.conn.execute("DELETE FROM snapshots WHERE timestamp < ?", (_iso(before),))
        self.conn.commit()
        return cur.rowcount

    # --- Change events ---

    def save_change_event(self, event: ConfigChangeEvent) -> None:
        self.conn.execute(
            """INSERT OR IGNORE INTO change_events(change_id, timestamp, config_file,
               change_kind, config_hash, parameter)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                event.change_id,
                _iso(event.timestamp),
                event.config_file,
                event.change_kind.value,
                event.config_hash,
                event.parameter,
            ),
        )
        self.conn.commit()

    def list_change_events(self, limit: int = 50) -> list[ConfigChangeEvent]:
        cur = self.conn.execute(
            "SELECT * FROM change_events ORDER BY timestamp DESC LIMIT ?", (limit,)
        )
        return [
            ConfigChangeEvent(
                change_id=r["change_id"],
                timestamp=datetime.fromisoformat(r["timestamp"]),
                config_file=r["config_file"],
                change_kind=ChangeKind(r["change_kind"]),
                config_hash=r["config_hash"],
                parameter=r["parameter"],
            )
            for r in cur.fetchall()
        ]

    # --- Baselines ---

    def upsert_baselines(self, baselines: Iterable[PerformanceBaseline]) -> int:
        rows = [
            (
                b.config_hash,
                b.avg_cpu,
                b.max_cpu,
                b.avg_memory,
                b.max_memory,
                b.sample_count,
                b.stability,
                _iso(b.computed_at),
            )
            for b in baselines
        ]
        if not rows:
            return 0
        self.conn.executemany(
            """INSERT OR REPLACE INTO baselines(config_hash, avg_cpu, max_cpu, avg_memory,
               max_memory, sample_count, stability, computed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        self.conn.commit()
        return len(rows)

    def list_baselines(self) -> list[PerformanceBaseline]:
        cur = self.conn.execute("SELECT * FROM baselines ORDER BY computed_at DESC")
        return [
            PerformanceBaseline(
                config_hash=r["config_hash"],
                avg_cpu=r["avg_cpu"],
                max_cpu=r["max_cpu"],
                avg_memory=r["avg_memory"],
                max_memory=r["max_memory"],
                sample_count=r["sample_count"],
                stability=r["stability"],
                computed_at=datetime.fromisoformat(r["computed_at"]),
            )
            for r in cur.fetchall()
        ]

    # --- Analyses ---

    def save_analyses(self, analyses: Iterable[ImpactAnalysis]) -> int:
        rows = [
            (
                a.change_id,
                a.config_file,
                a.parameter,
                a.impact_score,
                a.confidence,
                a.cpu_delta,
                a.memory_delta,
                a.stability_delta,
                json.dumps(list(a.evidence)),
                a.recommendation,
                _iso(a.analyzed_at),
            )
            for a in analyses
        ]
        if not rows:
            return 0
        self.conn.executemany(
            """INSERT OR IGNORE INTO analyses(change_id, config_file, parameter, impact_score,
               confidence, cpu_delta, memory_delta, stability_delta, evidence,
               recommendation, analyzed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        self.conn.commit()
        return len(rows)

    def list_analyses(self, limit: int = 50) -> list[ImpactAnalysis]:
        cur = self.conn.execute(
            "SELECT * FROM analyses ORDER BY analyzed_at DESC LIMIT ?", (limit,)
        )
        return [
            ImpactAnalysis(
                change_id=r["change_id"],
                config_file=r["config_file"],
                parameter=r["parameter"],
                impact_score=r["impact_score"],
                confidence=r["confidence"],
                cpu_delta=r["cpu_delta"],
                memory_delta=r["memory_delta"],
                stability_delta=r["stability_delta"],
                evidence=tuple(json.loads(r["evidence"])),
                recommendation=r["recommendation"],
                analyzed_at=datetime.fromisoformat(r["analyzed_at"]),
            )
            for r in cur.fetchall()
        ]

    # --- Suggestions ---

    def save_suggestions(self, suggestions: Iterable[OptimizationSuggestion]) -> int:
        rows = [
            (
                s.suggestion_id,
                s.priority.value,
                s.category.value,
                target_label(s.target),
                s.parameter,
                _dump(s.current_value),
                _dump(s.suggested_value),
                s.expected_impact,
                s.confidence,
                s.risk_level.value,
                s.rollback_plan,
                json.dumps(list(s.reasoning)),
                json.dumps(s.estimated_gain),
                _iso(s.created_at),
            )
            for s in suggestions
        ]
        if not rows:
            return 0
        self.conn.executemany(
            """INSERT OR IGNORE INTO suggestions(suggestion_id, priority, category, target,
               parameter, current_value, suggested_value, expected_impact, confidence,
               risk_level, rollback_plan, reasoning, estimated_gain, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        self.conn.commit()
        return len(rows)

    def list_suggestions(
        self,
        priority: str | None = None,
        category: str | None = None,
        limit: int = 50,
    ) -> list[OptimizationSuggestion]:
        sql = "SELECT * FROM suggestions WHERE 1=1"
        params: list = []
        if priority:
            sql += " AND priority = ?"
            params.append(priority)
        if category:
            sql += " AND category = ?"
            params.append(category)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        cur = self.conn.execute(sql, params)
        return [_row_to_suggestion(r) for r in cur.fetchall()]

    # --- Sessions ---

    def save_sessions(self, sessions: Iterable[AutoTuningSession]) -> int:
        rows = [
            (
                s.session_id,
                s.suggestion_id,
                target_label(s.target),
                s.parameter,
                _dump(s.original_value),
                _dump(s.new_value),
                s.status.value,
                _iso(s.started_at),
                s.backup_id,
                _summary_to_json(s.pre_change_metrics),
                _summary_to_json(s.post_change_metrics),
                s.improvement_measured,
                s.rollback_reason,
                _iso(s.ended_at),
                _iso(s.due_at),
            )
            for s in sessions
        ]
        if not rows:
            return 0
        self.conn.executemany(
            """INSERT OR REPLACE INTO sessions(session_id, suggestion_id, target, parameter,
               original_value, new_value, status, started_at, backup_id, pre_change_metrics,
               post_change_metrics, improvement_measured, rollback_reason, ended_at, due_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        self.conn.commit()
        return len(rows)

    def get_session(self, session_id: str) -> AutoTuningSession | None:
        # Prefix match so operators can paste a short id
        cur = self.conn.execute(
            "SELECT * FROM sessions WHERE session_id LIKE ? ORDER BY started_at DESC LIMIT 1",
            (session_id + "%",),
        )
        row = cur.fetchone()
        return _row_to_session(row) if row else None

    def list_sessions(self, status: str | None = None, limit: int = 50) -> list[AutoTuningSession]:
        """``limit=-1`` returns every row."""
        if status:
            cur = self.conn.execute(
                "SELECT * FROM sessions WHERE status=? ORDER BY started_at DESC LIMIT ?",
                (status, limit),
            )
        else:
            cur = self.conn.execute(
                "SELECT * FROM sessions ORDER BY started_at DESC LIMIT ?", (limit,)
            )
        return [_row_to_session(r) for r in cur.fetchall()]

    def count(self, table: str) -> int:
        if table not in ("snapshots", "change_events", "baselines", "analyses", "suggestions", "sessions"):
            raise ValueError(f"Unknown table: {table}")
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    # --- Meta ---

    def get_meta(self, key: str) -> str | None:
        cur = self.conn.execute("SELECT value FROM configflow_meta WHERE key=?", (key,))
        row = cur.fetchone()
        return row[0] if row else None

    def set_meta(self, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO configflow_meta(key, value) VALUES (?, ?)",
            (key, value),
        )
        self.conn.commit()
