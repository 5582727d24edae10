"""Tests for ConfigflowStore."""

import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from configflow.core.store import SCHEMA_VERSION, ConfigflowStore
from configflow.models import (
    AutoTuningSession,
    ChangeKind,
    ConfigChangeEvent,
    ImpactAnalysis,
    MetricsSnapshot,
    MetricsSummary,
    OptimizationSuggestion,
    PerformanceBaseline,
    RealFile,
    TuningStatus,
    VirtualKind,
    VirtualTarget,
)

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    with ConfigflowStore(tmp_path / "test.db") as s:
        yield s


def _snap(i):
    return MetricsSnapshot(
        snapshot_id=f"s{i}",
        timestamp=T0 + timedelta(seconds=10 * i),
        cpu_percent=float(i),
        memory_percent=50.0,
        config_hash="H1",
        pid=42,
    )


def _event(change_id="c1"):
    return ConfigChangeEvent(
        change_id=change_id,
        timestamp=T0,
        config_file="app.json",
        change_kind=ChangeKind.MODIFIED,
        config_hash="abc",
    )


def _analysis(change_id="c1"):
    return ImpactAnalysis(
        change_id=change_id,
        config_file="app.json",
        impact_score=-0.04,
        confidence=0.35,
        cpu_delta=10.0,
        memory_delta=0.0,
        stability_delta=0.0,
        evidence=("CPU usage increased by 10.00%",),
        recommendation="Minimal impact detected.",
        analyzed_at=T0,
    )


def _suggestion(sid="opt_1", priority="high", category="memory", created=T0):
    return OptimizationSuggestion(
        suggestion_id=sid,
        priority=priority,
        category=category,
        target=VirtualTarget(VirtualKind.SYSTEM),
        parameter="memory_management",
        current_value="90.0%",
        suggested_value={"cache": 64},
        expected_impact="Reduce memory usage by 10-20%",
        confidence=0.8,
        risk_level="medium",
        rollback_plan="Increase limits",
        reasoning=("High memory",),
        estimated_gain={"memory": 15},
        created_at=created,
    )


def _session(sid="session_abc123", status=TuningStatus.TESTING, started=T0):
    return AutoTuningSession(
        session_id=sid,
        suggestion_id="opt_1",
        target=RealFile("/srv/app.json"),
        parameter="db.pool",
        original_value=10,
        new_value=8,
        status=status,
        started_at=started,
        backup_id="backup_1",
        pre_change_metrics=MetricsSummary(avg_cpu=50, avg_memory=60, stability=1.0, sample_count=5),
        due_at=started + timedelta(minutes=2),
    )


class TestSchema:
    def test_schema_version(self, store):
        assert store.get_meta("schema_version") == SCHEMA_VERSION

    def test_reopen_is_idempotent(self, tmp_path):
        with ConfigflowStore(tmp_path / "x.db") as s:
            s.set_meta("started_at", "now")
        with ConfigflowStore(tmp_path / "x.db") as s:
            assert s.get_meta("started_at") == "now"

    def test_closed_store(self, tmp_path):
        s = ConfigflowStore(tmp_path / "x.db")
        with pytest.raises(RuntimeError):
            s.conn

    def test_count_whitelist(self, store):
        with pytest.raises(ValueError):
            store.count("configflow_meta; DROP TABLE sessions")


class TestSnapshots:
    def test_save_and_list_oldest_first(self, store):
        store.save_snapshots([_snap(i) for i in range(5)])
        snaps = store.list_snapshots(limit=3)
        assert [s.snapshot_id for s in snaps] == ["s2", "s3", "s4"]
        assert snaps[0].timestamp == T0 + timedelta(seconds=20)
        assert snaps[0].pid == 42

    def test_duplicates_ignored(self, store):
        store.save_snapshots([_snap(1)])
        store.save_snapshots([_snap(1)])
        assert store.count("snapshots") == 1

    def test_prune(self, store):
        store.save_snapshots([_snap(i) for i in range(5)])
        assert store.prune_snapshots(T0 + timedelta(seconds=25)) == 3
        assert store.count("snapshots") == 2


class TestChangesAndAnalyses:
    def test_change_event(self, store):
        store.save_change_event(_event())
        [event] = store.list_change_events()
        assert event.change_kind is ChangeKind.MODIFIED
        assert event.timestamp == T0

    def test_analysis_requires_change(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            store.save_analyses([_analysis("missing")])

    def test_analysis_round_trip(self, store):
        store.save_change_event(_event())
        store.save_analyses([_analysis()])
        store.save_analyses([_analysis()])
        [a] = store.list_analyses()
        assert a.evidence == ("CPU usage increased by 10.00%",)
        assert a.impact_score == pytest.approx(-0.04)
        assert store.count("analyses") == 1


class TestBaselines:
    def test_upsert_replaces(self, store):
        b = PerformanceBaseline(
            config_hash="H1",
            avg_cpu=10,
            max_cpu=20,
            avg_memory=40,
            max_memory=50,
            sample_count=5,
            stability=0.9,
            computed_at=T0,
        )
        store.upsert_baselines([b])
        store.upsert_baselines([replace(b, avg_cpu=30.0)])
        [got] = store.list_baselines()
        assert got.avg_cpu == 30.0


class TestSuggestions:
    def test_round_trip(self, store):
        store.save_suggestions([_suggestion()])
        [s] = store.list_suggestions()
        assert s.target == VirtualTarget(VirtualKind.SYSTEM)
        assert s.suggested_value == {"cache": 64}
        assert s.reasoning == ("High memory",)
        assert s.estimated_gain == {"memory": 15}

    def test_filters(self, store):
        store.save_suggestions(
            [
                _suggestion("a", priority="high", category="memory"),
                _suggestion("b", priority="medium", category="memory", created=T0 + timedelta(seconds=1)),
                _suggestion("c", priority="medium", category="stability", created=T0 + timedelta(seconds=2)),
            ]
        )
        assert [s.suggestion_id for s in store.list_suggestions(priority="medium")] == ["c", "b"]
        assert [s.suggestion_id for s in store.list_suggestions(category="memory")] == ["b", "a"]
        assert [s.suggestion_id for s in store.list_suggestions("medium", "memory")] == ["b"]
        assert len(store.list_suggestions(limit=1)) == 1


class TestSessions:
    def test_upsert_tracks_transitions(self, store):
        session = _session()
        store.save_sessions([session])
        done = replace(
            session,
            status=TuningStatus.ROLLED_BACK,
            rollback_reason="CPU increased >10%",
            ended_at=T0 + timedelta(minutes=2),
        )
        store.save_sessions([done])

        [got] = store.list_sessions()
        assert got.status is TuningStatus.ROLLED_BACK
        assert got.rollback_reason == "CPU increased >10%"
        assert got.pre_change_metrics.sample_count == 5
        assert got.post_change_metrics is None
        assert got.target == RealFile("/srv/app.json")
        assert got.original_value == 10

    def test_get_by_prefix(self, store):
        store.save_sessions([_session()])
        assert store.get_session("session_abc").session_id == "session_abc123"
        assert store.get_session("session_zzz") is None

    def test_filter_by_status(self, store):
        store.save_sessions(
            [
                _session("s1", TuningStatus.SUCCESSFUL),
                _session("s2", TuningStatus.TESTING, started=T0 + timedelta(seconds=1)),
            ]
        )
        assert [s.session_id for s in store.list_sessions(status="testing")] == ["s2"]
        assert len(store.list_sessions(limit=-1)) == 2
