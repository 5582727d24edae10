"""Tests for markdown formatters."""

from datetime import datetime, timezone

from configflow.mcp.formatters import (
    format_analyses,
    format_analysis,
    format_baselines,
    format_changes,
    format_sessions,
    format_stats,
    format_status,
    format_suggestions,
)
from configflow.models import (
    AutoTuningSession,
    ChangeKind,
    ConfigChangeEvent,
    ImpactAnalysis,
    OptimizationSuggestion,
    PerformanceBaseline,
    RealFile,
    TuningStats,
    TuningStatus,
    VirtualKind,
    VirtualTarget,
)


def _now():
    return datetime.now(timezone.utc)


def _analysis(score=-0.04):
    return ImpactAnalysis(
        change_id="c1",
        config_file="app.json",
        impact_score=score,
        confidence=0.35,
        cpu_delta=10.0,
        memory_delta=0.0,
        stability_delta=0.0,
        evidence=("CPU usage increased by 10.00%",),
        recommendation="Minimal impact detected.",
    )


class TestEmptyStates:
    def test_messages(self):
        assert "No configuration changes recorded." in format_changes([])
        assert "No impact analyses yet." in format_analyses([])
        assert "No baselines computed yet." in format_baselines([])
        assert "No suggestions." in format_suggestions([])
        assert "No tuning sessions." in format_sessions([])

    def test_session_title(self):
        assert format_sessions([], "Active").startswith("## Active")


class TestFormatAnalysis:
    def test_signs_and_evidence(self):
        out = format_analysis(_analysis())
        assert "### app.json" in out
        assert "-0.040" in out
        assert "+10.00%" in out
        assert "35.0%" in out
        assert "- CPU usage increased by 10.00%" in out
        assert "*Minimal impact detected.*" in out

    def test_many_separated(self):
        out = format_analyses([_analysis(), _analysis(0.5)])
        assert out.count("### app.json") == 2
        assert "---" in out
        assert "+0.500" in out


class TestTables:
    def test_changes(self):
        e = ConfigChangeEvent(
            change_id="c1",
            timestamp=_now(),
            config_file="conf/app.yaml",
            change_kind=ChangeKind.ADDED,
            config_hash="0123456789abcdef",
        )
        out = format_changes([e])
        assert "| added | conf/app.yaml |" in out
        assert "`0123456789ab`" in out

    def test_baselines(self):
        b = PerformanceBaseline(
            config_hash="H1",
            avg_cpu=12.345,
            max_cpu=20,
            avg_memory=40,
            max_memory=50,
            sample_count=7,
            stability=0.91234,
        )
        out = format_baselines([b])
        assert "12.3%" in out
        assert "0.912" in out

    def test_suggestions(self):
        s = OptimizationSuggestion(
            suggestion_id="opt_1",
            priority="high",
            category="memory",
            target=VirtualTarget(VirtualKind.SYSTEM),
            parameter="memory_management",
            current_value="90.0%",
            suggested_value="optimized_memory_settings",
            expected_impact="Reduce memory usage by 10-20%",
            confidence=0.8,
            risk_level="medium",
            rollback_plan="Increase limits",
            reasoning=("Current memory usage is 90.0% (high)",),
        )
        out = format_suggestions([s])
        assert "**[HIGH]** memory" in out
        assert "`system`" in out
        assert "risk medium" in out
        assert "  - Current memory usage is 90.0% (high)" in out

    def test_sessions(self):
        s = AutoTuningSession(
            session_id="session_0123456789abcdef",
            suggestion_id="opt_1",
            target=RealFile("app.json"),
            parameter="db.pool",
            original_value=10,
            new_value=8,
            status=TuningStatus.ROLLED_BACK,
            rollback_reason="Validation error",
        )
        out = format_sessions([s])
        assert "rolled_back" in out
        assert "10 -> 8" in out
        assert "| - | Validation error |" in out


class TestStatus:
    def test_status_and_stats(self):
        stats = TuningStats(total=4, successful=3, rolled_back=1, success_rate=75.0, avg_improvement=5.5)
        out = format_status(
            {"started_at": "2026-01-01T12:00:00+00:00", "last_tick_at": None, "tuning_enabled": "true"},
            {"sessions": 4},
            stats,
        )
        assert "**Last tick:** never" in out
        assert "**Auto-tuning:** enabled" in out
        assert "| sessions | 4 |" in out
        assert "| Success rate | 75.0% |" in out

    def test_stats_empty(self):
        out = format_stats(TuningStats())
        assert "| Completed sessions | 0 |" in out
        assert "| Avg improvement | 0.00 |" in out
