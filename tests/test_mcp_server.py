"""Tests for MCP server tool functions."""

from datetime import datetime, timezone

import pytest

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestMcpToolsDirect:
    """Test the core logic that MCP tools use, without requiring mcp package."""

    def test_status_flow(self, tmp_path):
        from configflow.core.store import ConfigflowStore
        from configflow.mcp.server import read_status

        with ConfigflowStore(tmp_path / "test.db") as store:
            store.set_meta("started_at", T0.isoformat())
            store.set_meta("tuning_enabled", "false")
            out = read_status(store)

        assert T0.isoformat() in out
        assert "**Auto-tuning:** disabled" in out
        assert "| change_events | 0 |" in out
        assert "| Completed sessions | 0 |" in out

    def test_analyses_flow(self, tmp_path):
        from configflow.core.store import ConfigflowStore
        from configflow.mcp.formatters import format_analyses
        from configflow.models import ChangeKind, ConfigChangeEvent, ImpactAnalysis

        with ConfigflowStore(tmp_path / "test.db") as store:
            store.save_change_event(
                ConfigChangeEvent(
                    change_id="c1",
                    timestamp=T0,
                    config_file="app.json",
                    change_kind=ChangeKind.MODIFIED,
                    config_hash="abc",
                )
            )
            store.save_analyses(
                [
                    ImpactAnalysis(
                        change_id="c1",
                        config_file="app.json",
                        impact_score=0.42,
                        confidence=0.9,
                        cpu_delta=-30.0,
                        memory_delta=-20.0,
                        stability_delta=0.1,
                        evidence=("CPU usage decreased by 30.00%",),
                        recommendation="Positive impact detected.",
                    )
                ]
            )
            analyses = store.list_analyses(limit=20)

        out = format_analyses(analyses)
        assert "app.json" in out
        assert "decreased by 30.00%" in out

    def test_sessions_flow(self, tmp_path):
        from configflow.core.store import ConfigflowStore
        from configflow.core.tuner import session_stats
        from configflow.mcp.formatters import format_sessions, format_stats
        from configflow.models import AutoTuningSession, RealFile, TuningStatus

        with ConfigflowStore(tmp_path / "test.db") as store:
            store.save_sessions(
                [
                    AutoTuningSession(
                        session_id="session_a",
                        suggestion_id="opt_1",
                        target=RealFile("app.json"),
                        parameter="db.pool",
                        original_value=10,
                        new_value=8,
                        status=TuningStatus.SUCCESSFUL,
                        started_at=T0,
                        improvement_measured=3.5,
                    )
                ]
            )
            sessions = store.list_sessions(status="successful", limit=20)
            stats = session_stats(store.list_sessions(limit=-1))

        assert "session_a" in format_sessions(sessions)
        assert "| Avg improvement | 3.50 |" in format_stats(stats)


class TestCreateServer:
    def test_builds_server(self, tmp_path):
        pytest.importorskip("mcp")
        from configflow.config import ConfigflowConfig
        from configflow.mcp.server import create_server

        server = create_server(ConfigflowConfig(project_path=tmp_path))
        assert server.name == "configflow"
