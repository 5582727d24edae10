"""Tests for ConfigflowConfig."""

from datetime import timedelta

import pytest

from configflow.config import (
    AnalysisConfig,
    ConfigflowConfig,
    MetricsConfig,
    ScheduleConfig,
    StoreConfig,
    TuningConfig,
)
from configflow.models.enums import RiskLevel


class TestDefaults:
    def test_store_defaults(self):
        assert StoreConfig().db_name == "configflow.db"

    def test_analysis_defaults(self):
        c = AnalysisConfig()
        assert c.min_sample_size == 5
        assert c.stability_threshold == 0.15
        assert c.significance_threshold == 0.05
        assert c.analysis_window == timedelta(minutes=5)

    def test_tuning_defaults(self):
        c = TuningConfig()
        assert c.enabled is True
        assert c.safety_mode is True
        assert c.max_concurrent_changes == 1
        assert c.rollback_timeout == timedelta(minutes=5)
        assert c.approval_required is False
        assert c.risk_threshold == "low"
        assert c.test_duration == timedelta(minutes=2)
        assert c.backup_retention_days == 7

    def test_metrics_defaults(self):
        c = MetricsConfig()
        assert c.interval_seconds == 10.0
        assert c.pid is None

    def test_schedule_defaults(self):
        c = ScheduleConfig()
        assert c.analysis_seconds == 30.0
        assert c.tuning_seconds == 120.0


class TestTuningGates:
    def test_invalid_risk_threshold(self):
        with pytest.raises(ValueError):
            TuningConfig(risk_threshold="extreme")

    def test_negative_concurrency(self):
        with pytest.raises(ValueError):
            TuningConfig(max_concurrent_changes=-1)

    def test_safety_mode_caps_risk_and_concurrency(self):
        c = TuningConfig(safety_mode=True, risk_threshold="high", max_concurrent_changes=4)
        assert c.effective_risk_threshold is RiskLevel.LOW
        assert c.effective_max_concurrent == 1
        assert c.safety_overrides() == [
            "risk_threshold=high capped to low",
            "max_concurrent_changes=4 capped to 1",
        ]

    def test_safety_off_uses_configured_values(self):
        c = TuningConfig(safety_mode=False, risk_threshold="medium", max_concurrent_changes=3)
        assert c.effective_risk_threshold is RiskLevel.MEDIUM
        assert c.effective_max_concurrent == 3
        assert c.safety_overrides() == []

    def test_defaults_are_not_overridden(self):
        assert TuningConfig().safety_overrides() == []

    def test_zero_concurrency_stays_zero(self):
        assert TuningConfig(max_concurrent_changes=0).effective_max_concurrent == 0


class TestConfigflowConfig:
    def test_properties(self, tmp_path):
        config = ConfigflowConfig(project_path=tmp_path)
        assert config.configflow_dir == tmp_path / ".configflow"
        assert config.db_path == tmp_path / ".configflow" / "configflow.db"
        assert config.backup_dir == tmp_path / ".configflow" / "backups"
        assert config.watch_path == tmp_path.resolve()

    def test_load_defaults(self, tmp_path):
        config = ConfigflowConfig.load(tmp_path)
        assert config.store.db_name == "configflow.db"
        assert config.project_path == tmp_path
        assert config.mcp.default_query_limit == 20

    def test_load_from_toml(self, tmp_path):
        cf_dir = tmp_path / ".configflow"
        cf_dir.mkdir()
        (cf_dir / "config.toml").write_text(
            '[store]\ndb_name = "custom.db"\n'
            "[analysis]\nmin_sample_size = 8\n"
            '[tuning]\nsafety_mode = false\nrisk_threshold = "medium"\n'
            '[watch]\npath = "conf"\n'
        )
        config = ConfigflowConfig.load(tmp_path)
        assert config.store.db_name == "custom.db"
        assert config.analysis.min_sample_size == 8
        assert config.tuning.safety_mode is False
        assert config.tuning.effective_risk_threshold is RiskLevel.MEDIUM
        assert config.watch_path == (tmp_path / "conf").resolve()

    def test_invalid_toml_risk_rejected(self, tmp_path):
        cf_dir = tmp_path / ".configflow"
        cf_dir.mkdir()
        (cf_dir / "config.toml").write_text('[tuning]\nrisk_threshold = "yolo"\n')
        with pytest.raises(ValueError):
            ConfigflowConfig.load(tmp_path)

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CONFIGFLOW_DB_NAME", "env.db")
        monkeypatch.setenv("CONFIGFLOW_APPROVAL_REQUIRED", "yes")
        config = ConfigflowConfig.load(tmp_path)
        assert config.store.db_name == "env.db"
        assert config.tuning.approval_required is True

    def test_env_overrides_toml(self, tmp_path, monkeypatch):
        cf_dir = tmp_path / ".configflow"
        cf_dir.mkdir()
        (cf_dir / "config.toml").write_text("[tuning]\ntest_duration_seconds = 60\n")
        monkeypatch.setenv("CONFIGFLOW_TEST_DURATION_SECONDS", "5")
        config = ConfigflowConfig.load(tmp_path)
        assert config.tuning.test_duration_seconds == 5.0

    def test_watch_env_does_not_touch_tuning(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CONFIGFLOW_WATCH_ENABLED", "false")
        config = ConfigflowConfig.load(tmp_path)
        assert config.watch.enabled is False
        assert config.tuning.enabled is True
