"""Layered configuration: .configflow/config.toml -> CONFIGFLOW_* env vars -> defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

from configflow.models.enums import RiskLevel

try:
    import tomllib  # 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """SQLite store settings."""

    db_name: str = "configflow.db"


@dataclass(frozen=True, slots=True)
class AnalysisConfig:
    """Impact analysis thresholds."""

    min_sample_size: int = 5
    stability_threshold: float = 0.15
    significance_threshold: float = 0.05
    analysis_window_seconds: float = 300.0

    @property
    def analysis_window(self) -> timedelta:
        return timedelta(seconds=self.analysis_window_seconds)


@dataclass(frozen=True, slots=True)
class TuningConfig:
    """Auto-tuning safety gates."""

    enabled: bool = True
    safety_mode: bool = True
    max_concurrent_changes: int = 1
    rollback_timeout_seconds: float = 300.0
    approval_required: bool = False
    risk_threshold: str = "low"
    test_duration_seconds: float = 120.0
    backup_retention_days: int = 7

    def __post_init__(self) -> None:
        RiskLevel(self.risk_threshold)
        if self.max_concurrent_changes < 0:
            raise ValueError("max_concurrent_changes must be >= 0")

    @property
    def test_duration(self) -> timedelta:
        return timedelta(seconds=self.test_duration_seconds)

    @property
    def rollback_timeout(self) -> timedelta:
        return timedelta(seconds=self.rollback_timeout_seconds)

    @property
    def effective_risk_threshold(self) -> RiskLevel:
        if self.safety_mode:
            return RiskLevel.LOW
        return RiskLevel(self.risk_threshold)

    @property
    def effective_max_concurrent(self) -> int:
        if self.safety_mode:
            return min(1, self.max_concurrent_changes)
        return self.max_concurrent_changes

    def safety_overrides(self) -> list[str]:
        """Configured values that safety mode is currently capping."""
        if not self.safety_mode:
            return []
        capped = []
        if RiskLevel(self.risk_threshold) is not RiskLevel.LOW:
            capped.append(f"risk_threshold={self.risk_threshold} capped to low")
        if self.max_concurrent_changes > 1:
            capped.append(f"max_concurrent_changes={self.max_concurrent_changes} capped to 1")
        return capped


@dataclass(frozen=True, slots=True)
class MetricsConfig:
    """Metrics sampling settings."""

    interval_seconds: float = 10.0
    retention_seconds: float = 24 * 60 * 60
    pid: int | None = None
    cpu_sample_interval: float = 0.0


@dataclass(frozen=True, slots=True)
class ScheduleConfig:
    """Periodic tick intervals, in seconds."""

    analysis_seconds: float = 30.0
    suggestion_seconds: float = 75.0
    tuning_seconds: float = 120.0
    status_seconds: float = 120.0
    housekeeping_seconds: float = 3600.0


@dataclass(frozen=True, slots=True)
class WatchConfig:
    """Configuration file discovery settings."""

    path: str = "."
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class McpConfig:
    """MCP server defaults."""

    default_query_limit: int = 20


@dataclass(frozen=True, slots=True)
class ConfigflowConfig:
    """Top-level configuration container."""

    project_path: Path = field(default_factory=Path.cwd)
    store: StoreConfig = field(default_factory=StoreConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    tuning: TuningConfig = field(default_factory=TuningConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    mcp: McpConfig = field(default_factory=McpConfig)

    @property
    def configflow_dir(self) -> Path:
        return self.project_path / ".configflow"

    @property
    def db_path(self) -> Path:
        return self.configflow_dir / self.store.db_name

    @property
    def backup_dir(self) -> Path:
        return self.configflow_dir / "backups"

    @property
    def watch_path(self) -> Path:
        return (self.project_path / self.watch.path).resolve()

    @classmethod
    def load(cls, project_path: Path | None = None) -> ConfigflowConfig:
        """Load config with layering: TOML file -> env vars -> defaults."""
        project = Path(project_path) if project_path else Path.cwd()
        toml_path = project / ".configflow" / "config.toml"

        toml_data: dict = {}
        if toml_path.is_file():
            with open(toml_path, "rb") as f:
                toml_data = tomllib.load(f)

        # Use instance defaults (slots=True prevents class-level attribute access)
        store = _build(StoreConfig, "store", toml_data, {"db_name": str})
        analysis = _build(
            AnalysisConfig,
            "analysis",
            toml_data,
            {
                "min_sample_size": int,
                "stability_threshold": float,
                "significance_threshold": float,
                "analysis_window_seconds": float,
            },
        )
        tuning = _build(
            TuningConfig,
            "tuning",
            toml_data,
            {
                "enabled": _to_bool,
                "safety_mode": _to_bool,
                "max_concurrent_changes": int,
                "rollback_timeout_seconds": float,
                "approval_required": _to_bool,
                "risk_threshold": str,
                "test_duration_seconds": float,
                "backup_retention_days": int,
            },
        )
        metrics = _build(
            MetricsConfig,
            "metrics",
            toml_data,
            {
                "interval_seconds": float,
                "retention_seconds": float,
                "pid": int,
                "cpu_sample_interval": float,
            },
        )
        schedule = _build(
            ScheduleConfig,
            "schedule",
            toml_data,
            {
                "analysis_seconds": float,
                "suggestion_seconds": float,
                "tuning_seconds": float,
                "status_seconds": float,
                "housekeeping_seconds": float,
            },
        )
        watch = _build(
            WatchConfig,
            "watch",
            toml_data,
            {"path": str, "enabled": _to_bool},
            env_prefix="WATCH_",
        )
        mcp = _build(McpConfig, "mcp", toml_data, {"default_query_limit": int})

        return cls(
            project_path=project,
            store=store,
            analysis=analysis,
            tuning=tuning,
            metrics=metrics,
            schedule=schedule,
            watch=watch,
            mcp=mcp,
        )


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _build(
    cls: type,
    section: str,
    toml_data: dict,
    casts: dict[str, Callable[[Any], Any]],
    env_prefix: str = "",
) -> Any:
    """Resolve each field from CONFIGFLOW_<PREFIX><FIELD>, then [section] in TOML, then the default."""
    defaults = cls()
    section_data = toml_data.get(section, {})
    values: dict[str, Any] = {}
    for name, cast in casts.items():
        env_key = f"CONFIGFLOW_{env_prefix}{name.upper()}"
        if env_key in os.environ:
            values[name] = cast(os.environ[env_key])
        elif name in section_data:
            values[name] = cast(section_data[name])
        else:
            values[name] = getattr(defaults, name)
    return cls(**values)
