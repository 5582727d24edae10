"""FastMCP server factory exposing read-only configflow tools."""

from __future__ import annotations

import sqlite3

from configflow.config import ConfigflowConfig
from configflow.mcp.formatters import (
    format_analyses,
    format_baselines,
    format_sessions,
    format_stats,
    format_status,
    format_suggestions,
)

STATUS_TABLES = ("snapshots", "change_events", "baselines", "analyses", "suggestions", "sessions")


def read_status(store) -> str:
    """Render the status report from an open store."""
    from configflow.core.tuner import session_stats

    meta = {key: store.get_meta(key) for key in ("started_at", "last_tick_at", "tuning_enabled")}
    counts = {table: store.count(table) for table in STATUS_TABLES}
    return format_status(meta, counts, session_stats(store.list_sessions(limit=-1)))


def create_server(config: ConfigflowConfig | None = None):
    """Create and return a configured FastMCP server instance.

    Args:
        config: Optional pre-loaded config. If None, loads from cwd.
    """
    from mcp.server.fastmcp import FastMCP

    mcp = FastMCP("configflow", instructions="Configuration impact analysis and safe auto-tuning")
    _config = config or ConfigflowConfig.load()

    @mcp.tool()
    def configflow_status() -> str:
        """Summarise what the configflow daemon has recorded so far."""
        from configflow.core.store import ConfigflowStore

        try:
            with ConfigflowStore(_config.db_path) as store:
                return read_status(store)
        except (sqlite3.Error, OSError) as exc:
            return f"Error reading status: {exc}"

    @mcp.tool()
    def configflow_analyses(limit: int | None = None) -> str:
        """Impact analyses of recent configuration changes, newest first.

        Args:
            limit: Max analyses to return (default from config)
        """
        from configflow.core.store import ConfigflowStore

        limit_val = limit if limit is not None else _config.mcp.default_query_limit
        try:
            with ConfigflowStore(_config.db_path) as store:
                return format_analyses(store.list_analyses(limit=limit_val))
        except (sqlite3.Error, OSError) as exc:
            return f"Error fetching analyses: {exc}"

    @mcp.tool()
    def configflow_baselines() -> str:
        """Performance baselines per configuration state."""
        from configflow.core.store import ConfigflowStore

        try:
            with ConfigflowStore(_config.db_path) as store:
                return format_baselines(store.list_baselines())
        except (sqlite3.Error, OSError) as exc:
            return f"Error fetching baselines: {exc}"

    @mcp.tool()
    def configflow_suggestions(
        priority: str | None = None,
        category: str | None = None,
        limit: int | None = None,
    ) -> str:
        """Optimization suggestions, newest first.

        Args:
            priority: Filter by priority: low, medium, high, critical (optional)
            category: Filter by category: performance, memory, stability, security, resource (optional)
            limit: Max suggestions to return (default from config)
        """
        from configflow.core.store import ConfigflowStore

        limit_val = limit if limit is not None else _config.mcp.default_query_limit
        try:
            with ConfigflowStore(_config.db_path) as store:
                entries = store.list_suggestions(
                    priority=priority, category=category, limit=limit_val
                )
                return format_suggestions(entries)
        except (sqlite3.Error, OSError) as exc:
            return f"Error fetching suggestions: {exc}"

    @mcp.tool()
    def configflow_sessions(status: str | None = None, limit: int | None = None) -> str:
        """Auto-tuning sessions, newest first.

        Args:
            status: Filter by status: pending, testing, successful, failed,
                rolled_back, awaiting_approval (optional)
            limit: Max sessions to return (default from config)
        """
        from configflow.core.store import ConfigflowStore

        limit_val = limit if limit is not None else _config.mcp.default_query_limit
        try:
            with ConfigflowStore(_config.db_path) as store:
                return format_sessions(store.list_sessions(status=status, limit=limit_val))
        except (sqlite3.Error, OSError) as exc:
            return f"Error fetching sessions: {exc}"

    @mcp.tool()
    def configflow_stats() -> str:
        """Aggregate auto-tuning outcomes: success rate and average improvement."""
        from configflow.core.store import ConfigflowStore
        from configflow.core.tuner import session_stats

        try:
            with ConfigflowStore(_config.db_path) as store:
                return format_stats(session_stats(store.list_sessions(limit=-1)))
        except (sqlite3.Error, OSError) as exc:
            return f"Error computing stats: {exc}"

    return mcp


def main() -> None:
    """Entry point for configflow-mcp (stdio transport)."""
    server = create_server()
    server.run()


if __name__ == "__main__":
    main()
