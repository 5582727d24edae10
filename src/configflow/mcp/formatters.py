"""Markdown formatters for LLM-friendly output."""

from __future__ import annotations

from configflow.models.runtime import (
    AutoTuningSession,
    ConfigChangeEvent,
    ImpactAnalysis,
    OptimizationSuggestion,
    PerformanceBaseline,
    TuningStats,
)


def _signed(val: float, suffix: str = "", digits: int = 2) -> str:
    sign = "+" if val > 0 else ""
    return f"{sign}{val:.{digits}f}{suffix}"


def format_status(meta: dict[str, str | None], counts: dict[str, int], stats: TuningStats) -> str:
    """Format the daemon's last known state."""
    lines = [
        "## configflow status",
        "",
        f"**Started:** {meta.get('started_at') or 'never'}  ",
        f"**Last tick:** {meta.get('last_tick_at') or 'never'}  ",
        f"**Auto-tuning:** {'enabled' if meta.get('tuning_enabled') == 'true' else 'disabled'}",
        "",
        "| Record | Count |",
        "|--------|-------|",
    ]
    for name, count in counts.items():
        lines.append(f"| {name} | {count} |")
    lines.extend(["", format_stats(stats)])
    return "\n".join(lines)


def format_changes(events: list[ConfigChangeEvent]) -> str:
    if not events:
        return "## Config Changes\n\nNo configuration changes recorded."

    lines = [
        "## Config Changes",
        "",
        "| Time | Kind | File | Hash |",
        "|------|------|------|------|",
    ]
    for e in events:
        lines.append(
            f"| {e.timestamp.isoformat()} | {e.change_kind.value} | {e.config_file} "
            f"| `{e.config_hash[:12]}` |"
        )
    return "\n".join(lines)


def format_analysis(a: ImpactAnalysis) -> str:
    """Format one impact analysis with its evidence."""
    lines = [
        f"### {a.config_file}",
        f"**Impact:** {_signed(a.impact_score, digits=3)}  "
        f"**Confidence:** {a.confidence * 100:.1f}%  ",
        f"**Analyzed:** {a.analyzed_at.isoformat()}",
        "",
        "| Metric | Delta |",
        "|--------|-------|",
        f"| CPU | {_signed(a.cpu_delta, '%')} |",
        f"| Memory | {_signed(a.memory_delta, '%')} |",
        f"| Stability | {_signed(a.stability_delta, digits=3)} |",
        "",
    ]
    lines.extend(f"- {item}" for item in a.evidence)
    lines.extend(["", f"*{a.recommendation}*"])
    return "\n".join(lines)


def format_analyses(analyses: list[ImpactAnalysis]) -> str:
    if not analyses:
        return "## Impact Analyses\n\nNo impact analyses yet."
    return "## Impact Analyses\n\n" + "\n\n---\n\n".join(format_analysis(a) for a in analyses)


def format_baselines(baselines: list[PerformanceBaseline]) -> str:
    if not baselines:
        return "## Baselines\n\nNo baselines computed yet."

    lines = [
        "## Baselines",
        "",
        "| Config Hash | Samples | Avg CPU | Max CPU | Avg Memory | Max Memory | Stability |",
        "|-------------|---------|---------|---------|------------|------------|-----------|",
    ]
    for b in baselines:
        lines.append(
            f"| `{b.config_hash[:12]}` | {b.sample_count} | {b.avg_cpu:.1f}% | {b.max_cpu:.1f}% "
            f"| {b.avg_memory:.1f}% | {b.max_memory:.1f}% | {b.stability:.3f} |"
        )
    return "\n".join(lines)


def format_suggestions(suggestions: list[OptimizationSuggestion]) -> str:
    if not suggestions:
        return "## Optimization Suggestions\n\nNo suggestions."

    lines = ["## Optimization Suggestions", ""]
    for s in suggestions:
        lines.append(
            f"- **[{s.priority.value.upper()}]** {s.category.value}: {s.expected_impact} "
            f"(`{s.target_label}` {s.parameter}: {s.current_value} -> {s.suggested_value}; "
            f"confidence {s.confidence * 100:.0f}%, risk {s.risk_level.value})"
        )
        for reason in s.reasoning:
            lines.append(f"  - {reason}")
    return "\n".join(lines)


def format_sessions(sessions: list[AutoTuningSession], title: str = "Tuning Sessions") -> str:
    if not sessions:
        return f"## {title}\n\nNo tuning sessions."

    lines = [
        f"## {title}",
        "",
        "| Session | Status | Target | Parameter | Change | Improvement | Reason |",
        "|---------|--------|--------|-----------|--------|-------------|--------|",
    ]
    for s in sessions:
        improvement = f"{s.improvement_measured:.2f}" if s.improvement_measured is not None else "-"
        lines.append(
            f"| `{s.session_id[:16]}` | {s.status.value} | {s.target_label} | {s.parameter} "
            f"| {s.original_value} -> {s.new_value} | {improvement} | {s.rollback_reason or '-'} |"
        )
    return "\n".join(lines)


def format_stats(stats: TuningStats) -> str:
    return "\n".join(
        [
            "### Auto-tuning",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Completed sessions | {stats.total} |",
            f"| Successful | {stats.successful} |",
            f"| Rolled back | {stats.rolled_back} |",
            f"| Success rate | {stats.success_rate:.1f}% |",
            f"| Avg improvement | {stats.avg_improvement:.2f} |",
        ]
    )
