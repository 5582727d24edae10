"""Typer CLI for configflow."""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console

from configflow.config import ConfigflowConfig
from configflow.core.store import ConfigflowStore
from configflow.models import target_label

app = typer.Typer(
    name="configflow",
    help="Correlate configuration changes with performance and tune them safely.",
    no_args_is_help=True,
)
console = Console(stderr=True)

JsonOption = Annotated[bool, typer.Option("--json", help="Emit JSON on stdout")]
LimitOption = Annotated[int, typer.Option("--limit", "-n", help="Max entries")]


def _config() -> ConfigflowConfig:
    return ConfigflowConfig.load()


def _open_store(config: ConfigflowConfig) -> ConfigflowStore:
    return ConfigflowStore(config.db_path)


def _record(obj: Any) -> dict:
    d = {}
    for f in dataclasses.fields(obj):
        value = getattr(obj, f.name)
        if f.name == "original_content":
            d["size"] = len(value)
            continue
        if f.name == "target":
            value = target_label(value)
        elif dataclasses.is_dataclass(value):
            value = dataclasses.asdict(value)
        d[f.name] = value
    return d


def _emit_json(records: list[Any]) -> None:
    typer.echo(json.dumps([_record(r) for r in records], indent=2, default=str))


@app.command()
def run(
    once: Annotated[bool, typer.Option("--once", help="Run every tick once and exit")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
    log_file: Annotated[
        Optional[Path], typer.Option("--log-file", help="Also append logs to this file")
    ] = None,
) -> None:
    """Run the observe / analyze / tune loop in the foreground."""
    from configflow.core.engine import ConfigflowEngine
    from configflow.logging_setup import setup_logging

    setup_logging(logging.DEBUG if verbose else logging.INFO, log_file=log_file)
    config = _config()

    with _open_store(config) as store:
        engine = ConfigflowEngine(config, store=store)
        if once:
            engine.run_once()
            engine.stop()
            console.print(
                f"[green]Tick complete:[/green] {len(engine.history())} snapshots, "
                f"{len(engine.analyses())} analyses, {len(engine.suggestions())} suggestions"
            )
            return

        console.print(f"[dim]Watching {config.watch_path}... (Ctrl+C to stop)[/dim]")
        stop_event = threading.Event()
        try:
            engine.run(stop_event)
        except KeyboardInterrupt:
            stop_event.set()
            console.print("\n[dim]Stopped.[/dim]")


@app.command()
def status() -> None:
    """Show what the daemon has recorded."""
    from configflow.core.tuner import session_stats

    config = _config()

    with _open_store(config) as store:
        started = store.get_meta("started_at")
        last_tick = store.get_meta("last_tick_at")
        tuning = store.get_meta("tuning_enabled")
        counts = {
            name: store.count(name)
            for name in ("snapshots", "change_events", "analyses", "baselines", "suggestions", "sessions")
        }
        stats = session_stats(store.list_sessions(limit=-1))

    console.print("[bold]configflow[/bold]")
    console.print(f"  Started: {started or 'never'}")
    console.print(f"  Last tick: {last_tick or 'never'}")
    console.print(f"  Auto-tuning: {'enabled' if tuning == 'true' else 'disabled'}")
    for name, count in counts.items():
        console.print(f"  {name}: {count}")
    console.print(
        f"  Sessions: {stats.successful} successful, {stats.rolled_back} rolled back "
        f"({stats.success_rate:.1f}%)"
    )


@app.command()
def changes(limit: LimitOption = 50, as_json: JsonOption = False) -> None:
    """List recorded configuration changes."""
    config = _config()

    with _open_store(config) as store:
        events = store.list_change_events(limit=limit)

    if as_json:
        _emit_json(events)
        return
    if not events:
        console.print("[dim]No configuration changes recorded.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Config Changes")
    table.add_column("Time")
    table.add_column("Kind", style="bold")
    table.add_column("File")
    table.add_column("Hash")
    for e in events:
        table.add_row(e.timestamp.isoformat(), e.change_kind.value, e.config_file, e.config_hash[:12])
    console.print(table)


@app.command()
def analyses(limit: LimitOption = 50, as_json: JsonOption = False) -> None:
    """List impact analyses."""
    config = _config()

    with _open_store(config) as store:
        entries = store.list_analyses(limit=limit)

    if as_json:
        _emit_json(entries)
        return
    if not entries:
        console.print("[dim]No impact analyses yet.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Impact Analyses")
    table.add_column("File", style="bold")
    table.add_column("Impact", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("CPU Δ", justify="right")
    table.add_column("Mem Δ", justify="right")
    table.add_column("Recommendation")
    for a in entries:
        style = "green" if a.impact_score > 0 else "red" if a.impact_score < 0 else ""
        impact = f"[{style}]{a.impact_score:+.3f}[/{style}]" if style else f"{a.impact_score:+.3f}"
        table.add_row(
            a.config_file,
            impact,
            f"{a.confidence * 100:.0f}%",
            f"{a.cpu_delta:+.2f}",
            f"{a.memory_delta:+.2f}",
            a.recommendation,
        )
    console.print(table)


@app.command()
def baselines(as_json: JsonOption = False) -> None:
    """List performance baselines per configuration state."""
    config = _config()

    with _open_store(config) as store:
        entries = store.list_baselines()

    if as_json:
        _emit_json(entries)
        return
    if not entries:
        console.print("[dim]No baselines computed yet.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Baselines")
    table.add_column("Config Hash", style="bold")
    table.add_column("Samples", justify="right")
    table.add_column("Avg CPU", justify="right")
    table.add_column("Avg Mem", justify="right")
    table.add_column("Stability", justify="right")
    for b in entries:
        table.add_row(
            b.config_hash[:12],
            str(b.sample_count),
            f"{b.avg_cpu:.1f}%",
            f"{b.avg_memory:.1f}%",
            f"{b.stability:.3f}",
        )
    console.print(table)


@app.command()
def suggestions(
    priority: Annotated[Optional[str], typer.Option("--priority", "-p", help="Filter by priority")] = None,
    category: Annotated[Optional[str], typer.Option("--category", "-c", help="Filter by category")] = None,
    limit: LimitOption = 50,
    as_json: JsonOption = False,
) -> None:
    """List optimization suggestions."""
    from configflow.models.enums import Category, Priority

    try:
        if priority:
            Priority(priority)
        if category:
            Category(category)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    config = _config()
    with _open_store(config) as store:
        entries = store.list_suggestions(priority=priority, category=category, limit=limit)

    if as_json:
        _emit_json(entries)
        return
    if not entries:
        console.print("[dim]No suggestions.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Optimization Suggestions")
    table.add_column("Priority", style="bold")
    table.add_column("Category")
    table.add_column("Target")
    table.add_column("Parameter")
    table.add_column("Change")
    table.add_column("Confidence", justify="right")
    table.add_column("Risk")
    for s in entries:
        table.add_row(
            s.priority.value,
            s.category.value,
            s.target_label,
            s.parameter,
            f"{s.current_value} -> {s.suggested_value}",
            f"{s.confidence * 100:.0f}%",
            s.risk_level.value,
        )
    console.print(table)


@app.command()
def sessions(
    status: Annotated[Optional[str], typer.Option("--status", "-s", help="Filter by status")] = None,
    limit: LimitOption = 50,
    as_json: JsonOption = False,
) -> None:
    """List auto-tuning sessions."""
    from configflow.models.enums import TuningStatus

    if status:
        try:
            TuningStatus(status)
        except ValueError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)

    config = _config()
    with _open_store(config) as store:
        entries = store.list_sessions(status=status, limit=limit)

    if as_json:
        _emit_json(entries)
        return
    if not entries:
        console.print("[dim]No tuning sessions.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Tuning Sessions")
    table.add_column("Session", style="bold")
    table.add_column("Status")
    table.add_column("Target")
    table.add_column("Parameter")
    table.add_column("Improvement", justify="right")
    table.add_column("Reason")
    for s in entries:
        table.add_row(
            s.session_id[:16],
            s.status.value,
            s.target_label,
            s.parameter,
            f"{s.improvement_measured:.2f}" if s.improvement_measured is not None else "-",
            s.rollback_reason or "-",
        )
    console.print(table)


@app.command()
def session(
    session_id: Annotated[str, typer.Argument(help="Session id or a prefix of it")],
    as_json: JsonOption = False,
) -> None:
    """Show one tuning session with its before/after metrics."""
    config = _config()
    with _open_store(config) as store:
        found = store.get_session(session_id)

    if found is None:
        console.print(f"[red]Session not found: {session_id}[/red]")
        raise typer.Exit(1)
    if as_json:
        typer.echo(json.dumps(_record(found), indent=2, default=str))
        return

    console.print(f"[bold]{found.session_id}[/bold] ({found.status.value})")
    console.print(f"  Target: {found.target_label} {found.parameter}")
    console.print(f"  Change: {found.original_value!r} -> {found.new_value!r}")
    console.print(f"  Started: {found.started_at.isoformat()}")
    for label, summary in (("Before", found.pre_change_metrics), ("After", found.post_change_metrics)):
        if summary is not None:
            console.print(
                f"  {label}: cpu {summary.avg_cpu:.1f}%, memory {summary.avg_memory:.1f}%, "
                f"stability {summary.stability:.2f} ({summary.sample_count} samples)"
            )
    if found.improvement_measured is not None:
        console.print(f"  Improvement: {found.improvement_measured:.2f}")
    if found.rollback_reason:
        console.print(f"  Reason: {found.rollback_reason}")


@app.command()
def stats(as_json: JsonOption = False) -> None:
    """Show aggregate auto-tuning outcomes."""
    from configflow.core.tuner import session_stats

    config = _config()
    with _open_store(config) as store:
        result = session_stats(store.list_sessions(limit=-1))

    if as_json:
        typer.echo(json.dumps(dataclasses.asdict(result), indent=2))
        return
    console.print(f"Completed sessions: {result.total}")
    console.print(f"  Successful: {result.successful}")
    console.print(f"  Rolled back: {result.rolled_back}")
    console.print(f"  Success rate: {result.success_rate:.1f}%")
    console.print(f"  Avg improvement: {result.avg_improvement:.2f}")


@app.command()
def backups(as_json: JsonOption = False) -> None:
    """List stored pre-change backups."""
    from configflow.core.backups import BackupStorageError, BackupStore

    config = _config()
    try:
        with BackupStore(config.backup_dir) as store:
            entries = store.backups()
    except BackupStorageError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    if as_json:
        _emit_json(entries)
        return
    if not entries:
        console.print("[dim]No backups.[/dim]")
        return

    from rich.table import Table

    table = Table(title="Backups")
    table.add_column("Backup", style="bold")
    table.add_column("Time")
    table.add_column("Target")
    table.add_column("Size", justify="right")
    table.add_column("Reason")
    for b in entries:
        table.add_row(
            b.backup_id,
            b.timestamp.isoformat(),
            target_label(b.target),
            str(len(b.original_content)),
            b.reason,
        )
    console.print(table)


@app.command()
def scan(as_json: JsonOption = False) -> None:
    """Discover configuration files and show rule hints for their parameters."""
    from configflow.core.optimizer import OptimizationEngine
    from configflow.core.scanner import ConfigScanner

    config = _config()
    scanner = ConfigScanner(config.watch_path)
    files = scanner.scan()

    with _open_store(config) as store:
        history = store.list_snapshots()
    hints = OptimizationEngine().evaluate_rules(scanner.all_parameters(files), history)

    if as_json:
        _emit_json(files)
        return
    if not files:
        console.print("[dim]No configuration files found.[/dim]")
        return

    from rich.table import Table

    table = Table(title=f"Configuration files under {config.watch_path}")
    table.add_column("Format", style="bold")
    table.add_column("Path")
    table.add_column("Size", justify="right")
    for f in files:
        table.add_row(f.format.value, f.path, str(f.size))
    console.print(table)
    console.print(f"Fingerprint: {scanner.fingerprint(files)}")

    for s in hints:
        console.print(
            f"[yellow]Hint:[/yellow] {s.target_label} {s.parameter}: "
            f"{s.current_value} -> {s.suggested_value} ({s.expected_impact})"
        )


def main() -> None:
    """Entry point for the configflow CLI."""
    app()


if __name__ == "__main__":
    main()
