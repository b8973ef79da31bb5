"""Typer CLI entrypoint for page-sentinel."""

from __future__ import annotations

import signal
from dataclasses import dataclass
from datetime import datetime
from threading import Event
from typing import Iterable, List, Optional, Sequence

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, SourceConfig
from .engine import DedupStore, PersistenceError
from .engine.sinks import build_sink
from .infra import SQLiteRecordRepository, StoreLock, StoreLockedError
from .logging_conf import (
    available_source_logs,
    configure_logging,
    monitor_log_path,
    source_log_path,
    tail_log,
)
from .orchestrator import CheckStatus, CycleBusyError, CycleSummary, Orchestrator, SourceStatus
from .scheduler import APSchedulerAdapter

app = typer.Typer(
    help="page-sentinel: watch remote documents and report new matching entries.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
source_app = typer.Typer(name="source", help="Watched source commands.", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log file commands.", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    scheduler: APSchedulerAdapter
    orchestrator: Orchestrator
    dedup_store: DedupStore
    store_lock: Optional[StoreLock] = None

    def close(self) -> None:
        try:
            self.orchestrator.stop()
        finally:
            if self.store_lock is not None:
                self.store_lock.release()


def build_state(verbose: bool, exclusive: bool = False) -> AppState:
    """Wire config, store, sinks and scheduler.

    ``exclusive`` claims the dedup store for this process before loading it;
    every command that commits or resets fingerprints asks for it.
    """

    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    store_path = repository.store_path()
    store_lock = StoreLock.for_store(store_path) if exclusive else None
    if store_lock is not None:
        store_lock.acquire()
    try:
        record_repository = SQLiteRecordRepository(store_path)
        dedup_store = DedupStore(record_repository, capacity=global_config.dedup.capacity)
        dedup_store.load()
        sink = build_sink(global_config.sinks, repository.locator.outputs_dir)
        scheduler = APSchedulerAdapter()
        orchestrator = Orchestrator(
            config_repository=repository,
            scheduler=scheduler,
            dedup_store=dedup_store,
            sink=sink,
        )
    except BaseException:
        if store_lock is not None:
            store_lock.release()
        raise
    return AppState(
        repository=repository,
        scheduler=scheduler,
        orchestrator=orchestrator,
        dedup_store=dedup_store,
        store_lock=store_lock,
    )


def _open_state(ctx: typer.Context, exclusive: bool = False) -> AppState:
    verbose = bool(ctx.meta.get("verbose", False))
    try:
        return build_state(verbose, exclusive=exclusive)
    except StoreLockedError as exc:
        console.print(
            f"Monitor is running ({exc}). Stop it before checking or resetting.", style="red"
        )
        raise typer.Exit(code=1)
    except PersistenceError as exc:
        console.print(f"Dedup store unavailable: {exc}", style="red")
        raise typer.Exit(code=1)
    except (ValidationError, ValueError) as exc:
        console.print(f"Invalid configuration: {exc}", style="red")
        raise typer.Exit(code=1)


def _format_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _render_sources_table(sources: Sequence[SourceConfig]) -> Table:
    table = Table(title=f"Watched sources · {len(sources)}", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Type", style="magenta")
    table.add_column("Location", style="green", overflow="fold")
    table.add_column("Patterns", style="yellow", overflow="fold")
    for source in sources:
        patterns = ", ".join(
            f"/{pattern.value}/" if pattern.regex else pattern.value for pattern in source.patterns
        )
        table.add_row(source.source_id, source.display_name, source.source_type, source.location, patterns)
    return table


def _render_status_table(rows: Iterable[SourceStatus]) -> Table:
    table = Table(title="Monitor status", box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Phase", style="magenta")
    table.add_column("Known", justify="right", style="green")
    table.add_column("Last check", style="white")
    table.add_column("Newest detection", style="white")
    for row in rows:
        table.add_row(
            row.display_name,
            row.phase.value,
            str(row.known_fingerprints),
            _format_time(row.last_checked_at),
            _format_time(row.newest_seen_at),
        )
    return table


def _render_cycle_table(summary: CycleSummary) -> Table:
    table = Table(title=f"Check results · {summary.trigger}", box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Candidates", justify="right")
    table.add_column("New", justify="right", style="green")
    table.add_column("Delivered", justify="center")
    table.add_column("Error", style="red", overflow="fold")
    for result in summary.results:
        delivered = "-" if result.delivered is None else ("yes" if result.delivered else "no")
        table.add_row(
            result.source_id,
            result.status.value,
            str(result.candidates),
            str(result.new),
            delivered,
            result.error or "",
        )
    table.add_section()
    table.add_row("Total", "", "", str(summary.total_new), "", "")
    return table


app.add_typer(source_app, name="source")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    # state is built per command; log commands never open the store
    ctx.meta["verbose"] = verbose


@app.command("run", help="Start periodic monitoring until interrupted.")
def run(ctx: typer.Context) -> None:
    state = _open_state(ctx, exclusive=True)
    orchestrator = state.orchestrator
    try:
        if not orchestrator.sources:
            console.print("No sources configured; add YAML files under data/sources/.", style="yellow")
            raise typer.Exit(code=1)
        stop_requested = Event()
        signal.signal(signal.SIGTERM, lambda *_: stop_requested.set())
        orchestrator.start()
        console.print(
            f"Watching {len(orchestrator.sources)} source(s) every "
            f"{orchestrator.global_config.schedule.check_interval:.0f}s, first check at "
            f"{_format_time(orchestrator.next_run_time())}. Press Ctrl-C to stop.",
            style="cyan",
        )
        try:
            while not stop_requested.wait(1.0):
                pass
        except KeyboardInterrupt:
            pass
        console.print("Stopping…", style="dim")
    finally:
        state.close()
    console.print("Monitor stopped.", style="green")


@app.command("check", help="Run one check cycle now (all sources or the given ids).")
def check(
    ctx: typer.Context,
    source_ids: Optional[List[str]] = typer.Argument(None, help="Source ids to check."),
    wait_timeout: Optional[float] = typer.Option(
        None, "--wait", help="Seconds to wait for a running cycle to finish."
    ),
) -> None:
    state = _open_state(ctx, exclusive=True)
    try:
        summary = state.orchestrator.run_manual_cycle(source_ids or None, wait_timeout=wait_timeout)
    except KeyError as exc:
        console.print(str(exc.args[0]), style="red")
        raise typer.Exit(code=1)
    except CycleBusyError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    finally:
        state.close()
    console.print(_render_cycle_table(summary))
    if any(result.status is CheckStatus.FETCH_FAILED for result in summary.results):
        console.print("Failed sources will be retried on the next cycle.", style="dim")


@app.command("status", help="Show dedup record sizes and last check times.")
def status(ctx: typer.Context) -> None:
    state = _open_state(ctx)
    try:
        rows = state.orchestrator.status()
        schedule = state.orchestrator.global_config.schedule
    finally:
        state.close()
    if not rows:
        console.print("No sources configured.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_status_table(rows))
    console.print(f"Check interval: {schedule.check_interval:.0f}s", style="dim")


@app.command("reset", help="Forget notified fingerprints so current entries are reported again.")
def reset(
    ctx: typer.Context,
    source_id: Optional[str] = typer.Argument(None, help="Source id to reset."),
    all_sources: bool = typer.Option(False, "--all", help="Reset every source."),
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt."),
) -> None:
    if bool(source_id) == all_sources:
        console.print("Pass either a source id or --all.", style="red")
        raise typer.Exit(code=1)
    target = "every source" if all_sources else f"`{source_id}`"
    if not yes and not typer.confirm(f"Reset the history of {target}?", default=False):
        console.print("Cancelled.", style="yellow")
        raise typer.Exit(code=0)
    state = _open_state(ctx, exclusive=True)
    try:
        removed = state.orchestrator.reset(None if all_sources else source_id)
    except KeyError as exc:
        console.print(str(exc.args[0]), style="red")
        raise typer.Exit(code=1)
    finally:
        state.close()
    console.print(
        f"History of {target} cleared ({removed} fingerprint(s)). "
        "The next check reports current entries as new.",
        style="green",
    )


@source_app.command("list", help="List watched sources and their patterns.")
def source_list(ctx: typer.Context) -> None:
    state = _open_state(ctx)
    try:
        sources = state.orchestrator.sources
    finally:
        state.close()
    if not sources:
        console.print("No sources configured; add YAML files under data/sources/.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_sources_table(sources))


@log_app.command("list", help="List available log files.")
def log_list() -> None:
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("Log", style="cyan")
    table.add_column("Path", style="dim", overflow="fold")
    table.add_row("monitor", str(monitor_log_path()))
    for path in available_source_logs():
        table.add_row(path.stem, str(path))
    console.print(table)


@log_app.command("show", help="Show the tail of the monitor log or of one source log.")
def log_show(
    source_id: Optional[str] = typer.Argument(None, help="Source id; omit for the monitor log."),
    lines: int = typer.Option(50, "--lines", "-n", min=1, help="Number of lines."),
) -> None:
    path = source_log_path(source_id) if source_id else monitor_log_path()
    content = tail_log(path, lines)
    if not content:
        console.print(f"No log entries in {path}.", style="dim")
        raise typer.Exit(code=0)
    console.print(f"{path} · last {len(content)} line(s)", style="cyan")
    console.print("".join(content), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
