"""Command-line interface for the activity monitor."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from .config import MonitorSettings
from .db import ActivityStore, StoreError
from .paths import get_db_path, get_log_path

app = typer.Typer(help="Local-first developer activity monitor.")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def _open_store(db_path: Optional[Path], settings: Optional[MonitorSettings] = None) -> ActivityStore:
    try:
        return ActivityStore.open(db_path or get_db_path(), settings)
    except StoreError as exc:
        typer.echo(f"Cannot open activity database: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def collect(
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the activity SQLite database.",
    ),
    sample_seconds: float = typer.Option(
        2.0,
        "--interval",
        min=0.5,
        help="Sampling interval in seconds.",
    ),
    idle_minutes: float = typer.Option(
        5.0,
        "--idle-threshold",
        min=0.5,
        help="Minutes of inactivity before the open session is closed.",
    ),
    log_file: bool = typer.Option(
        True,
        "--log-file/--no-log-file",
        help="Also write logs to the data directory.",
    ),
) -> None:
    """Run the monitor in the foreground until interrupted."""
    from .monitor import ActivityMonitor

    if log_file:
        handler = logging.FileHandler(get_log_path(), encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)

    settings = MonitorSettings.from_intervals(
        sample_seconds=sample_seconds, idle_minutes=idle_minutes
    )
    store = _open_store(db_path, settings)
    monitor = ActivityMonitor(store, settings)
    stop_event = threading.Event()
    try:
        monitor.run_until_stopped(stop_event)
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Monitor interrupted; flushing open session.")
    finally:
        store.close()
    if monitor.fatal_error is not None:
        typer.echo(f"Activity database needs attention: {monitor.fatal_error}", err=True)
        raise typer.Exit(code=1)


@app.command()
def scan(
    roots: Optional[list[Path]] = typer.Argument(
        None,
        help="Directories to scan. Defaults to the last scanned directories.",
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the activity SQLite database."
    ),
) -> None:
    """Register projects found under the given directories.

    Without arguments the directories of the last scan are used, falling back
    to common project folders.
    """
    from .projects import ProjectResolver, default_scan_roots, remember_scan_roots

    store = _open_store(db_path)
    try:
        targets = list(roots) if roots else default_scan_roots(store)
        if not targets:
            typer.echo("No directories to scan.")
            return
        projects = ProjectResolver(store).scan(targets)
        if roots:
            remember_scan_roots(store, targets)
    finally:
        store.close()
    for project in projects:
        typer.echo(f"{project.name:<30} {project.kind or '-':<8} {project.path}")
    typer.echo(f"{len(projects)} projects registered.")


@app.command()
def projects(
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the activity SQLite database."
    ),
) -> None:
    """List registered projects, most recently active first."""
    store = _open_store(db_path)
    try:
        registered = store.get_all_projects()
    finally:
        store.close()
    if not registered:
        typer.echo("No projects registered yet.")
        return
    for project in registered:
        typer.echo(f"{project.name:<30} {project.kind or '-':<8} {project.path}")


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the activity SQLite database.",
    ),
) -> None:
    """Print tracked time by activity type and project for one day."""
    from .reporting import SummaryPrinter

    target = datetime.strptime(date, "%Y-%m-%d") if date else datetime.now()
    summary_printer = SummaryPrinter(db_path=db_path or get_db_path())
    summary_printer.print_daily_summary(target)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the control API."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the control API."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the activity SQLite database."
    ),
    sample_seconds: float = typer.Option(
        2.0,
        "--interval",
        min=0.5,
        help="Sampling interval in seconds.",
    ),
    idle_minutes: float = typer.Option(
        5.0,
        "--idle-threshold",
        min=0.5,
        help="Minutes of inactivity before the open session is closed.",
    ),
    autostart: bool = typer.Option(
        True,
        "--autostart/--no-autostart",
        help="Start monitoring as soon as the server is up.",
    ),
) -> None:
    """Run the monitor behind a local control API."""
    from .server_runner import run_control_server

    settings = MonitorSettings.from_intervals(
        sample_seconds=sample_seconds,
        idle_minutes=idle_minutes,
    )
    run_control_server(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        settings=settings,
        autostart=autostart,
    )
