"""chatrecall index — sync a chat export into the index.

One cycle by default: every channel in the export is read from its checkpoint,
embedded and upserted. With --watch the indexer keeps running in the background
on the configured interval until Ctrl-C; the cycle in flight finishes first.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from chatrecall.cli.common import (
    load_settings,
    make_embedder,
    open_checkpoints,
    open_store,
    require_api_key,
    resolve_db,
)
from chatrecall.cli.errors import err_export_not_found, warn_no_deletion_feed, warn_partial_failures
from chatrecall.ingest.indexer import CycleReport, Indexer
from chatrecall.ingest.source import SlackExportSource

console = Console()


def index_cmd(
    export: Annotated[
        Path,
        typer.Option("--export", "-e", help="Unpacked chat workspace export directory."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Index database (defaults to index.path)."),
    ] = None,
    watch: Annotated[
        bool,
        typer.Option("--watch", help="Keep re-indexing every interval until interrupted."),
    ] = False,
    interval: Annotated[
        float | None,
        typer.Option("--interval", help="Seconds between cycles with --watch."),
    ] = None,
) -> None:
    """Index new and edited messages from a chat export."""
    cfg = load_settings()

    try:
        source = SlackExportSource(export)
    except FileNotFoundError as exc:
        console.print(err_export_not_found(str(export)))
        raise typer.Exit(1) from exc

    require_api_key(cfg.embedding.model)

    db_path = resolve_db(db, cfg)
    indexer = Indexer(
        source=source,
        embedder=make_embedder(cfg),
        store=open_store(db_path, cfg),
        checkpoints=open_checkpoints(db_path),
        interval=interval if interval is not None else cfg.index.interval_seconds,
    )

    if watch:
        _watch(indexer)
        return

    report = indexer.run_cycle()
    _print_report(report)
    if report.error is not None:
        console.print(f"[red]Error:[/] Could not read the export: {report.error}")
        raise typer.Exit(1)
    if report.failures:
        console.print(warn_partial_failures(report.failures))
        raise typer.Exit(1)
    console.print(f"\n[green]✓[/] Indexed {report.indexed} records in {report.duration:.1f}s")
    console.print(warn_no_deletion_feed())


def _watch(indexer: Indexer) -> None:
    console.print(
        f"[bold]Watching[/] (every {indexer.interval:.0f}s). Press Ctrl-C to stop."
    )
    indexer.start()
    try:
        while indexer.running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopping after the current cycle …[/]")
    finally:
        indexer.stop()
    console.print("[green]✓[/] Indexer stopped")


def _print_report(report: CycleReport) -> None:
    if not report.scopes:
        console.print("[yellow]No channels found in the export.[/]")
        return

    table = Table(title="Indexing cycle", show_lines=False)
    table.add_column("Scope", style="bold")
    table.add_column("Fetched", justify="right")
    table.add_column("Indexed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Checkpoint")
    table.add_column("Status")

    for s in report.scopes:
        status = "[green]ok[/]" if s.ok else "[red]failed[/]"
        table.add_row(
            s.scope,
            str(s.fetched),
            str(s.indexed),
            str(s.skipped),
            format_checkpoint(s.checkpoint),
            status,
        )
    console.print(table)


def format_checkpoint(ts: float | None) -> str:
    if ts is None:
        return "—"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
