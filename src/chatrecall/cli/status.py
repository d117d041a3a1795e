"""chatrecall status — index overview.

Shows the configured model, the model the index was built with, and a
per-scope table of record counts and checkpoints.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from chatrecall.cli.common import load_settings, open_checkpoints, open_store, resolve_db
from chatrecall.cli.errors import err_index_mismatch, err_store
from chatrecall.cli.index import format_checkpoint
from chatrecall.config import ChatRecallConfig
from chatrecall.db.connection import Database
from chatrecall.db.schema import initialize
from chatrecall.db.vectors import model_to_slug, read_index_meta
from chatrecall.exceptions import StoreUnavailableError

console = Console()


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Index database (defaults to index.path)."),
    ] = None,
) -> None:
    """Show index status: model, record counts and checkpoints per scope."""
    cfg = load_settings()
    db_path = resolve_db(db, cfg)

    _show_config_panel(db_path, cfg)

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No index found.[/]\n"
                "  Run:  chatrecall init",
                title="[bold]Index[/]",
                expand=False,
            )
        )
        return

    try:
        meta = _read_meta(db_path)
    except StoreUnavailableError as exc:
        console.print(err_store(str(exc)))
        raise typer.Exit(1) from exc
    expected_slug = model_to_slug(cfg.embedding.model)
    if meta and (
        meta.get("model") != expected_slug
        or meta.get("dimensions") != str(cfg.embedding.dimensions)
    ):
        console.print(
            err_index_mismatch(
                f"Index uses {meta.get('model')} ({meta.get('dimensions')} dims), "
                f"config has {expected_slug} ({cfg.embedding.dimensions} dims)."
            )
        )
        raise typer.Exit(1)

    store = open_store(db_path, cfg)
    try:
        counts = store.count_by_scope()
        checkpoints = open_checkpoints(db_path).all()
    except StoreUnavailableError as exc:
        console.print(err_store(str(exc)))
        raise typer.Exit(1) from exc
    _show_index_panel(counts, checkpoints)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_config_panel(db_path: Path, cfg: ChatRecallConfig) -> None:
    db_info = f"{db_path}"
    if db_path.exists():
        size_mb = db_path.stat().st_size / (1024 * 1024)
        db_info = f"{db_path} ({size_mb:.1f} MB)"

    lines = [
        f"Index:      {db_info}",
        f"Model:      [bold]{cfg.embedding.model}[/] ({cfg.embedding.dimensions} dims)",
        f"Retrieval:  {'enabled' if cfg.retrieval.enabled else '[yellow]disabled[/]'}"
        f"  |  min similarity {cfg.retrieval.min_similarity}"
        f"  |  max results {cfg.retrieval.max_results}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]chatrecall[/]", expand=False))


def _show_index_panel(counts: dict[str, int], checkpoints: dict[str, float]) -> None:
    scopes = sorted(set(counts) | set(checkpoints))
    if not scopes:
        console.print(
            Panel(
                "[dim]Nothing indexed yet.[/]\n"
                "  Run:  chatrecall index --export <dir>",
                title="[bold]Index[/]",
                expand=False,
            )
        )
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Scope", style="bold")
    table.add_column("Records", justify="right")
    table.add_column("Checkpoint", style="dim")
    for scope in scopes:
        table.add_row(
            f"#{scope}",
            f"{counts.get(scope, 0):,}",
            format_checkpoint(checkpoints.get(scope)),
        )

    total = sum(counts.values())
    console.print(
        Panel(
            table,
            title=f"[bold]Index[/] [dim]({total:,} records, {len(scopes)} scopes)[/]",
            expand=False,
        )
    )


def _read_meta(db_path: Path) -> dict[str, str]:
    try:
        with Database(db_path) as conn:
            initialize(conn)
            return read_index_meta(conn)
    except sqlite3.Error as exc:
        raise StoreUnavailableError(f"Cannot read index database '{db_path}': {exc}") from exc
