"""chatrecall remove — explicit index maintenance.

Removes a whole scope or a single record from the index:
  - records (text, vector, metadata)
  - optionally the scope's checkpoint, so the next cycle re-reads it

Usage:
  chatrecall remove --scope eng
  chatrecall remove --scope eng --reset-checkpoint --yes
  chatrecall remove --id eng:1704190000.000100
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from chatrecall.cli.common import load_settings, open_checkpoints, open_store, resolve_db
from chatrecall.cli.errors import (
    err_no_db,
    err_not_found,
    err_remove_target,
    err_reset_needs_scope,
    err_store,
)
from chatrecall.db.checkpoints import CheckpointStore
from chatrecall.db.store import VectorStore
from chatrecall.exceptions import StoreUnavailableError
from chatrecall.rag.router import canonical_scope

console = Console()


def remove_cmd(
    scope: Annotated[
        str | None,
        typer.Option("--scope", "-s", help="Remove every record of this scope."),
    ] = None,
    record_id: Annotated[
        str | None,
        typer.Option("--id", help="Remove one record by id."),
    ] = None,
    reset_checkpoint: Annotated[
        bool,
        typer.Option("--reset-checkpoint", help="Also forget the scope's checkpoint."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Index database (defaults to index.path)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a scope or a single record from the index."""
    if (scope is None) == (record_id is None):
        console.print(err_remove_target())
        raise typer.Exit(1)
    if record_id is not None and reset_checkpoint:
        console.print(err_reset_needs_scope())
        raise typer.Exit(1)

    cfg = load_settings()
    db_path = resolve_db(db, cfg)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    store = open_store(db_path, cfg)
    checkpoints = open_checkpoints(db_path)

    try:
        if record_id is not None:
            _remove_record(store, record_id, yes)
        else:
            _remove_scope(store, checkpoints, scope or "", reset_checkpoint, yes)
    except StoreUnavailableError as exc:
        console.print(err_store(str(exc)))
        raise typer.Exit(1) from exc


def _remove_record(store: VectorStore, record_id: str, yes: bool) -> None:
    record = store.get(record_id)
    if record is None:
        console.print(err_not_found(f"Record '{record_id}'"))
        raise typer.Exit(0)
    console.print(f"\nRemove record: [bold]{record_id}[/]  ({record.author} in #{record.scope})")
    _confirm(yes)
    store.delete(record_id)
    console.print(f"\n[green]✓[/] Removed: {record_id}")


def _remove_scope(
    store: VectorStore,
    checkpoints: CheckpointStore,
    scope: str,
    reset_checkpoint: bool,
    yes: bool,
) -> None:
    name = canonical_scope(scope) or ""
    count = store.count(name)
    checkpoint = checkpoints.get(name)
    if count == 0 and checkpoint is None:
        console.print(err_not_found(f"Scope '#{name}'"))
        raise typer.Exit(0)

    console.print(f"\nRemove scope: [bold]#{name}[/]")
    console.print(
        f"  Records: {count}  |  "
        f"Checkpoint: {'reset' if reset_checkpoint else 'kept'}"
    )
    _confirm(yes)

    deleted = store.delete_by_scope(name)
    if reset_checkpoint:
        checkpoints.reset(name)
    console.print(f"\n[green]✓[/] Removed #{name}: {deleted} records deleted")
    if not reset_checkpoint and checkpoint is not None:
        console.print(
            "[dim]  Checkpoint kept: older messages will not be re-indexed. "
            "Use --reset-checkpoint to rebuild this scope.[/]"
        )


def _confirm(yes: bool) -> None:
    if not yes and not typer.confirm("Confirm removal?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)
