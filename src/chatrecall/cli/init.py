"""chatrecall init — create the index database and a starter config.

Creates:
  chatrecall.yaml               — project config (never overwritten)
  <index.path>                  — empty index with schema + model metadata
  ~/.chatrecall/config.yaml     — global model defaults (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from chatrecall.cli.errors import err_config, err_index_mismatch, err_store
from chatrecall.config import ConfigError, ensure_global_config, load_config, write_project_config
from chatrecall.db.store import VectorStore
from chatrecall.exceptions import InvalidInputError, StoreUnavailableError

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
) -> None:
    """Initialize a chatrecall project: config file and empty index."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    console.print(f"\n[bold]Creating chatrecall project in {project_dir} …[/]\n")

    config_path = project_dir / "chatrecall.yaml"
    existed = config_path.exists()
    write_project_config(project_dir)
    if existed:
        console.print("  [dim]–[/] chatrecall.yaml (kept existing)")
    else:
        console.print("  [green]✓[/] chatrecall.yaml")

    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc

    db_path = Path(cfg.index.path)
    if not db_path.is_absolute():
        db_path = project_dir / db_path

    try:
        store = VectorStore(db_path, cfg.embedding.model, cfg.embedding.dimensions)
    except InvalidInputError as exc:
        console.print(err_index_mismatch(str(exc)))
        raise typer.Exit(1) from exc
    except StoreUnavailableError as exc:
        console.print(err_store(str(exc)))
        raise typer.Exit(1) from exc
    console.print(f"  [green]✓[/] {db_path} ({store.count()} records)")

    global_path = ensure_global_config()
    console.print(f"  [green]✓[/] {global_path}")

    console.print(
        "\n[bold]Next steps:[/]\n"
        f"  export {_env_hint(cfg.embedding.model)}=...\n"
        "  chatrecall index --export <unzipped-export-dir>\n"
        '  chatrecall search "what did we decide about caching?"'
    )


def _env_hint(model: str) -> str:
    provider = model.split("/")[0] if "/" in model else "openai"
    return f"{provider.upper()}_API_KEY"
