"""chatrecall CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from chatrecall.cli.common import configure_logging
from chatrecall.cli.index import index_cmd
from chatrecall.cli.init import init_cmd
from chatrecall.cli.remove import remove_cmd
from chatrecall.cli.search import ask_cmd, search_cmd
from chatrecall.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("chatrecall")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"chatrecall {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="chatrecall",
    help=(
        "chatrecall — semantic search over team chat history.\n\n"
        "  chatrecall index   Embed new and edited messages from a chat export.\n"
        "  chatrecall search  Find messages by meaning."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override logging.level (DEBUG, INFO, …)."),
    ] = None,
) -> None:
    """chatrecall — semantic search over team chat history."""
    configure_logging(log_level)


app.command("init")(init_cmd)
app.command("index")(index_cmd)
app.command("search")(search_cmd)
app.command("ask")(ask_cmd)
app.command("status")(status_cmd)
app.command("remove")(remove_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed chatrecall version."""
    typer.echo(f"chatrecall {_installed_version()}")


if __name__ == "__main__":
    app()
