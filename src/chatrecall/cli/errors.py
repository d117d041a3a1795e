"""chatrecall rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from chatrecall.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("cohere"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from chatrecall.exceptions import IndexingPartialFailure


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'cohere'. Set:  export COHERE_API_KEY=...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "voyage": "VOYAGE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=..."
    )


def err_no_db(db_path: str) -> str:
    """No index database at *db_path*."""
    return (
        f"[red]Error:[/] No index found at '{db_path}'.\n"
        "  Run:  chatrecall init"
    )


def err_index_mismatch(detail: str) -> str:
    """Index was built with another embedding model or dimension."""
    return (
        "[red]Error:[/] Embedding model mismatch.\n"
        f"  {escape(detail)}\n"
        "  Re-index your export or update embedding.model / embedding.dimensions "
        "in chatrecall.yaml to match the index."
    )


def err_config(detail: str) -> str:
    """chatrecall.yaml or the environment holds an invalid value."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {escape(detail)}\n"
        "  Fix the value in chatrecall.yaml (or the CHATRECALL_* variable) and retry."
    )


def err_export_not_found(path: str) -> str:
    """--export does not point to an unpacked export directory."""
    return (
        f"[red]Error:[/] Export directory not found: '{path}'\n"
        "  Unzip the workspace export and pass its folder:  chatrecall index --export ./export"
    )


def err_provider(detail: str) -> str:
    """Embedding provider call failed after retries."""
    return (
        "[red]Error:[/] Embedding provider request failed.\n"
        f"  {escape(detail)}\n"
        "  Check your network and API key, then run the command again."
    )


def err_store(detail: str) -> str:
    """Index database could not be opened or written."""
    return (
        "[red]Error:[/] Index database unavailable.\n"
        f"  {escape(detail)}\n"
        "  Check index.path in chatrecall.yaml and the file permissions, or run:  chatrecall init"
    )


def err_remove_target() -> str:
    """remove was called without exactly one of --scope / --id."""
    return (
        "[red]Error:[/] Specify exactly one of --scope or --id.\n"
        "  Use:  chatrecall remove --scope eng   or   chatrecall remove --id eng:1700000000.000100"
    )


def err_reset_needs_scope() -> str:
    """--reset-checkpoint was combined with --id."""
    return (
        "[red]Error:[/] --reset-checkpoint only applies to a scope.\n"
        "  Use:  chatrecall remove --scope eng --reset-checkpoint"
    )


def err_not_found(what: str) -> str:
    """Scope or record not in the index."""
    return (
        f"[yellow]Not found:[/] {escape(what)} is not in the index.\n"
        "  Run:  chatrecall status  to see all indexed scopes."
    )


def warn_partial_failures(failures: list[IndexingPartialFailure]) -> str:
    """Some scopes failed during an indexing cycle."""
    lines = "\n".join(f"    {escape(f.scope)}: {escape(str(f.cause))}" for f in failures)
    return (
        f"[yellow]⚠[/] {len(failures)} scope(s) failed; their checkpoints were held back:\n"
        f"{lines}\n"
        "  Run:  chatrecall index  again to retry them."
    )


def warn_no_deletion_feed() -> str:
    """Removed single records return only if the source re-supplies them."""
    return (
        "[yellow]⚠[/] Exports carry no deletion feed.\n"
        "  Deleted messages stay indexed until you remove them:  chatrecall remove --id <id>"
    )
