"""Shared CLI plumbing: config loading, logging, and component factories.

Each factory turns library errors into an actionable message and
``typer.Exit(1)`` so commands stay linear.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from chatrecall.cli.errors import err_config, err_index_mismatch, err_no_api_key, err_store
from chatrecall.config import ChatRecallConfig, ConfigError, load_config
from chatrecall.db.checkpoints import CheckpointStore
from chatrecall.db.store import VectorStore
from chatrecall.exceptions import InvalidInputError, StoreUnavailableError
from chatrecall.rag import llm_client
from chatrecall.rag.embedder import Embedder, EmbedderConfig

console = Console()

_LOGGER_NAME = "chatrecall"
_cli_log_level: str | None = None


def configure_logging(level: str | None = None) -> None:
    """Attach a RichHandler (stderr) to the package logger once.

    *level* comes from ``--log-level``; when None the configured
    ``logging.level`` is applied by load_settings().
    """
    global _cli_log_level
    _cli_log_level = level.upper() if level else None
    if _cli_log_level and not isinstance(logging.getLevelName(_cli_log_level), int):
        raise typer.BadParameter(f"Unknown log level '{level}'", param_hint="--log-level")

    logger = logging.getLogger(_LOGGER_NAME)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
    if _cli_log_level:
        logger.setLevel(_cli_log_level)


def load_settings() -> ChatRecallConfig:
    """Load the merged config or exit with an actionable error."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if _cli_log_level is None:
        logging.getLogger(_LOGGER_NAME).setLevel(cfg.logging.level)
    return cfg


def resolve_db(db: Path | None, cfg: ChatRecallConfig) -> Path:
    return db if db is not None else Path(cfg.index.path)


def require_api_key(model: str) -> None:
    try:
        llm_client.validate_api_key(model)
    except EnvironmentError as exc:
        console.print(err_no_api_key(llm_client.provider_of(model)))
        raise typer.Exit(1) from exc


def open_store(db_path: Path, cfg: ChatRecallConfig) -> VectorStore:
    try:
        return VectorStore(db_path, cfg.embedding.model, cfg.embedding.dimensions)
    except InvalidInputError as exc:
        console.print(err_index_mismatch(str(exc)))
        raise typer.Exit(1) from exc
    except StoreUnavailableError as exc:
        console.print(err_store(str(exc)))
        raise typer.Exit(1) from exc


def open_checkpoints(db_path: Path) -> CheckpointStore:
    try:
        return CheckpointStore(db_path)
    except StoreUnavailableError as exc:
        console.print(err_store(str(exc)))
        raise typer.Exit(1) from exc


def make_embedder(cfg: ChatRecallConfig) -> Embedder:
    e = cfg.embedding
    return Embedder(
        EmbedderConfig(
            model=e.model,
            dimensions=e.dimensions,
            batch_size=e.batch_size,
            batch_delay=e.batch_delay,
            min_text_length=e.min_text_length,
        )
    )
