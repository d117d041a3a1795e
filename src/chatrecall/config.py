"""chatrecall configuration loader.

Priority (high → low):
  1. CLI flags                (handled at call site — not in this module)
  2. Environment variables    (CHATRECALL_*)
  3. Per-project chatrecall.yaml
  4. Global ~/.chatrecall/config.yaml  (no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import logging
import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".chatrecall"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "chatrecall.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like token_budget or max_results.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # bot_token, access_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # signing_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(["retrieval", "embedding", "index", "logging"])

_LOG_LEVELS: frozenset[str] = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class RetrievalCfg:
    """Query-time behaviour (chatrecall.yaml: retrieval:)."""

    enabled: bool = True
    max_results: int = 10
    min_similarity: float = 0.5
    rerank: bool = False
    rerank_model: str = "openai/gpt-4o-mini"
    context_window: int = 1
    token_budget: int = 4_096
    fallback_to_unscoped: bool = True


@dataclass
class EmbeddingCfg:
    """Embedding model + batching (chatrecall.yaml: embedding:)."""

    model: str = "cohere/embed-english-v3.0"
    dimensions: int = 1024
    batch_size: int = 96
    batch_delay: float = 0.1
    min_text_length: int = 10


@dataclass
class IndexCfg:
    """Index storage and refresh interval (chatrecall.yaml: index:)."""

    path: str = "./data/chatrecall.db"
    interval_seconds: float = 3600.0


@dataclass
class LoggingCfg:
    level: str = "INFO"


@dataclass
class ChatRecallConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    index: IndexCfg = field(default_factory=IndexCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)

    @property
    def log_level(self) -> int:
        return logging.getLevelName(self.logging.level)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: ChatRecallConfig) -> None:
    r, e, i = cfg.retrieval, cfg.embedding, cfg.index
    if r.max_results < 1:
        raise ConfigError(f"retrieval.max_results must be >= 1, got {r.max_results}")
    if not -1.0 <= r.min_similarity <= 1.0:
        raise ConfigError(
            f"retrieval.min_similarity must be within [-1, 1], got {r.min_similarity}"
        )
    if r.context_window < 0:
        raise ConfigError(f"retrieval.context_window must be >= 0, got {r.context_window}")
    if e.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {e.dimensions}")
    if e.batch_size < 1:
        raise ConfigError(f"embedding.batch_size must be >= 1, got {e.batch_size}")
    if e.batch_delay < 0:
        raise ConfigError(f"embedding.batch_delay must be >= 0, got {e.batch_delay}")
    if i.interval_seconds <= 0:
        raise ConfigError(f"index.interval_seconds must be > 0, got {i.interval_seconds}")
    if cfg.logging.level not in _LOG_LEVELS:
        raise ConfigError(
            f"logging.level must be one of {sorted(_LOG_LEVELS)}, got '{cfg.logging.level}'"
        )


def _parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got '{value}'")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> ChatRecallConfig:
    """Build a *ChatRecallConfig* from a merged raw YAML dict."""
    cfg = ChatRecallConfig()

    try:
        if "retrieval" in data:
            r = data["retrieval"] or {}
            d = cfg.retrieval
            cfg.retrieval = RetrievalCfg(
                enabled=_parse_bool(r.get("enabled", d.enabled), "retrieval.enabled"),
                max_results=int(r.get("max_results", d.max_results)),
                min_similarity=float(r.get("min_similarity", d.min_similarity)),
                rerank=_parse_bool(r.get("rerank", d.rerank), "retrieval.rerank"),
                rerank_model=str(r.get("rerank_model", d.rerank_model)),
                context_window=int(r.get("context_window", d.context_window)),
                token_budget=int(r.get("token_budget", d.token_budget)),
                fallback_to_unscoped=_parse_bool(
                    r.get("fallback_to_unscoped", d.fallback_to_unscoped),
                    "retrieval.fallback_to_unscoped",
                ),
            )

        if "embedding" in data:
            e = data["embedding"] or {}
            d = cfg.embedding
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", d.model)),
                dimensions=int(e.get("dimensions", d.dimensions)),
                batch_size=int(e.get("batch_size", d.batch_size)),
                batch_delay=float(e.get("batch_delay", d.batch_delay)),
                min_text_length=int(e.get("min_text_length", d.min_text_length)),
            )

        if "index" in data:
            i = data["index"] or {}
            cfg.index = IndexCfg(
                path=str(i.get("path", cfg.index.path)),
                interval_seconds=float(i.get("interval_seconds", cfg.index.interval_seconds)),
            )

        if "logging" in data:
            lg = data["logging"] or {}
            cfg.logging = LoggingCfg(level=str(lg.get("level", cfg.logging.level)).upper())
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: ChatRecallConfig) -> ChatRecallConfig:
    """Apply CHATRECALL_* environment variable overrides."""
    env = os.environ
    try:
        if (v := env.get("CHATRECALL_RETRIEVAL_ENABLED")) is not None:
            cfg.retrieval.enabled = _parse_bool(v, "CHATRECALL_RETRIEVAL_ENABLED")
        if v := env.get("CHATRECALL_MAX_RESULTS"):
            cfg.retrieval.max_results = int(v)
        if v := env.get("CHATRECALL_MIN_SIMILARITY"):
            cfg.retrieval.min_similarity = float(v)
        if v := env.get("CHATRECALL_EMBEDDING_MODEL"):
            cfg.embedding.model = v
        if v := env.get("CHATRECALL_EMBEDDING_DIMENSIONS"):
            cfg.embedding.dimensions = int(v)
        if v := env.get("CHATRECALL_INDEX_PATH"):
            cfg.index.path = v
        if v := env.get("CHATRECALL_INDEX_INTERVAL"):
            cfg.index.interval_seconds = float(v)
        if v := env.get("CHATRECALL_LOG_LEVEL"):
            cfg.logging.level = v.upper()
    except ValueError as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid environment override: {exc}") from exc
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> ChatRecallConfig:
    """Load and return a merged *ChatRecallConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *chatrecall.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields or any
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.chatrecall/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# chatrecall global configuration: model defaults only.\n"
            "# NEVER store API keys here. Use environment variables:\n"
            "#   export COHERE_API_KEY=...\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: cohere/embed-english-v3.0\n"
            "  dimensions: 1024\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target


def write_project_config(project_dir: Path, cfg: ChatRecallConfig | None = None) -> Path:
    """Write a starter chatrecall.yaml into *project_dir* (never overwrites)."""
    cfg = cfg or ChatRecallConfig()
    target = project_dir / _PROJECT_CONFIG_NAME
    if target.exists():
        return target
    content = (
        "# chatrecall configuration. API keys belong in environment variables:\n"
        "#   export COHERE_API_KEY=...   (embeddings)\n"
        "#   export OPENAI_API_KEY=...   (optional re-ranking)\n"
        "\n"
        "retrieval:\n"
        f"  enabled: {str(cfg.retrieval.enabled).lower()}\n"
        f"  max_results: {cfg.retrieval.max_results}\n"
        f"  min_similarity: {cfg.retrieval.min_similarity}\n"
        f"  rerank: {str(cfg.retrieval.rerank).lower()}\n"
        "\n"
        "embedding:\n"
        f"  model: {cfg.embedding.model}\n"
        f"  dimensions: {cfg.embedding.dimensions}\n"
        "\n"
        "index:\n"
        f"  path: {cfg.index.path}\n"
        f"  interval_seconds: {cfg.index.interval_seconds:g}\n"
    )
    target.write_text(content, encoding="utf-8")
    return target
