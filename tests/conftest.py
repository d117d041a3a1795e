"""Shared pytest fixtures."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from chatrecall.db.connection import Database
from chatrecall.db.schema import initialize

# Tiny deterministic "embedding space" for end-to-end tests: each known word
# adds weight to one concept axis; every text carries a small constant on the
# last axis so no vector is ever all-zero.
CONCEPT_DIMS = 5
_CONCEPTS = {
    "redis": 0, "caching": 0, "cache": 0, "database": 0, "postgres": 0, "memcached": 0,
    "chose": 1, "decided": 1, "decide": 1, "decision": 1, "agreed": 1,
    "deploy": 2, "deployment": 2, "failed": 2, "rollback": 2, "release": 2,
    "weather": 3, "sunny": 3, "nice": 3, "today": 3, "rain": 3,
}


def concept_vector(text: str) -> list[float]:
    vector = [0.0] * (CONCEPT_DIMS - 1) + [0.1]
    for word in re.findall(r"[a-z]+", text.lower()):
        axis = _CONCEPTS.get(word)
        if axis is not None:
            vector[axis] += 1.0
    return vector


def fake_embedding_response(model=None, input=None, **kwargs):  # noqa: A002
    """Stand-in for litellm.embedding(): one concept vector per input, in order."""
    response = MagicMock()
    response.data = [{"embedding": concept_vector(text)} for text in input]
    return response


@pytest.fixture
def concept():
    """The concept_vector() function (CONCEPT_DIMS dimensions)."""
    return concept_vector


@pytest.fixture
def fake_embedding():
    """Side effect for patching litellm.embedding with concept vectors."""
    return fake_embedding_response


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Keep tests away from ~/.chatrecall and CHATRECALL_* variables."""
    monkeypatch.setattr(
        "chatrecall.config._GLOBAL_CONFIG_PATH",
        tmp_path / "home" / ".chatrecall" / "config.yaml",
    )
    for var in [
        "CHATRECALL_RETRIEVAL_ENABLED",
        "CHATRECALL_MAX_RESULTS",
        "CHATRECALL_MIN_SIMILARITY",
        "CHATRECALL_EMBEDDING_MODEL",
        "CHATRECALL_EMBEDDING_DIMENSIONS",
        "CHATRECALL_INDEX_PATH",
        "CHATRECALL_INDEX_INTERVAL",
        "CHATRECALL_LOG_LEVEL",
    ]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _restore_package_log_level():
    """CLI runs set the chatrecall logger level; put it back after each test."""
    logger = logging.getLogger("chatrecall")
    level = logger.level
    yield
    logger.setLevel(level)


@pytest.fixture
def api_key(monkeypatch):
    """Provide dummy provider keys so API-key validation passes."""
    monkeypatch.setenv("COHERE_API_KEY", "test-key")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "chatrecall.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


def _write(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


@pytest.fixture
def export_dir(tmp_path) -> Path:
    """Small workspace export: #eng with a thread and an edit, #ops with an unknown user."""
    root = tmp_path / "export"
    _write(root / "channels.json", [
        {"id": "C01", "name": "eng"},
        {"id": "C02", "name": "ops"},
        {"id": "C03", "name": "empty-no-folder"},
    ])
    _write(root / "users.json", [
        {"id": "U01", "name": "ana", "real_name": "Ana Lima", "profile": {"display_name": "ana"}},
        {"id": "U02", "name": "bob", "real_name": "Bob Stone", "profile": {"display_name": ""}},
    ])
    _write(root / "eng" / "2023-11-14.json", [
        {"type": "message", "user": "U01", "text": "we chose Redis for caching",
         "ts": "1700000000.000100"},
        {"type": "message", "subtype": "channel_join", "user": "U02",
         "text": "<@U02> has joined the channel", "ts": "1700000001.000100"},
        {"type": "message", "user": "U02", "text": "agreed, memcached was too limited",
         "ts": "1700000100.000200", "thread_ts": "1700000000.000100"},
    ])
    _write(root / "eng" / "2023-11-15.json", [
        {"type": "message", "user": "U01", "text": "deploy failed due to memory (edited)",
         "ts": "1700086400.000300", "edited": {"user": "U01", "ts": "1700090000.000000"}},
    ])
    _write(root / "ops" / "2023-11-14.json", [
        {"type": "message", "user": "U09", "text": "pager went off twice",
         "ts": "1700000500.000000"},
    ])
    return root


@pytest.fixture
def project(tmp_path, monkeypatch) -> Path:
    """Working directory with a chatrecall.yaml sized for concept vectors."""
    root = tmp_path / "proj"
    root.mkdir()
    config = {
        "retrieval": {"min_similarity": 0.3, "max_results": 5},
        "embedding": {"model": "cohere/embed-english-v3.0", "dimensions": CONCEPT_DIMS,
                      "batch_delay": 0},
        "index": {"path": "index.db"},
        "logging": {"level": "WARNING"},
    }
    (root / "chatrecall.yaml").write_text(yaml.dump(config), encoding="utf-8")
    monkeypatch.chdir(root)
    return root
