"""Tests for the per-scope checkpoint store."""

from __future__ import annotations

from chatrecall.db.checkpoints import CheckpointStore


def test_unknown_scope_has_no_checkpoint(tmp_path):
    store = CheckpointStore(tmp_path / "chatrecall.db")
    assert store.get("eng") is None


def test_advance_sets_checkpoint(tmp_path):
    store = CheckpointStore(tmp_path / "chatrecall.db")
    assert store.advance("eng", 100.5) == 100.5
    assert store.get("eng") == 100.5


def test_advance_never_moves_backwards(tmp_path):
    store = CheckpointStore(tmp_path / "chatrecall.db")
    store.advance("eng", 200.0)
    assert store.advance("eng", 150.0) == 200.0
    assert store.get("eng") == 200.0


def test_checkpoints_are_per_scope(tmp_path):
    store = CheckpointStore(tmp_path / "chatrecall.db")
    store.advance("eng", 10.0)
    store.advance("ops", 20.0)
    assert store.all() == {"eng": 10.0, "ops": 20.0}


def test_checkpoints_survive_reopen(tmp_path):
    path = tmp_path / "chatrecall.db"
    CheckpointStore(path).advance("eng", 42.0)
    assert CheckpointStore(path).get("eng") == 42.0


def test_reset_is_the_only_way_back(tmp_path):
    store = CheckpointStore(tmp_path / "chatrecall.db")
    store.advance("eng", 300.0)
    assert store.reset("eng") is True
    assert store.get("eng") is None
    assert store.advance("eng", 5.0) == 5.0
    assert store.reset("never-seen") is False
