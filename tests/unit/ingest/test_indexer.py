"""Tests for the incremental Indexer: checkpoints, partial failure, single-flight."""

from __future__ import annotations

import logging
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from chatrecall.db.checkpoints import CheckpointStore
from chatrecall.db.store import VectorStore
from chatrecall.exceptions import EmbeddingProviderError, StoreUnavailableError
from chatrecall.ingest.indexer import Indexer, IndexerState
from chatrecall.ingest.source import SourceRecord
from chatrecall.rag.embedder import Embedder, EmbedderConfig

_PATCH = "chatrecall.rag.llm_client.litellm.embedding"
_MODEL = "cohere/embed-english-v3.0"


# ------------------------------------------------------------------
# Fakes + fixtures
# ------------------------------------------------------------------


class FakeSource:
    """In-memory source: {scope: [SourceRecord, ...]}."""

    def __init__(self, records: dict[str, list[SourceRecord]]) -> None:
        self.records = records
        self.calls: list[tuple[str, float]] = []

    def list_scopes(self) -> list[str]:
        return sorted(self.records)

    def fetch_records_since(self, scope: str, timestamp: float) -> list[SourceRecord]:
        self.calls.append((scope, timestamp))
        found = [r for r in self.records.get(scope, []) if r.changed_at >= timestamp]
        return sorted(found, key=lambda r: (r.changed_at, r.id))


class FakeSourceWithDeletions(FakeSource):
    def __init__(self, records, deletions: dict[str, list[str]]) -> None:
        super().__init__(records)
        self.deletions = deletions

    def fetch_deletions_since(self, scope: str, timestamp: float) -> list[str]:
        return self.deletions.get(scope, [])


def _msg(rid: str, text: str, ts: float, edited_at: float | None = None) -> SourceRecord:
    return SourceRecord(id=rid, text=text, author="ana", timestamp=ts, edited_at=edited_at)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "chatrecall.db"


@pytest.fixture
def store(db_path):
    return VectorStore(db_path, _MODEL, 5)


@pytest.fixture
def checkpoints(db_path):
    return CheckpointStore(db_path)


@pytest.fixture
def embedder():
    return Embedder(EmbedderConfig(model=_MODEL, dimensions=5, batch_delay=0.0))


def _indexer(source, embedder, store, checkpoints, **kwargs) -> Indexer:
    return Indexer(source, embedder, store, checkpoints, **kwargs)


# ------------------------------------------------------------------
# Incremental sync
# ------------------------------------------------------------------


def test_cycle_indexes_new_record_and_advances_checkpoint(
    api_key, store, checkpoints, embedder, fake_embedding
):
    t0, t1 = 1_000.0, 1_500.0
    checkpoints.advance("eng", t0)
    source = FakeSource({
        "eng": [
            _msg("eng:old", "an older message already indexed", 900.0),
            _msg("eng:new", "we chose Redis for caching", t1),
        ]
    })

    with patch(_PATCH, side_effect=fake_embedding):
        report = _indexer(source, embedder, store, checkpoints).run_cycle()

    assert report.ok
    assert checkpoints.get("eng") == t1
    assert store.count() == 1
    assert store.get("eng:new") is not None
    assert source.calls == [("eng", t0)]


def test_first_cycle_reads_from_the_beginning(
    api_key, store, checkpoints, embedder, fake_embedding
):
    source = FakeSource({"eng": [_msg("eng:1", "deploy failed due to memory", 50.0)]})
    with patch(_PATCH, side_effect=fake_embedding):
        _indexer(source, embedder, store, checkpoints).run_cycle()
    assert source.calls == [("eng", 0.0)]
    assert checkpoints.get("eng") == 50.0


def test_short_texts_are_skipped_but_checkpoint_moves_past_them(
    api_key, store, checkpoints, embedder, fake_embedding
):
    source = FakeSource({
        "eng": [
            _msg("eng:1", "we chose Redis for caching", 10.0),
            _msg("eng:2", "ok :+1:", 20.0),
        ]
    })
    with patch(_PATCH, side_effect=fake_embedding):
        report = _indexer(source, embedder, store, checkpoints).run_cycle()

    scope = report.scopes[0]
    assert (scope.fetched, scope.indexed, scope.skipped) == (2, 1, 1)
    assert store.get("eng:2") is None
    assert checkpoints.get("eng") == 20.0


def test_stored_text_is_normalized(api_key, store, checkpoints, embedder, fake_embedding):
    source = FakeSource({"eng": [_msg("eng:1", "ask <@U123> about   caching :fire:", 1.0)]})
    with patch(_PATCH, side_effect=fake_embedding):
        _indexer(source, embedder, store, checkpoints).run_cycle()
    assert store.get("eng:1").text == "ask @user about caching"


def test_rerun_without_changes_is_idempotent(
    api_key, store, checkpoints, embedder, fake_embedding
):
    source = FakeSource({"eng": [_msg("eng:1", "we chose Redis for caching", 10.0)]})
    indexer = _indexer(source, embedder, store, checkpoints)
    with patch(_PATCH, side_effect=fake_embedding):
        indexer.run_cycle()
        indexer.run_cycle()
    assert store.count() == 1
    assert checkpoints.get("eng") == 10.0


def test_boundary_record_is_not_embedded_again(
    api_key, store, checkpoints, embedder, fake_embedding
):
    source = FakeSource({"eng": [_msg("eng:1", "we chose Redis for caching", 10.0)]})
    indexer = _indexer(source, embedder, store, checkpoints)
    with patch(_PATCH, side_effect=fake_embedding) as embedding:
        indexer.run_cycle()
        report = indexer.run_cycle()

    assert embedding.call_count == 1
    scope = report.scopes[0]
    assert (scope.fetched, scope.indexed, scope.skipped) == (1, 0, 1)
    assert checkpoints.get("eng") == 10.0


def test_unseen_record_at_checkpoint_is_indexed(
    api_key, store, checkpoints, embedder, fake_embedding
):
    checkpoints.advance("eng", 10.0)
    source = FakeSource({"eng": [_msg("eng:late", "we chose Redis for caching", 10.0)]})
    with patch(_PATCH, side_effect=fake_embedding):
        _indexer(source, embedder, store, checkpoints).run_cycle()
    assert store.get("eng:late") is not None


# ------------------------------------------------------------------
# Edits + deletions
# ------------------------------------------------------------------


def test_edit_overwrites_same_id(api_key, store, checkpoints, embedder, fake_embedding):
    source = FakeSource({"eng": [_msg("eng:1", "we chose memcached for caching", 10.0)]})
    indexer = _indexer(source, embedder, store, checkpoints)
    with patch(_PATCH, side_effect=fake_embedding):
        indexer.run_cycle()
        source.records["eng"] = [
            _msg("eng:1", "we chose Redis for caching after all", 10.0, edited_at=30.0)
        ]
        indexer.run_cycle()

    assert store.count() == 1
    assert store.get("eng:1").text == "we chose Redis for caching after all"
    assert checkpoints.get("eng") == 30.0


def test_edit_to_empty_text_removes_record(
    api_key, store, checkpoints, embedder, fake_embedding
):
    source = FakeSource({"eng": [_msg("eng:1", "we chose Redis for caching", 10.0)]})
    indexer = _indexer(source, embedder, store, checkpoints)
    with patch(_PATCH, side_effect=fake_embedding):
        indexer.run_cycle()
        source.records["eng"] = [_msg("eng:1", "nvm", 10.0, edited_at=40.0)]
        report = indexer.run_cycle()

    assert store.get("eng:1") is None
    assert report.scopes[0].deleted == 1


def test_deletion_feed_removes_records(api_key, store, checkpoints, embedder, fake_embedding):
    source = FakeSourceWithDeletions(
        {"eng": [_msg("eng:1", "we chose Redis for caching", 10.0),
                 _msg("eng:2", "deploy failed due to memory", 20.0)]},
        deletions={},
    )
    indexer = _indexer(source, embedder, store, checkpoints)
    with patch(_PATCH, side_effect=fake_embedding):
        indexer.run_cycle()
        source.deletions = {"eng": ["eng:2"]}
        report = indexer.run_cycle()

    assert store.get("eng:2") is None
    assert store.count() == 1
    assert report.scopes[0].deleted == 1


def test_missing_deletion_feed_is_logged_once(
    api_key, store, checkpoints, embedder, fake_embedding, caplog
):
    source = FakeSource({"eng": [_msg("eng:1", "we chose Redis for caching", 10.0)],
                         "ops": [_msg("ops:1", "deploy failed due to memory", 10.0)]})
    indexer = _indexer(source, embedder, store, checkpoints)
    with caplog.at_level(logging.INFO, logger="chatrecall"):
        with patch(_PATCH, side_effect=fake_embedding):
            indexer.run_cycle()
            indexer.run_cycle()
    notices = [r for r in caplog.records if "no deletion feed" in r.getMessage()]
    assert len(notices) == 1


# ------------------------------------------------------------------
# Partial failure
# ------------------------------------------------------------------


def test_failing_scope_does_not_block_others(
    api_key, store, checkpoints, embedder, fake_embedding
):
    checkpoints.advance("a", 5.0)
    source = FakeSource({
        "a": [_msg("a:1", "boom this message breaks the provider", 10.0)],
        "b": [_msg("b:1", "we chose Redis for caching", 20.0)],
    })

    def provider(**kwargs):
        if any("boom" in text for text in kwargs["input"]):
            raise RuntimeError("provider down")
        return fake_embedding(**kwargs)

    indexer = _indexer(source, embedder, store, checkpoints)
    with patch(_PATCH, side_effect=provider):
        report = indexer.run_cycle()

    assert report.ran and not report.ok
    assert [f.scope for f in report.failures] == ["a"]
    assert isinstance(report.failures[0].cause, EmbeddingProviderError)
    assert checkpoints.get("a") == 5.0
    assert checkpoints.get("b") == 20.0
    assert store.get("b:1") is not None
    assert indexer.scope_states == {"a": IndexerState.FAILED, "b": IndexerState.IDLE}
    assert indexer.state is IndexerState.FAILED


def test_checkpoint_read_failure_is_isolated_to_its_scope(
    api_key, store, checkpoints, embedder, fake_embedding
):
    source = FakeSource({
        "a": [_msg("a:1", "deploy failed due to memory", 10.0)],
        "b": [_msg("b:1", "we chose Redis for caching", 20.0)],
    })
    real_get = checkpoints.get

    def get(scope):
        if scope == "a":
            raise StoreUnavailableError("locked")
        return real_get(scope)

    indexer = _indexer(source, embedder, store, checkpoints)
    with patch(_PATCH, side_effect=fake_embedding), \
            patch.object(checkpoints, "get", side_effect=get):
        report = indexer.run_cycle()

    assert [f.scope for f in report.failures] == ["a"]
    assert isinstance(report.failures[0].cause, StoreUnavailableError)
    assert store.get("b:1") is not None
    assert real_get("b") == 20.0
    assert real_get("a") is None
    assert indexer.scope_states == {"a": IndexerState.FAILED, "b": IndexerState.IDLE}
    assert indexer.state is IndexerState.FAILED


def test_unexpected_cycle_error_leaves_failed_state(store, checkpoints, embedder):
    source = FakeSource({"a": []})
    indexer = _indexer(source, embedder, store, checkpoints)
    with patch.object(indexer, "_sync_scope", side_effect=RuntimeError("bug")):
        with pytest.raises(RuntimeError):
            indexer.run_cycle()
    assert indexer.state is IndexerState.FAILED


def test_failed_scope_recovers_next_cycle(
    api_key, store, checkpoints, embedder, fake_embedding
):
    source = FakeSource({"a": [_msg("a:1", "we chose Redis for caching", 10.0)]})
    indexer = _indexer(source, embedder, store, checkpoints)

    with patch(_PATCH, side_effect=RuntimeError("provider down")):
        indexer.run_cycle()
    assert indexer.scope_states["a"] is IndexerState.FAILED
    assert checkpoints.get("a") is None

    with patch(_PATCH, side_effect=fake_embedding):
        report = indexer.run_cycle()
    assert report.ok
    assert indexer.state is IndexerState.IDLE
    assert indexer.scope_states["a"] is IndexerState.IDLE
    assert checkpoints.get("a") == 10.0


def test_store_failure_holds_checkpoint(api_key, store, checkpoints, embedder, fake_embedding):
    checkpoints.advance("eng", 1.0)
    source = FakeSource({"eng": [_msg("eng:1", "we chose Redis for caching", 10.0)]})
    with patch(_PATCH, side_effect=fake_embedding), patch.object(
        store, "upsert_batch", side_effect=StoreUnavailableError("disk full")
    ):
        report = _indexer(source, embedder, store, checkpoints).run_cycle()

    assert report.failures[0].scope == "eng"
    assert checkpoints.get("eng") == 1.0


def test_checkpoint_advances_only_after_write(
    api_key, store, embedder, fake_embedding
):
    checkpoints = MagicMock()
    checkpoints.get.return_value = None
    seen_at_advance: list[int] = []
    checkpoints.advance.side_effect = lambda scope, ts: seen_at_advance.append(store.count()) or ts

    source = FakeSource({"eng": [_msg("eng:1", "we chose Redis for caching", 10.0)]})
    with patch(_PATCH, side_effect=fake_embedding):
        _indexer(source, embedder, store, checkpoints).run_cycle()

    assert seen_at_advance == [1]
    checkpoints.advance.assert_called_once_with("eng", 10.0)


def test_listing_scopes_failure_is_reported(store, checkpoints, embedder):
    source = MagicMock()
    source.list_scopes.side_effect = ConnectionError("export unreadable")
    report = _indexer(source, embedder, store, checkpoints).run_cycle()
    assert report.ran is True
    assert isinstance(report.error, ConnectionError)
    assert not report.ok


# ------------------------------------------------------------------
# Single-flight + background loop
# ------------------------------------------------------------------


def test_tick_during_running_cycle_is_a_noop(store, checkpoints, embedder):
    entered = threading.Event()
    release = threading.Event()

    class SlowSource(FakeSource):
        def list_scopes(self):
            entered.set()
            release.wait(5)
            return []

    indexer = _indexer(SlowSource({}), embedder, store, checkpoints)
    first = threading.Thread(target=indexer.run_cycle)
    first.start()
    try:
        assert entered.wait(5)
        assert indexer.state is IndexerState.SYNCING
        second = indexer.run_cycle()
        assert second.ran is False
    finally:
        release.set()
        first.join(5)
    assert indexer.state is IndexerState.IDLE


def test_background_loop_runs_and_stops(
    api_key, store, checkpoints, embedder, fake_embedding
):
    source = FakeSource({"eng": [_msg("eng:1", "we chose Redis for caching", 10.0)]})
    indexer = _indexer(source, embedder, store, checkpoints, interval=3600.0)

    with patch(_PATCH, side_effect=fake_embedding):
        indexer.start()
        deadline = time.monotonic() + 5
        while checkpoints.get("eng") is None and time.monotonic() < deadline:
            time.sleep(0.05)
        assert indexer.running
        indexer.stop(timeout=5)

    assert not indexer.running
    assert store.count() == 1
    assert len(source.calls) == 1


def test_stop_waits_for_running_cycle(
    api_key, store, checkpoints, embedder, fake_embedding
):
    fetching = threading.Event()
    release = threading.Event()

    class BlockingSource(FakeSource):
        def fetch_records_since(self, scope, timestamp):
            fetching.set()
            release.wait(5)
            return super().fetch_records_since(scope, timestamp)

    source = BlockingSource({"eng": [_msg("eng:1", "we chose Redis for caching", 10.0)]})
    indexer = _indexer(source, embedder, store, checkpoints, interval=3600.0)

    with patch(_PATCH, side_effect=fake_embedding):
        indexer.start()
        assert fetching.wait(5)
        stopper = threading.Thread(target=indexer.stop)
        stopper.start()
        stopper.join(0.2)
        assert stopper.is_alive()
        assert store.count() == 0

        release.set()
        stopper.join(5)

    assert not stopper.is_alive()
    assert not indexer.running
    assert store.get("eng:1") is not None
    assert checkpoints.get("eng") == 10.0
