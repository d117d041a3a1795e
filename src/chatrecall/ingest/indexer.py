"""Background incremental indexer.

Per cycle, for every scope the source knows:
  1. fetch records changed at or after the scope's checkpoint
  2. normalize + batch-embed their text (too-short texts and boundary
     records already stored are skipped)
  3. upsert the resulting records
  4. apply the source's deletion feed, if it has one
  5. advance the checkpoint to the newest change timestamp fetched

Step 5 runs only after step 3 committed; a failure anywhere before it leaves the
checkpoint where it was, so the scope is re-read next cycle (at-least-once).
A failing scope is reported as IndexingPartialFailure and never stops the
remaining scopes.

State machine (global and per scope): IDLE -> SYNCING -> IDLE | FAILED.
FAILED is left on the next tick. Only one cycle runs at a time; a tick that
arrives while one is running returns immediately with ``ran=False``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

from chatrecall.db.checkpoints import CheckpointStore
from chatrecall.db.models import Record
from chatrecall.db.store import VectorStore
from chatrecall.exceptions import ChatRecallError, IndexingPartialFailure
from chatrecall.ingest.source import DeletionFeed, MessageSource, SourceRecord
from chatrecall.rag.embedder import Embedder

logger = logging.getLogger(__name__)


class IndexerState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    FAILED = "failed"


@dataclass
class ScopeResult:
    scope: str
    fetched: int = 0
    indexed: int = 0
    skipped: int = 0
    deleted: int = 0
    checkpoint: float | None = None
    error: IndexingPartialFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CycleReport:
    """Outcome of one run_cycle() call.

    Attributes:
        ran: False when the call collapsed into an already running cycle.
        scopes: Per-scope outcomes, in processing order.
        error: Set when the cycle could not start (e.g. listing scopes failed).
        duration: Wall-clock seconds spent in the cycle.
    """

    ran: bool = True
    scopes: list[ScopeResult] = field(default_factory=list)
    error: Exception | None = None
    duration: float = 0.0

    @property
    def failures(self) -> list[IndexingPartialFailure]:
        return [s.error for s in self.scopes if s.error is not None]

    @property
    def indexed(self) -> int:
        return sum(s.indexed for s in self.scopes)

    @property
    def ok(self) -> bool:
        return self.ran and self.error is None and not self.failures


class Indexer:
    """Keeps the vector store in step with a message source.

    Args:
        source: Source-of-truth collaborator.
        embedder: Embedder used for document vectors.
        store: Vector store to write into.
        checkpoints: Durable per-scope checkpoints.
        interval: Seconds between cycles when running in the background.
    """

    def __init__(
        self,
        source: MessageSource,
        embedder: Embedder,
        store: VectorStore,
        checkpoints: CheckpointStore,
        interval: float = 3600.0,
    ) -> None:
        self.source = source
        self.embedder = embedder
        self.store = store
        self.checkpoints = checkpoints
        self.interval = interval

        self._cycle_lock = threading.Lock()
        self._state = IndexerState.IDLE
        self._scope_states: dict[str, IndexerState] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._warned_no_deletions = False

    @property
    def state(self) -> IndexerState:
        return self._state

    @property
    def scope_states(self) -> dict[str, IndexerState]:
        return dict(self._scope_states)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleReport:
        """Run one sync cycle over every scope, unless one is already running."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Indexing cycle already in progress; tick ignored")
            return CycleReport(ran=False)

        started = time.monotonic()
        report = CycleReport()
        try:
            self._state = IndexerState.SYNCING
            try:
                scopes = self.source.list_scopes()
            except Exception as exc:
                logger.error("Could not list scopes from source: %s", exc)
                report.error = exc
                self._state = IndexerState.FAILED
                return report

            for scope in scopes:
                report.scopes.append(self._sync_scope(scope))

            self._state = IndexerState.FAILED if report.failures else IndexerState.IDLE
            logger.info(
                "Indexing cycle finished: %d scopes, %d records indexed, %d failed",
                len(report.scopes),
                report.indexed,
                len(report.failures),
            )
            return report
        finally:
            if self._state is IndexerState.SYNCING:
                self._state = IndexerState.FAILED
            report.duration = time.monotonic() - started
            self._cycle_lock.release()

    def _sync_scope(self, scope: str) -> ScopeResult:
        result = ScopeResult(scope=scope)
        self._scope_states[scope] = IndexerState.SYNCING
        since: float | None = None
        try:
            since = self.checkpoints.get(scope)
            fetched = self.source.fetch_records_since(scope, since or 0.0)
            result.fetched = len(fetched)

            pending = self._drop_redelivered(fetched, since)
            if pending:
                records, stale_ids = self._embed(scope, pending)
                self.store.upsert_batch(records)
                result.indexed = len(records)
                if stale_ids:
                    result.deleted += self.store.delete_many(stale_ids)
            result.skipped = result.fetched - result.indexed

            result.deleted += self._apply_deletions(scope, since or 0.0)

            if fetched:
                newest = max(r.changed_at for r in fetched)
                result.checkpoint = self.checkpoints.advance(scope, newest)
            else:
                result.checkpoint = since
        except Exception as exc:
            if not isinstance(exc, ChatRecallError):
                logger.exception("Unexpected error while indexing scope '%s'", scope)
            failure = IndexingPartialFailure(scope, exc)
            logger.error("%s; checkpoint held at %s", failure, since)
            result.error = failure
            result.checkpoint = since
            self._scope_states[scope] = IndexerState.FAILED
            return result

        self._scope_states[scope] = IndexerState.IDLE
        if result.fetched:
            logger.info(
                "Scope '%s': %d fetched, %d indexed, %d skipped, checkpoint %.6f",
                scope,
                result.fetched,
                result.indexed,
                result.skipped,
                result.checkpoint,
            )
        return result

    def _drop_redelivered(
        self, fetched: list[SourceRecord], since: float | None
    ) -> list[SourceRecord]:
        """Drop boundary records already in the store.

        The fetch is inclusive, so records changed exactly at the checkpoint
        come back on every cycle; only unseen ones are embedded again.
        """
        if since is None:
            return fetched
        return [
            r for r in fetched
            if r.changed_at > since or self.store.get(r.id) is None
        ]

    def _embed(
        self, scope: str, fetched: list[SourceRecord]
    ) -> tuple[list[Record], list[str]]:
        """Embed fetched records. Returns (records to upsert, ids to drop).

        An edited message that now normalizes to nothing is dropped from the
        index instead of keeping its earlier text.
        """
        vectors = self.embedder.embed_batch([r.text for r in fetched])
        records: list[Record] = []
        stale_ids: list[str] = []
        for src, vector in zip(fetched, vectors):
            if self.embedder.is_sentinel(vector):
                if src.edited_at is not None:
                    stale_ids.append(src.id)
                continue
            records.append(
                Record(
                    id=src.id,
                    text=self.embedder.normalize(src.text),
                    scope=scope,
                    author=src.author,
                    timestamp=src.timestamp,
                    thread_id=src.thread_id,
                    vector=vector,
                )
            )
        return records, stale_ids

    def _apply_deletions(self, scope: str, since: float) -> int:
        if not isinstance(self.source, DeletionFeed):
            if not self._warned_no_deletions:
                logger.info(
                    "Source has no deletion feed; deleted messages stay indexed "
                    "until removed explicitly"
                )
                self._warned_no_deletions = True
            return 0
        deleted_ids = self.source.fetch_deletions_since(scope, since)
        return self.store.delete_many(list(deleted_ids))

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background loop: one cycle now, then one per interval."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="chatrecall-indexer", daemon=True
        )
        self._thread.start()
        logger.info("Background indexer started (interval %.0fs)", self.interval)

    def stop(self, timeout: float | None = None) -> None:
        """Stop the loop after the running cycle (if any) finishes."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Background indexer stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Indexing cycle crashed")
                self._state = IndexerState.FAILED
            self._stop_event.wait(self.interval)
