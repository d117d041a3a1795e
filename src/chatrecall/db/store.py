"""Vector store: durable (id, vector, text, metadata) rows with cosine search.

Every operation opens its own short-lived connection, so the background indexer
(single writer) and any number of query threads (readers) never share a
connection. WAL journaling lets readers proceed while a write is in flight; a
reader sees either the previous or the new row, never a partial one.

Search is exhaustive over the (scope-filtered) rows using sqlite-vec's
vec_distance_cosine(). The scope filter is part of the WHERE clause, so ranking
and LIMIT only ever see in-scope rows.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from chatrecall.db.connection import Database
from chatrecall.db.models import Record, ScoredResult
from chatrecall.db.schema import initialize
from chatrecall.db.vectors import (
    deserialize_vector,
    ensure_index_meta,
    is_zero_vector,
    serialize_vector,
)
from chatrecall.exceptions import InvalidInputError, StoreUnavailableError

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = "id, text, scope, author, ts, thread_id, metadata"

# Single statement: a concurrent upsert of the same id replaces the whole row.
_UPSERT_SQL = """
INSERT INTO records (id, text, embedding, scope, author, ts, thread_id, metadata)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    text       = excluded.text,
    embedding  = excluded.embedding,
    scope      = excluded.scope,
    author     = excluded.author,
    ts         = excluded.ts,
    thread_id  = excluded.thread_id,
    metadata   = excluded.metadata,
    indexed_at = datetime('now')
"""


class VectorStore:
    """Single-process vector index backed by one SQLite file.

    Args:
        db_path: Location of the index database (created if missing).
        model: Embedding model the stored vectors come from.
        dimensions: Vector dimension; every stored and query vector must match.

    Raises:
        StoreUnavailableError: If the database cannot be opened.
        InvalidInputError: If the database was built with another model or dimension.
    """

    def __init__(self, db_path: Path | str, model: str, dimensions: int) -> None:
        self.db_path = Path(db_path)
        self.model = model
        self.dimensions = dimensions
        with self._connect() as conn:
            initialize(conn)
            ensure_index_meta(conn, model, dimensions)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = Database(self.db_path).connect()
        try:
            yield conn
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreUnavailableError(f"Index database error: {exc}") from exc
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, record: Record) -> None:
        """Insert *record* or overwrite the stored row with the same id."""
        self.upsert_batch([record])

    def upsert_batch(self, records: list[Record]) -> None:
        """Upsert all *records* in a single transaction.

        Raises:
            InvalidInputError: If any record is malformed; nothing is written.
        """
        if not records:
            return
        rows = [self._to_row(r) for r in records]
        with self._connect() as conn:
            conn.executemany(_UPSERT_SQL, rows)
            conn.commit()
        logger.debug("Upserted %d records", len(rows))

    def delete(self, record_id: str) -> bool:
        """Delete one record. Returns True if a row was removed."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
            conn.commit()
        return cur.rowcount > 0

    def delete_many(self, record_ids: list[str]) -> int:
        """Delete every record in *record_ids*; returns the number removed."""
        if not record_ids:
            return 0
        with self._connect() as conn:
            cur = conn.executemany(
                "DELETE FROM records WHERE id = ?", [(i,) for i in record_ids]
            )
            conn.commit()
        return cur.rowcount

    def delete_by_scope(self, scope: str) -> int:
        """Delete every record in *scope*; returns the number removed."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM records WHERE scope = ?", (scope,))
            conn.commit()
        logger.info("Deleted %d records from scope '%s'", cur.rowcount, scope)
        return cur.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(
        self,
        query_vector: list[float],
        limit: int = 10,
        scope: str | None = None,
        min_score: float | None = None,
    ) -> list[ScoredResult]:
        """Return the best *limit* records by cosine similarity, best first.

        Args:
            query_vector: Vector with the store's dimension.
            limit: Maximum number of results.
            scope: Only rank records whose scope equals this value.
            min_score: Exclude results scoring below this floor.

        Returns:
            ScoredResults ordered by descending score, ties by ascending id.
        """
        self._check_dimensions(query_vector)
        if limit <= 0:
            return []

        if is_zero_vector(query_vector):
            score_expr, params = "0.0", []
        else:
            score_expr = "1.0 - vec_distance_cosine(embedding, ?)"
            params = [serialize_vector(query_vector)]

        where = ""
        if scope is not None:
            where = "WHERE scope = ?"
            params.append(scope)

        floor = ""
        if min_score is not None:
            floor = "WHERE score >= ?"
            params.append(min_score)

        params.append(limit)
        sql = f"""
            SELECT {_RECORD_COLUMNS}, score FROM (
                SELECT {_RECORD_COLUMNS}, {score_expr} AS score FROM records {where}
            ) {floor}
            ORDER BY score DESC, id ASC
            LIMIT ?
        """
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            ScoredResult(record=_row_to_record(r), score=max(-1.0, min(1.0, r["score"])))
            for r in rows
        ]

    def get(self, record_id: str, with_vector: bool = False) -> Record | None:
        """Return a record by id, or None if it is not stored."""
        columns = f"{_RECORD_COLUMNS}, embedding" if with_vector else _RECORD_COLUMNS
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {columns} FROM records WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            return None
        record = _row_to_record(row)
        if with_vector:
            record.vector = deserialize_vector(row["embedding"])
        return record

    def neighbors(self, record: Record, before: int = 1, after: int = 1) -> list[Record]:
        """Return records adjacent to *record* in time, oldest first.

        Neighbours share the record's scope and thread (top-level messages
        neighbour other top-level messages).
        """
        thread_key = record.thread_id or ""
        base = (
            f"SELECT {_RECORD_COLUMNS} FROM records "
            "WHERE scope = ? AND COALESCE(thread_id, '') = ? AND id != ? "
        )
        with self._connect() as conn:
            prev_rows = []
            next_rows = []
            if before > 0:
                prev_rows = conn.execute(
                    base + "AND ts <= ? ORDER BY ts DESC, id DESC LIMIT ?",
                    (record.scope, thread_key, record.id, record.timestamp, before),
                ).fetchall()
            if after > 0:
                next_rows = conn.execute(
                    base + "AND ts > ? ORDER BY ts ASC, id ASC LIMIT ?",
                    (record.scope, thread_key, record.id, record.timestamp, after),
                ).fetchall()
        return [_row_to_record(r) for r in reversed(prev_rows)] + [
            _row_to_record(r) for r in next_rows
        ]

    def count(self, scope: str | None = None) -> int:
        """Return the number of stored records (optionally within *scope*)."""
        with self._connect() as conn:
            if scope is None:
                return conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM records WHERE scope = ?", (scope,)
            ).fetchone()[0]

    def count_by_scope(self) -> dict[str, int]:
        """Return {scope: record count} for every scope with stored records."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT scope, COUNT(*) AS n FROM records GROUP BY scope ORDER BY scope"
            ).fetchall()
        return {r["scope"]: r["n"] for r in rows}

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_dimensions(self, vector: list[float]) -> None:
        if len(vector) != self.dimensions:
            raise InvalidInputError(
                f"Vector has {len(vector)} dimensions, index expects {self.dimensions}"
            )

    def _to_row(self, record: Record) -> tuple:
        if not record.id:
            raise InvalidInputError("Record id must be non-empty")
        if not record.text.strip():
            raise InvalidInputError(f"Record '{record.id}' has empty text")
        if not record.scope:
            raise InvalidInputError(f"Record '{record.id}' has no scope")
        if record.vector is None:
            raise InvalidInputError(f"Record '{record.id}' has no vector")
        self._check_dimensions(record.vector)
        if is_zero_vector(record.vector):
            raise InvalidInputError(
                f"Record '{record.id}' carries the zero-vector skip sentinel"
            )
        return (
            record.id,
            record.text,
            serialize_vector(record.vector),
            record.scope,
            record.author,
            float(record.timestamp),
            record.thread_id,
            record.extra,
        )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_record(row: sqlite3.Row) -> Record:
    return Record(
        id=row["id"],
        text=row["text"],
        scope=row["scope"],
        author=row["author"],
        timestamp=row["ts"],
        thread_id=row["thread_id"],
        extra=row["metadata"],
    )
