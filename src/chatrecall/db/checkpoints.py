"""Per-scope indexing checkpoints (high-water marks).

A checkpoint only moves forward: advance() keeps the larger of the stored and
offered timestamps inside the UPSERT itself. reset() is the only way back.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from chatrecall.db.connection import Database
from chatrecall.db.schema import initialize
from chatrecall.exceptions import StoreUnavailableError

_ADVANCE_SQL = """
INSERT INTO checkpoints (scope, last_indexed_ts) VALUES (?, ?)
ON CONFLICT(scope) DO UPDATE SET
    last_indexed_ts = MAX(last_indexed_ts, excluded.last_indexed_ts),
    updated_at      = datetime('now')
"""


class CheckpointStore:
    """Durable {scope: last indexed timestamp} map in the index database."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        with self._connect() as conn:
            initialize(conn)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = Database(self.db_path).connect()
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Checkpoint storage error: {exc}") from exc
        finally:
            conn.close()

    def get(self, scope: str) -> float | None:
        """Return the checkpoint for *scope*, or None if never indexed."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT last_indexed_ts FROM checkpoints WHERE scope = ?", (scope,)
            ).fetchone()
        return row["last_indexed_ts"] if row else None

    def advance(self, scope: str, timestamp: float) -> float:
        """Move *scope*'s checkpoint to *timestamp* unless it is already later.

        Committed before returning. Returns the stored value afterwards.
        """
        with self._connect() as conn:
            conn.execute(_ADVANCE_SQL, (scope, float(timestamp)))
            conn.commit()
            row = conn.execute(
                "SELECT last_indexed_ts FROM checkpoints WHERE scope = ?", (scope,)
            ).fetchone()
        return row["last_indexed_ts"]

    def reset(self, scope: str) -> bool:
        """Forget *scope*'s checkpoint so the next cycle re-reads it from the start."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM checkpoints WHERE scope = ?", (scope,))
            conn.commit()
        return cur.rowcount > 0

    def all(self) -> dict[str, float]:
        """Return {scope: checkpoint} for every scope, sorted by scope."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT scope, last_indexed_ts FROM checkpoints ORDER BY scope"
            ).fetchall()
        return {r["scope"]: r["last_indexed_ts"] for r in rows}
