"""Vector serialization and embedding-model bookkeeping for the index."""

from __future__ import annotations

import re
import sqlite3
import struct

import sqlite_vec

from chatrecall.exceptions import InvalidInputError


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a stable identifier.

    Examples:
        "cohere/embed-english-v3.0" -> "cohere_embed_english_v3_0"
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def serialize_vector(vector: list[float]) -> bytes:
    """Pack *vector* as the compact float32 blob sqlite-vec functions accept."""
    return sqlite_vec.serialize_float32(vector)


def deserialize_vector(blob: bytes) -> list[float]:
    """Inverse of serialize_vector()."""
    return list(struct.unpack(f"{len(blob) // 4}f", blob))


def is_zero_vector(vector: list[float]) -> bool:
    """True if every component is 0 (the embedder's skip sentinel)."""
    return not any(vector)


def ensure_index_meta(conn: sqlite3.Connection, model: str, dimensions: int) -> None:
    """Record (or verify) the embedding model and dimension the index is built with.

    The first call on a fresh database stores the pair. Later calls must match,
    because vectors from different models are not comparable.

    Raises:
        InvalidInputError: If *dimensions* < 1 or the stored model/dimension
            differ from the requested ones.
    """
    if dimensions < 1:
        raise InvalidInputError(f"dimensions must be >= 1, got {dimensions}")

    slug = model_to_slug(model)
    rows = {
        r["key"]: r["value"]
        for r in conn.execute("SELECT key, value FROM index_meta").fetchall()
    }

    if not rows:
        conn.executemany(
            "INSERT INTO index_meta (key, value) VALUES (?, ?)",
            [("model", slug), ("dimensions", str(dimensions))],
        )
        conn.commit()
        return

    if rows.get("model") != slug or int(rows.get("dimensions", "0")) != dimensions:
        raise InvalidInputError(
            f"Index was built with '{rows.get('model')}' ({rows.get('dimensions')} dims) "
            f"but '{slug}' ({dimensions} dims) is configured. "
            "Remove the index file and re-index, or restore the original model."
        )


def read_index_meta(conn: sqlite3.Connection) -> dict[str, str]:
    """Return the stored index metadata (empty for an unused database)."""
    return {
        r["key"]: r["value"]
        for r in conn.execute("SELECT key, value FROM index_meta").fetchall()
    }
