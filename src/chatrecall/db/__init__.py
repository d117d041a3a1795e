"""chatrecall index database layer."""

from chatrecall.db.checkpoints import CheckpointStore
from chatrecall.db.connection import Database
from chatrecall.db.migrations import MIGRATIONS, run_migrations
from chatrecall.db.models import Record, ScoredResult
from chatrecall.db.schema import initialize
from chatrecall.db.store import VectorStore
from chatrecall.db.vectors import ensure_index_meta, model_to_slug, serialize_vector

__all__ = [
    "CheckpointStore",
    "Database",
    "Record",
    "ScoredResult",
    "VectorStore",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_index_meta",
    "model_to_slug",
    "serialize_vector",
]
