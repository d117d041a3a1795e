"""Domain models for the index database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Record:
    id: str
    text: str
    scope: str
    author: str
    timestamp: float
    thread_id: str | None = None
    vector: list[float] | None = None  # None when loaded without its embedding
    extra: str = field(default_factory=lambda: "{}")

    @property
    def extra_dict(self) -> dict[str, Any]:
        return json.loads(self.extra)

    @property
    def metadata(self) -> dict[str, Any]:
        """Provenance mapping: extras plus scope, author, timestamp and thread id."""
        data = self.extra_dict
        data.update(
            scope=self.scope,
            author=self.author,
            timestamp=self.timestamp,
            thread_id=self.thread_id,
        )
        return data


@dataclass
class ScoredResult:
    """A search hit: the stored record, its cosine score and optional neighbours.

    Attributes:
        record: The matched Record (loaded without its vector).
        score: Cosine similarity in [-1, 1].
        context: Adjacent records from the same scope/thread, oldest first.
        rerank_score: 0-10 relevance judgement when re-ranking ran, else None.
    """

    record: Record
    score: float
    context: list[Record] = field(default_factory=list)
    rerank_score: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.record.id,
            "author": self.record.author,
            "scope": self.record.scope,
            "score": round(self.score, 4),
            "text": self.record.text,
            "timestamp": self.record.timestamp,
            "thread_id": self.record.thread_id,
            "rerank_score": self.rerank_score,
            "context": [
                {"id": r.id, "author": r.author, "text": r.text, "timestamp": r.timestamp}
                for r in self.context
            ],
        }
