"""Query-time retrieval: embed, search, optionally re-rank, attach neighbours.

Pipeline:
  1. Normalize + embed the query (intent 'search_query').
  2. Fetch 2 × limit candidates from the store (scope filter and similarity
     floor applied there).
  3. Optionally re-rank candidates with the LLM reranker.
  4. Truncate to limit and attach adjacent records for readability.

An empty scoped search can fall back to an unscoped one. The result then
carries ``fallback_used=True`` and the ``requested_scope`` so callers can say
the matches come from elsewhere.

Errors from the embedder or store propagate; callers degrade gracefully.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from chatrecall.db.models import ScoredResult
from chatrecall.db.store import VectorStore
from chatrecall.rag.embedder import Embedder, normalize_text
from chatrecall.rag.reranker import LLMReranker

logger = logging.getLogger(__name__)

_CANDIDATE_FACTOR = 2


@dataclass
class RetrievalOptions:
    """Per-query options.

    Attributes:
        limit: Maximum number of results.
        scope: Restrict the search to this scope (canonical name, no '#').
        min_score: Similarity floor; None disables it.
        rerank: Re-rank candidates with the LLM reranker (if one is configured).
        context_window: Adjacent records to attach on each side of a hit.
        fallback_to_unscoped: Search everything when the scoped search is empty.
    """

    limit: int = 10
    scope: str | None = None
    min_score: float | None = 0.5
    rerank: bool = False
    context_window: int = 1
    fallback_to_unscoped: bool = True


@dataclass
class RetrievalResult:
    query: str
    results: list[ScoredResult] = field(default_factory=list)
    requested_scope: str | None = None
    fallback_used: bool = False

    @property
    def out_of_scope(self) -> bool:
        """True when the results come from outside the requested scope."""
        return self.fallback_used

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "requested_scope": self.requested_scope,
            "out_of_scope": self.out_of_scope,
            "results": [r.to_dict() for r in self.results],
        }


class Retriever:
    """Read-only query path over a VectorStore."""

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        reranker: LLMReranker | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.reranker = reranker

    def retrieve(
        self, query_text: str, options: RetrievalOptions | None = None
    ) -> RetrievalResult:
        """Return the records most similar to *query_text*.

        Raises:
            EmbeddingProviderError: The query could not be embedded.
            StoreUnavailableError: The index could not be read.
        """
        options = options or RetrievalOptions()
        query = normalize_text(query_text, min_length=1)
        scope = options.scope or None
        retrieval = RetrievalResult(query=query, requested_scope=scope)
        if not query:
            return retrieval

        vector = self.embedder.embed_query(query)
        retrieval.results = self._search(query, vector, options, scope)

        if not retrieval.results and scope is not None and options.fallback_to_unscoped:
            logger.info("No matches in scope '%s'; searching all scopes", scope)
            retrieval.results = self._search(query, vector, options, None)
            retrieval.fallback_used = True

        logger.debug(
            "Retrieved %d results for query (scope=%s, fallback=%s)",
            len(retrieval.results),
            scope,
            retrieval.fallback_used,
        )
        return retrieval

    def _search(
        self,
        query: str,
        vector: list[float],
        options: RetrievalOptions,
        scope: str | None,
    ) -> list[ScoredResult]:
        candidates = self.store.search(
            vector,
            limit=options.limit * _CANDIDATE_FACTOR,
            scope=scope,
            min_score=options.min_score,
        )
        if options.rerank and self.reranker is not None:
            candidates = self.reranker.rerank(query, candidates)

        results = candidates[: options.limit]
        if options.context_window > 0:
            for result in results:
                result.context = self.store.neighbors(
                    result.record,
                    before=options.context_window,
                    after=options.context_window,
                )
        return results
