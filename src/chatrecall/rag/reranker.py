"""LLM re-ranking: a batched 0-10 relevance judgement over search candidates.

Re-ranking only reorders what the store returned; candidates below the
similarity floor never reach it. On any LLM or parse failure the similarity
order is kept.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from chatrecall.db.models import ScoredResult
from chatrecall.rag.llm_client import complete

logger = logging.getLogger(__name__)

_SCORE_SYSTEM = (
    "You are a relevance judge for a chat history search. For each numbered "
    "message, output a JSON array of integers (0-10) indicating how relevant "
    "the message is to the query. 10 = directly answers it, 0 = unrelated. "
    "Output ONLY a JSON array of integers, no explanations."
)


@dataclass
class RerankerConfig:
    model: str = "openai/gpt-4o-mini"
    max_chars: int = 500  # per message in the prompt


class LLMReranker:
    """Reorders candidates by an LLM relevance score, similarity as tie-break."""

    def __init__(self, config: RerankerConfig | None = None) -> None:
        self.config = config or RerankerConfig()

    def rerank(self, query: str, candidates: list[ScoredResult]) -> list[ScoredResult]:
        """Return *candidates* reordered best-first; never adds or drops any."""
        if len(candidates) < 2:
            return list(candidates)

        scores = self._score(query, candidates)
        if scores is None:
            return list(candidates)

        for candidate, score in zip(candidates, scores):
            candidate.rerank_score = score
        return sorted(
            candidates,
            key=lambda c: (-(c.rerank_score or 0), -c.score, c.record.id),
        )

    def _score(self, query: str, candidates: list[ScoredResult]) -> list[int] | None:
        numbered = "\n\n".join(
            f"[{i + 1}] {c.record.author} in #{c.record.scope}: "
            f"{c.record.text[: self.config.max_chars]}"
            for i, c in enumerate(candidates)
        )
        prompt = f"Query: {query}\n\nMessages:\n{numbered}"
        try:
            raw = complete(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": _SCORE_SYSTEM},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=256,
                temperature=0,
            )
        except Exception as exc:
            logger.warning("Re-ranking failed, keeping similarity order: %s", exc)
            return None
        scores = parse_score_array(raw, expected_length=len(candidates))
        if scores is None:
            logger.warning("Unparseable re-ranking response, keeping similarity order")
        return scores


def parse_score_array(raw: str, expected_length: int) -> list[int] | None:
    """Parse an LLM response as a JSON array of 0-10 ints; None on any mismatch."""
    try:
        start = raw.index("[")
        end = raw.rindex("]") + 1
        arr = json.loads(raw[start:end])
        if isinstance(arr, list) and len(arr) == expected_length:
            return [max(0, min(10, int(v))) for v in arr]
    except (ValueError, json.JSONDecodeError, TypeError):
        pass
    return None
