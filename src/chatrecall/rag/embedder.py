"""Embedder: chat-text normalization, batched embeddings, cosine similarity.

Normalization rewrites platform markup to neutral placeholders:
  <@U123>           -> @user
  <#C123|general>   -> #general
  <#C123>           -> #channel
  <!here>           -> @here
  <https://...|txt> -> [link]      (bare URLs too)
  :emoji_code:      -> removed
then collapses whitespace. Text shorter than min_text_length afterwards is a
skip: embed() returns the zero-vector sentinel instead of raising.

embed_batch() keeps array alignment: inputs that normalize to nothing get the
sentinel at their original index, the rest are embedded in provider batches of
at most batch_size with a fixed delay between (never before) batches.
"""

from __future__ import annotations

import logging
import math
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

import litellm

from chatrecall.exceptions import EmbeddingProviderError, InvalidInputError
from chatrecall.rag import llm_client

logger = logging.getLogger(__name__)

DOCUMENT = "search_document"
QUERY = "search_query"

_USER_MENTION = re.compile(r"<@[A-Z0-9]+(?:\|[^>]*)?>")
_CHANNEL_NAMED = re.compile(r"<#[A-Z0-9]+\|([^>]+)>")
_CHANNEL_BARE = re.compile(r"<#[A-Z0-9]+>")
_SPECIAL_MENTION = re.compile(r"<!(\w+)(?:\^[A-Z0-9]+)?(?:\|[^>]*)?>")
_LINK_BRACKETED = re.compile(r"<(?:https?|mailto):[^>]+>")
_LINK_BARE = re.compile(r"https?://\S+")
_EMOJI = re.compile(r":[a-z0-9_+'-]+:")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class EmbedderConfig:
    """Embedding model and batching configuration.

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Vector dimension the model produces.
        batch_size: Maximum texts per provider call.
        batch_delay: Seconds to wait between consecutive provider calls.
        min_text_length: Normalized texts shorter than this are skipped.
        num_retries: LiteLLM retries per provider call.
    """

    model: str = "cohere/embed-english-v3.0"
    dimensions: int = 1024
    batch_size: int = 96
    batch_delay: float = 0.1
    min_text_length: int = 10
    num_retries: int = 3


def normalize_text(text: str | None, min_length: int = 10) -> str:
    """Rewrite chat markup, collapse whitespace, and return '' if too short."""
    if not text:
        return ""
    processed = _USER_MENTION.sub("@user", text)
    processed = _CHANNEL_NAMED.sub(r"#\1", processed)
    processed = _CHANNEL_BARE.sub("#channel", processed)
    processed = _SPECIAL_MENTION.sub(r"@\1", processed)
    processed = _LINK_BRACKETED.sub("[link]", processed)
    processed = _LINK_BARE.sub("[link]", processed)
    processed = _EMOJI.sub("", processed)
    processed = _WHITESPACE.sub(" ", processed).strip()
    if len(processed) < min_length:
        return ""
    return processed


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of *a* and *b*; 0.0 if either has zero magnitude.

    Raises:
        InvalidInputError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise InvalidInputError(
            f"Cannot compare vectors of different dimensions ({len(a)} vs {len(b)})"
        )
    dot = math.fsum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


class Embedder:
    """Turns chat text into vectors through LiteLLM.

    Args:
        config: Model and batching configuration.
        sleep: Delay function used between batches (injectable for tests).
    """

    def __init__(
        self,
        config: EmbedderConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or EmbedderConfig()
        self._sleep = sleep

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    def normalize(self, text: str | None) -> str:
        return normalize_text(text, self.config.min_text_length)

    def zero_vector(self) -> list[float]:
        """The skip sentinel: a dimension-matched vector of zeros."""
        return [0.0] * self.config.dimensions

    def is_sentinel(self, vector: list[float]) -> bool:
        return not any(vector)

    def similarity(self, a: list[float], b: list[float]) -> float:
        return cosine_similarity(a, b)

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def embed(self, text: str, input_type: str = DOCUMENT) -> list[float]:
        """Embed one text; returns the sentinel if it normalizes to nothing."""
        return self.embed_batch([text], input_type=input_type)[0]

    def embed_query(self, text: str) -> list[float]:
        """Embed a search query. Queries skip the minimum-length rule."""
        normalized = normalize_text(text, min_length=1)
        if not normalized:
            return self.zero_vector()
        return self._embed_valid([(0, normalized)], 1, QUERY)[0]

    def embed_batch(
        self, texts: list[str], input_type: str = DOCUMENT
    ) -> list[list[float]]:
        """Embed *texts*, returning one vector per input at the same index.

        Raises:
            EmbeddingProviderError: Any provider call failed; no vectors are returned.
            InvalidInputError: The provider rejected the input or returned
                vectors of the wrong dimension.
        """
        if not texts:
            return []
        valid = [
            (i, normalized)
            for i, normalized in ((i, self.normalize(t)) for i, t in enumerate(texts))
            if normalized
        ]
        return self._embed_valid(valid, len(texts), input_type)

    def _embed_valid(
        self, valid: list[tuple[int, str]], total: int, input_type: str
    ) -> list[list[float]]:
        results: list[list[float] | None] = [None] * total
        size = max(1, self.config.batch_size)
        n_batches = math.ceil(len(valid) / size)

        for batch_no, start in enumerate(range(0, len(valid), size)):
            if batch_no > 0 and self.config.batch_delay > 0:
                self._sleep(self.config.batch_delay)
            batch = valid[start : start + size]
            logger.debug("Embedding batch %d/%d (%d texts)", batch_no + 1, n_batches, len(batch))
            vectors = self._call_provider([t for _, t in batch], input_type)
            for (index, _), vector in zip(batch, vectors):
                results[index] = vector

        if valid:
            logger.info("Created %d embeddings (%d skipped)", len(valid), total - len(valid))
        return [v if v is not None else self.zero_vector() for v in results]

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        model = self.config.model
        try:
            llm_client.validate_api_key(model)
            vectors = llm_client.embed_batch(
                model, texts, input_type=input_type, num_retries=self.config.num_retries
            )
        except litellm.BadRequestError as exc:
            raise InvalidInputError(f"Embedding provider rejected input: {exc}") from exc
        except Exception as exc:
            logger.error("Embedding call to %s failed: %s", model, exc)
            raise EmbeddingProviderError(
                f"Embedding failed for {len(texts)} texts: {exc}", model=model
            ) from exc

        if len(vectors) != len(texts):
            raise EmbeddingProviderError(
                f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                model=model,
            )
        for vector in vectors:
            if len(vector) != self.config.dimensions:
                raise InvalidInputError(
                    f"Model '{model}' returned {len(vector)}-dim vectors, "
                    f"configured dimensions is {self.config.dimensions}"
                )
        return [list(v) for v in vectors]
