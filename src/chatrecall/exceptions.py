"""Error kinds raised by the retrieval engine.

  EmbeddingProviderError  provider unreachable, rate-limited or unauthorised (retryable)
  InvalidInputError       dimension mismatch or malformed record (programmer error)
  StoreUnavailableError   the index database cannot be opened or written
  IndexingPartialFailure  one scope failed during an indexing cycle (reported, not raised)
"""

from __future__ import annotations


class ChatRecallError(Exception):
    """Base class for all chatrecall errors."""


class EmbeddingProviderError(ChatRecallError):
    """The embedding provider call failed. Callers may retry."""

    def __init__(self, message: str, *, model: str | None = None) -> None:
        super().__init__(message)
        self.model = model


class InvalidInputError(ChatRecallError, ValueError):
    """Input that can never succeed: wrong dimensions, malformed records or text."""


class StoreUnavailableError(ChatRecallError):
    """The vector store's backing database is inaccessible."""


class IndexingPartialFailure(ChatRecallError):
    """A single scope failed mid-cycle; its checkpoint was held back."""

    def __init__(self, scope: str, cause: BaseException) -> None:
        super().__init__(f"Indexing failed for scope '{scope}': {cause}")
        self.scope = scope
        self.cause = cause
