"""Query router: decide whether an utterance needs retrieval and where to look.

Both decisions are strategy objects so either can be swapped (for example for
a classifier) without touching the Retriever:

  RetrievalTrigger.should_retrieve(text) -> bool
  ScopeExtractor.extract(text)           -> canonical scope | None

The defaults are regex heuristics and never call the embedding provider.
QueryRouter.gather_context() is the caller-facing entry point: it never raises
for retrieval failures and answers "no context" instead.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Protocol

from chatrecall.exceptions import ChatRecallError
from chatrecall.rag.assembler import AssembledContext, AssemblerConfig, assemble
from chatrecall.rag.retriever import RetrievalOptions, RetrievalResult, Retriever

logger = logging.getLogger(__name__)


class RetrievalTrigger(Protocol):
    def should_retrieve(self, text: str) -> bool: ...


class ScopeExtractor(Protocol):
    def extract(self, text: str) -> str | None: ...


# ---------------------------------------------------------------------------
# Default strategies
# ---------------------------------------------------------------------------

_RETROSPECTIVE_PATTERNS: tuple[str, ...] = (
    r"\bwhat (?:did|have|has|was|were) (?:we|you|they|he|she|someone|anyone|people|the team)\b",
    r"\bwho (?:said|mentioned|talked|asked|decided|posted|suggested|proposed|wrote)\b",
    r"\b(?:when|why|how) did (?:we|they|you|the team)\b",
    r"\b(?:discuss(?:ed|ion|ions)?|decid(?:e|ed|ing)|decisions?|agreed|conclu(?:ded|sion))\b",
    r"\b(?:mention(?:ed)?|talk(?:ed)? about|said about|brought up|conversation|thread)\b",
    r"\b(?:last|previous|past) (?:week|month|year|time|sprint|meeting|quarter)\b",
    r"\b(?:yesterday|earlier|previously|recently|ago)\b",
    r"\b(?:remember|recall|history|look up|dig up|search for|find (?:the|that|where|messages?))\b",
    r"<#[A-Z0-9]+(?:\|[^>]*)?>",
    r"(?<![\w&])#[a-z0-9][a-z0-9_-]*",
)

_SLACK_CHANNEL_NAMED = re.compile(r"<#[A-Z0-9]+\|([^>]+)>")
_SLACK_CHANNEL_ID = re.compile(r"<#([A-Z0-9]+)>")
# "#123" is an issue number, not a channel.
_HASH_CHANNEL = re.compile(
    r"(?<![\w&<])#((?=[a-z0-9._-]*[a-z])[a-z0-9][a-z0-9._-]*)", re.IGNORECASE
)
_CHANNEL_PHRASE = re.compile(
    r"\b(?:in|from|on|within)\s+(?:the\s+)?([a-z0-9][a-z0-9._-]*)\s+(?:channel|room)\b",
    re.IGNORECASE,
)


def canonical_scope(name: str) -> str | None:
    """Strip markup and '#', lowercase; None if nothing is left."""
    cleaned = _SLACK_CHANNEL_NAMED.sub(r"\1", name)
    cleaned = _SLACK_CHANNEL_ID.sub("", cleaned)
    cleaned = cleaned.strip().lstrip("#").strip().rstrip(".,;:!?").lower()
    return cleaned or None


class KeywordTrigger:
    """Fires on retrospective / historical phrasing and on channel references."""

    def __init__(self, patterns: tuple[str, ...] = _RETROSPECTIVE_PATTERNS) -> None:
        self._patterns = [re.compile(p, re.IGNORECASE) for p in patterns]

    def should_retrieve(self, text: str) -> bool:
        if not text or not text.strip():
            return False
        return any(p.search(text) for p in self._patterns)


class PatternScopeExtractor:
    """Finds an explicit channel reference and returns its canonical name.

    Recognized, in priority order: ``<#C123|name>``, ``<#C123>`` (needs
    *resolve_id*), ``#name``, and "in the name channel".

    Args:
        resolve_id: Optional lookup from a bare channel id to its name.
    """

    def __init__(self, resolve_id: Callable[[str], str | None] | None = None) -> None:
        self._resolve_id = resolve_id

    def extract(self, text: str) -> str | None:
        if not text:
            return None
        if m := _SLACK_CHANNEL_NAMED.search(text):
            return canonical_scope(m.group(1))
        if self._resolve_id is not None and (m := _SLACK_CHANNEL_ID.search(text)):
            name = self._resolve_id(m.group(1))
            if name:
                return canonical_scope(name)
        if m := _HASH_CHANNEL.search(text):
            return canonical_scope(m.group(1))
        if m := _CHANNEL_PHRASE.search(text):
            return canonical_scope(m.group(1))
        return None


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


@dataclass
class RoutedContext:
    """What the router hands back to a conversational caller.

    ``used`` is False when retrieval was not triggered, found nothing, or
    failed; ``error`` carries the failure message in the last case.
    """

    triggered: bool = False
    scope: str | None = None
    retrieval: RetrievalResult | None = None
    context: AssembledContext | None = None
    error: str | None = None

    @property
    def used(self) -> bool:
        return bool(self.context and self.context.text)

    @property
    def text(self) -> str:
        return self.context.text if self.context else ""


class QueryRouter:
    """Gates the Retriever behind a cheap trigger and a scope extractor."""

    def __init__(
        self,
        retriever: Retriever,
        options: RetrievalOptions | None = None,
        trigger: RetrievalTrigger | None = None,
        extractor: ScopeExtractor | None = None,
        assembler_config: AssemblerConfig | None = None,
        enabled: bool = True,
    ) -> None:
        self.retriever = retriever
        self.options = options or RetrievalOptions()
        self.trigger = trigger or KeywordTrigger()
        self.extractor = extractor or PatternScopeExtractor()
        self.assembler_config = assembler_config or AssemblerConfig()
        self.enabled = enabled

    def should_retrieve(self, text: str) -> bool:
        return self.enabled and self.trigger.should_retrieve(text)

    def extract_scope_filter(self, text: str) -> str | None:
        return self.extractor.extract(text)

    def gather_context(self, text: str, force: bool = False) -> RoutedContext:
        """Retrieve and assemble context for *text*, or explain why there is none."""
        routed = RoutedContext()
        if not self.enabled or not (force or self.should_retrieve(text)):
            return routed

        routed.triggered = True
        routed.scope = self.extract_scope_filter(text)
        options = replace(self.options, scope=routed.scope)
        try:
            routed.retrieval = self.retriever.retrieve(text, options)
            routed.context = assemble(routed.retrieval, self.assembler_config)
        except ChatRecallError as exc:
            logger.error("Retrieval failed, answering without context: %s", exc)
            routed.error = str(exc)
        except Exception as exc:
            logger.exception("Unexpected retrieval failure, answering without context")
            routed.error = str(exc)
        return routed
