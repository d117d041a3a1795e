"""Context assembly: attributed result formatting within a token budget.

Each hit renders as one numbered line carrying author, scope, a relative time
citation, relevance and the raw text; adjacent records follow it, indented:

  1. ana in #eng (3 days ago): we chose Redis for caching (relevance: 87%)
     > bob (3 days ago): agreed, memcached was too limited

Results are added best-first until the next one would exceed the budget.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from chatrecall.db.models import Record, ScoredResult
from chatrecall.rag.llm_client import count_tokens
from chatrecall.rag.retriever import RetrievalResult


@dataclass
class AssemblerConfig:
    token_budget: int = 4_096
    count_model: str = "openai/gpt-4o-mini"  # tokenizer used for budgeting


@dataclass
class AssembledContext:
    text: str = ""
    results: list[ScoredResult] = field(default_factory=list)
    total_tokens: int = 0
    out_of_scope: bool = False
    truncated: bool = False


def relative_time(timestamp: float, now: float | None = None) -> str:
    """Human citation for *timestamp* relative to *now* ('just now', '3 days ago')."""
    now = time.time() if now is None else now
    delta = max(0.0, now - timestamp)
    for seconds, unit in (
        (365 * 86400, "year"),
        (30 * 86400, "month"),
        (7 * 86400, "week"),
        (86400, "day"),
        (3600, "hour"),
        (60, "minute"),
    ):
        if delta >= seconds:
            n = int(delta // seconds)
            return f"{n} {unit}{'s' if n != 1 else ''} ago"
    return "just now"


def format_record(record: Record, now: float | None = None) -> str:
    """'author in #scope (relative time): text'."""
    return (
        f"{record.author} in #{record.scope} "
        f"({relative_time(record.timestamp, now)}): {record.text}"
    )


def format_result(result: ScoredResult, index: int, now: float | None = None) -> str:
    lines = [
        f"{index}. {format_record(result.record, now)} "
        f"(relevance: {result.score * 100:.0f}%)"
    ]
    for neighbour in result.context:
        lines.append(
            f"   > {neighbour.author} ({relative_time(neighbour.timestamp, now)}): "
            f"{neighbour.text}"
        )
    return "\n".join(lines)


def header_for(retrieval: RetrievalResult) -> str:
    n = len(retrieval.results)
    if retrieval.out_of_scope:
        return (
            f"No results in #{retrieval.requested_scope}, but found {n} "
            "messages in other channels:"
        )
    where = f" in #{retrieval.requested_scope}" if retrieval.requested_scope else ""
    return f"Found {n} relevant messages{where}:"


def format_results(retrieval: RetrievalResult, now: float | None = None) -> str:
    """Render a whole retrieval as a numbered, attributed listing."""
    if not retrieval.results:
        where = f" in #{retrieval.requested_scope}" if retrieval.requested_scope else ""
        return f'No relevant messages found for "{retrieval.query}"{where}.'
    body = "\n".join(
        format_result(r, i + 1, now) for i, r in enumerate(retrieval.results)
    )
    return f"{header_for(retrieval)}\n\n{body}"


def assemble(
    retrieval: RetrievalResult,
    config: AssemblerConfig | None = None,
    now: float | None = None,
) -> AssembledContext:
    """Build a context block from *retrieval* that fits the token budget."""
    config = config or AssemblerConfig()
    if not retrieval.results:
        return AssembledContext(out_of_scope=retrieval.out_of_scope)

    header = header_for(retrieval)
    total = count_tokens(config.count_model, header)
    blocks: list[str] = []
    selected: list[ScoredResult] = []

    for result in retrieval.results:
        block = format_result(result, len(selected) + 1, now)
        tokens = count_tokens(config.count_model, block)
        if total + tokens > config.token_budget:
            break
        blocks.append(block)
        selected.append(result)
        total += tokens

    if not selected:
        return AssembledContext(out_of_scope=retrieval.out_of_scope, truncated=True)

    return AssembledContext(
        text=header + "\n\n" + "\n".join(blocks),
        results=selected,
        total_tokens=total,
        out_of_scope=retrieval.out_of_scope,
        truncated=len(selected) < len(retrieval.results),
    )
