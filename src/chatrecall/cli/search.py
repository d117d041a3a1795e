"""chatrecall search / ask — query the index from the terminal.

  chatrecall search "redis decision" --scope eng --limit 5
  chatrecall search "redis decision" --json
  chatrecall ask "what did we decide about caching in #eng?"

``search`` always retrieves. ``ask`` goes through the router: it only
retrieves when the text looks like a question about past conversation, takes
the scope from a channel reference in the text, and prints the context block a
conversational agent would receive.
"""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich.console import Console

from chatrecall.cli.common import (
    load_settings,
    make_embedder,
    open_store,
    require_api_key,
    resolve_db,
)
from chatrecall.cli.errors import err_index_mismatch, err_no_db, err_provider, err_store
from chatrecall.config import ChatRecallConfig
from chatrecall.exceptions import (
    EmbeddingProviderError,
    InvalidInputError,
    StoreUnavailableError,
)
from chatrecall.rag.assembler import AssemblerConfig, format_results
from chatrecall.rag.reranker import LLMReranker, RerankerConfig
from chatrecall.rag.retriever import RetrievalOptions, Retriever
from chatrecall.rag.router import KeywordTrigger, QueryRouter, canonical_scope

console = Console()


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to look for.")],
    scope: Annotated[
        str | None,
        typer.Option("--scope", "-s", help="Only search this channel (with or without '#')."),
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", help="Maximum results (defaults to retrieval.max_results)."),
    ] = None,
    min_score: Annotated[
        float | None,
        typer.Option("--min-score", help="Similarity floor (defaults to retrieval.min_similarity)."),
    ] = None,
    rerank: Annotated[
        bool,
        typer.Option("--rerank", help="Re-rank candidates with an LLM relevance judge."),
    ] = False,
    json_out: Annotated[
        bool,
        typer.Option("--json", help="Print results as JSON."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Index database (defaults to index.path)."),
    ] = None,
) -> None:
    """Search indexed messages by meaning."""
    cfg = load_settings()
    options = replace(
        _options_from(cfg),
        scope=canonical_scope(scope) if scope else None,
        rerank=rerank or cfg.retrieval.rerank,
    )
    if limit is not None:
        options.limit = limit
    if min_score is not None:
        options.min_score = min_score

    retriever = _build_retriever(cfg, db, options.rerank)

    try:
        result = retriever.retrieve(query, options)
    except (EmbeddingProviderError, InvalidInputError, StoreUnavailableError) as exc:
        _fail(exc)

    if json_out:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return
    console.print(format_results(result), markup=False, highlight=False)


def ask_cmd(
    text: Annotated[str, typer.Argument(help="A message, as a user would write it.")],
    force: Annotated[
        bool,
        typer.Option("--force", help="Retrieve even if the message does not look retrospective."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Index database (defaults to index.path)."),
    ] = None,
) -> None:
    """Show the context the router would attach to a message."""
    cfg = load_settings()
    options = _options_from(cfg)
    trigger = KeywordTrigger()

    if not cfg.retrieval.enabled:
        console.print("[dim]Retrieval is disabled (retrieval.enabled: false).[/]")
        return
    if not (force or trigger.should_retrieve(text)):
        console.print("[dim]No retrieval needed for this message.[/]")
        return

    router = QueryRouter(
        retriever=_build_retriever(cfg, db, options.rerank),
        options=options,
        trigger=trigger,
        assembler_config=AssemblerConfig(token_budget=cfg.retrieval.token_budget),
    )
    routed = router.gather_context(text, force=force)

    if routed.scope:
        console.print(f"[dim]Scope:[/] #{routed.scope}")
    if routed.error:
        console.print(err_provider(routed.error))
        raise typer.Exit(1)
    if not routed.used:
        console.print("[yellow]No relevant context found.[/]")
        return
    if routed.context and routed.context.truncated:
        console.print("[dim](context trimmed to the token budget)[/]")
    console.print(routed.text, markup=False, highlight=False)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _options_from(cfg: ChatRecallConfig) -> RetrievalOptions:
    r = cfg.retrieval
    return RetrievalOptions(
        limit=r.max_results,
        min_score=r.min_similarity,
        rerank=r.rerank,
        context_window=r.context_window,
        fallback_to_unscoped=r.fallback_to_unscoped,
    )


def _build_retriever(cfg: ChatRecallConfig, db: Path | None, rerank: bool) -> Retriever:
    db_path = resolve_db(db, cfg)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    require_api_key(cfg.embedding.model)
    reranker = None
    if rerank:
        require_api_key(cfg.retrieval.rerank_model)
        reranker = LLMReranker(RerankerConfig(model=cfg.retrieval.rerank_model))
    return Retriever(make_embedder(cfg), open_store(db_path, cfg), reranker)


def _fail(exc: Exception) -> NoReturn:
    if isinstance(exc, EmbeddingProviderError):
        console.print(err_provider(str(exc)))
    elif isinstance(exc, StoreUnavailableError):
        console.print(err_store(str(exc)))
    else:
        console.print(err_index_mismatch(str(exc)))
    raise typer.Exit(1) from exc
