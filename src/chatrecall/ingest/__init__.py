"""chatrecall ingest pipeline — message sources and the background indexer."""

from chatrecall.ingest.indexer import CycleReport, Indexer, IndexerState, ScopeResult
from chatrecall.ingest.source import DeletionFeed, MessageSource, SlackExportSource, SourceRecord

__all__ = [
    "CycleReport",
    "DeletionFeed",
    "Indexer",
    "IndexerState",
    "MessageSource",
    "ScopeResult",
    "SlackExportSource",
    "SourceRecord",
]
