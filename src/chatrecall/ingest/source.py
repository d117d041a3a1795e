"""Source-of-truth contract and a chat workspace export reader.

A source answers, per scope, "which records changed at or after timestamp T".
The boundary is inclusive so a record sharing the checkpoint's timestamp is
never missed; re-delivered records collapse through the store's upsert.

Edits are re-supplied under the same id with a later ``changed_at``. Deletions
come from the optional ``fetch_deletions_since``; sources without it leave
deleted messages in the index until explicit maintenance removes them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass
class SourceRecord:
    """One message as delivered by the source.

    Attributes:
        id: Stable identifier, reused when the message is edited.
        text: Raw message text (markup intact; the embedder normalizes it).
        author: Display name of the sender.
        timestamp: Original send time (epoch seconds).
        thread_id: Thread the message belongs to, if any.
        edited_at: Time of the latest edit, if edited.
    """

    id: str
    text: str
    author: str
    timestamp: float
    thread_id: str | None = None
    edited_at: float | None = None

    @property
    def changed_at(self) -> float:
        """Latest time the content changed; drives checkpointing."""
        if self.edited_at is not None and self.edited_at > self.timestamp:
            return self.edited_at
        return self.timestamp


@runtime_checkable
class MessageSource(Protocol):
    def list_scopes(self) -> list[str]: ...

    def fetch_records_since(self, scope: str, timestamp: float) -> list[SourceRecord]: ...


@runtime_checkable
class DeletionFeed(Protocol):
    def fetch_deletions_since(self, scope: str, timestamp: float) -> list[str]: ...


# ---------------------------------------------------------------------------
# Workspace export reader
# ---------------------------------------------------------------------------

# System messages carry no conversational content.
_SKIPPED_SUBTYPES = frozenset(
    {
        "channel_join",
        "channel_leave",
        "channel_topic",
        "channel_purpose",
        "channel_name",
        "channel_archive",
        "channel_unarchive",
        "group_join",
        "group_leave",
        "pinned_item",
        "unpinned_item",
        "tombstone",
    }
)


class SlackExportSource:
    """Read messages from an unpacked chat workspace export directory.

    Layout::

        export/
          channels.json            [{"id": "C01", "name": "eng"}, ...]
          users.json               [{"id": "U01", "name": "ana", "real_name": "Ana"}, ...]
          eng/2024-01-02.json      [{"ts": "1704190000.000100", "user": "U01", "text": ...}, ...]

    Scopes are channel names. Record ids are "<channel>:<ts>". The export has
    no deletion feed, so this source does not implement fetch_deletions_since.
    """

    def __init__(self, export_dir: Path | str) -> None:
        self.export_dir = Path(export_dir)
        if not self.export_dir.is_dir():
            raise FileNotFoundError(f"Export directory not found: {self.export_dir}")
        self._users = self._load_users()

    def list_scopes(self) -> list[str]:
        channels_file = self.export_dir / "channels.json"
        if channels_file.exists():
            channels = json.loads(channels_file.read_text(encoding="utf-8"))
            names = [str(c["name"]) for c in channels if c.get("name")]
            return sorted(n for n in names if (self.export_dir / n).is_dir())
        return sorted(p.name for p in self.export_dir.iterdir() if p.is_dir())

    def fetch_records_since(self, scope: str, timestamp: float) -> list[SourceRecord]:
        """Return records of *scope* with changed_at >= *timestamp*, ordered by it."""
        channel_dir = self.export_dir / scope
        if not channel_dir.is_dir():
            return []

        records: list[SourceRecord] = []
        for day_file in sorted(channel_dir.glob("*.json")):
            try:
                messages = json.loads(day_file.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                logger.warning("Skipping unreadable export file %s: %s", day_file, exc)
                continue
            for msg in messages:
                record = self._to_record(scope, msg)
                if record is not None and record.changed_at >= timestamp:
                    records.append(record)

        records.sort(key=lambda r: (r.changed_at, r.id))
        return records

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_users(self) -> dict[str, str]:
        users_file = self.export_dir / "users.json"
        if not users_file.exists():
            return {}
        users = json.loads(users_file.read_text(encoding="utf-8"))
        names: dict[str, str] = {}
        for u in users:
            profile = u.get("profile") or {}
            names[u["id"]] = (
                profile.get("display_name")
                or u.get("real_name")
                or u.get("name")
                or u["id"]
            )
        return names

    def _to_record(self, scope: str, msg: dict) -> SourceRecord | None:
        if msg.get("type", "message") != "message":
            return None
        if msg.get("subtype") in _SKIPPED_SUBTYPES:
            return None
        ts = msg.get("ts")
        if not ts:
            return None

        user_id = msg.get("user") or msg.get("bot_id") or "unknown"
        author = msg.get("user_name") or self._users.get(user_id, user_id)
        edited = msg.get("edited") or {}
        thread_ts = msg.get("thread_ts")

        return SourceRecord(
            id=f"{scope}:{ts}",
            text=msg.get("text") or "",
            author=author,
            timestamp=float(ts),
            thread_id=f"{scope}:{thread_ts}" if thread_ts else None,
            edited_at=float(edited["ts"]) if edited.get("ts") else None,
        )
