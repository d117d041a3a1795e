"""Tests for SourceRecord and the chat workspace export reader."""

from __future__ import annotations

import pytest

from chatrecall.ingest.source import (
    DeletionFeed,
    MessageSource,
    SlackExportSource,
    SourceRecord,
)


# ------------------------------------------------------------------
# SourceRecord
# ------------------------------------------------------------------


def test_changed_at_uses_edit_time():
    assert SourceRecord("a", "t", "ana", 10.0).changed_at == 10.0
    assert SourceRecord("a", "t", "ana", 10.0, edited_at=25.0).changed_at == 25.0
    assert SourceRecord("a", "t", "ana", 10.0, edited_at=5.0).changed_at == 10.0


# ------------------------------------------------------------------
# SlackExportSource
# ------------------------------------------------------------------


def test_missing_export_dir_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        SlackExportSource(tmp_path / "nope")


def test_protocols(export_dir):
    source = SlackExportSource(export_dir)
    assert isinstance(source, MessageSource)
    assert not isinstance(source, DeletionFeed)


def test_list_scopes_only_channels_with_folders(export_dir):
    assert SlackExportSource(export_dir).list_scopes() == ["eng", "ops"]


def test_list_scopes_without_channels_json(export_dir):
    (export_dir / "channels.json").unlink()
    assert SlackExportSource(export_dir).list_scopes() == ["eng", "ops"]


def test_fetch_all_skips_system_messages(export_dir):
    records = SlackExportSource(export_dir).fetch_records_since("eng", 0.0)
    assert [r.id for r in records] == [
        "eng:1700000000.000100",
        "eng:1700000100.000200",
        "eng:1700086400.000300",
    ]


def test_fetch_resolves_authors_and_threads(export_dir):
    records = {r.id: r for r in SlackExportSource(export_dir).fetch_records_since("eng", 0.0)}
    assert records["eng:1700000000.000100"].author == "ana"
    reply = records["eng:1700000100.000200"]
    assert reply.author == "Bob Stone"
    assert reply.thread_id == "eng:1700000000.000100"
    assert records["eng:1700000000.000100"].thread_id is None


def test_unknown_user_falls_back_to_id(export_dir):
    [record] = SlackExportSource(export_dir).fetch_records_since("ops", 0.0)
    assert record.author == "U09"


def test_fetch_since_is_inclusive(export_dir):
    records = SlackExportSource(export_dir).fetch_records_since("eng", 1700000100.0002)
    assert records[0].id == "eng:1700000100.000200"


def test_fetch_since_uses_edit_time(export_dir):
    # The edited message was sent before the checkpoint but edited after it.
    records = SlackExportSource(export_dir).fetch_records_since("eng", 1700087000.0)
    assert [r.id for r in records] == ["eng:1700086400.000300"]
    assert records[0].edited_at == 1700090000.0


def test_fetch_unknown_scope_is_empty(export_dir):
    assert SlackExportSource(export_dir).fetch_records_since("random", 0.0) == []


def test_unreadable_day_file_is_skipped(export_dir, caplog):
    (export_dir / "eng" / "2023-11-16.json").write_text("{not json", encoding="utf-8")
    records = SlackExportSource(export_dir).fetch_records_since("eng", 0.0)
    assert len(records) == 3
    assert any("Skipping unreadable" in r.getMessage() for r in caplog.records)
