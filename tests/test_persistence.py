"""Tests for gatekeeper.persistence module."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import FakeClock, make_id
from gatekeeper.errors import PersistenceIOError
from gatekeeper.persistence import (
    LEGACY_ADDED_BY,
    AutoSaver,
    JsonDocumentStore,
    WhitelistRepository,
)
from gatekeeper.store import WhitelistStore


class FailingDocuments:
    """Document store whose reads and/or writes always fail."""

    def __init__(self, *, fail_read: bool = False, fail_write: bool = True):
        self.fail_read = fail_read
        self.fail_write = fail_write
        self.writes = 0

    def read(self, name):
        if self.fail_read:
            raise PersistenceIOError("disk unavailable")
        return None

    def write(self, name, document):
        self.writes += 1
        if self.fail_write:
            raise PersistenceIOError("disk full")

    def read_text(self, name):
        return None

    def write_text(self, name, text):
        raise PersistenceIOError("disk full")


class TestJsonDocumentStore:
    def test_missing_document_reads_none(self, documents):
        assert documents.read("Nothing") is None

    def test_write_then_read(self, documents, temp_dir: Path):
        documents.write("Doc", {"a": 1})
        assert (temp_dir / "Doc.json").exists()
        assert documents.read("Doc") == {"a": 1}

    def test_creates_data_dir(self, temp_dir: Path):
        docs = JsonDocumentStore(temp_dir / "nested" / "dir")
        docs.write("Doc", [1, 2])
        assert docs.read("Doc") == [1, 2]

    def test_text_documents(self, documents, temp_dir: Path):
        documents.write_text("Export", "a\nb")
        assert (temp_dir / "Export.txt").read_text(encoding="utf-8") == "a\nb"
        assert documents.read_text("Export") == "a\nb"
        assert documents.read_text("Missing") is None

    def test_corrupt_json_raises_persistence_error(self, documents, temp_dir: Path):
        (temp_dir / "Doc.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceIOError, match="Corrupt"):
            documents.read("Doc")

    def test_empty_file_reads_none(self, documents, temp_dir: Path):
        (temp_dir / "Doc.json").write_text("", encoding="utf-8")
        assert documents.read("Doc") is None

    def test_rejects_path_like_names(self, documents):
        with pytest.raises(PersistenceIOError):
            documents.write("../escape", {})
        with pytest.raises(PersistenceIOError):
            documents.read_text("sub/dir")

    def test_no_temp_files_left_behind(self, documents, temp_dir: Path):
        documents.write("Doc", {"a": 1})
        documents.write("Doc", {"a": 2})
        assert sorted(p.name for p in temp_dir.iterdir()) == ["Doc.json"]


class TestRoundTrip:
    def test_save_then_load_reconstructs_mapping(self, documents, clock):
        store = WhitelistStore(clock=clock)
        store.add(make_id(1), added_by="Admin (1)")
        clock.advance(30)
        store.add(make_id(2), added_by="Mod (2)", expiration=clock.now + 3600)
        repo = WhitelistRepository(documents)

        assert repo.save(store) is True

        loaded = WhitelistStore(clock=clock)
        assert repo.load(loaded) == 2
        assert loaded.snapshot() == store.snapshot()

    def test_save_clears_dirty(self, documents, store):
        store.add(make_id(1), added_by="")
        repo = WhitelistRepository(documents)
        repo.save(store)
        assert not store.is_dirty

    def test_document_layout(self, documents, store, temp_dir: Path):
        store.add(make_id(1), added_by="Admin")
        WhitelistRepository(documents, document_name="Custom").save(store)
        data = json.loads((temp_dir / "Custom.json").read_text(encoding="utf-8"))
        assert data["version"] == 2
        record = data["entries"][make_id(1)]
        assert record["player_id"] == make_id(1)
        assert record["expiration"] is None
        assert record["added_by"] == "Admin"

    def test_bare_mapping_is_current_schema(self, documents, store):
        documents.write("WhitelistManager", {
            make_id(1): {"player_id": make_id(1), "expiration": None, "added_by": "x", "added_at": 10.0},
        })
        assert WhitelistRepository(documents).load(store) == 1
        assert store.get(make_id(1)).added_at == 10.0

    def test_keys_are_case_insensitive_after_load(self, documents, store):
        documents.write("WhitelistManager", {"entries": {
            "AbC": {"player_id": "AbC", "expiration": None, "added_by": "x", "added_at": 1.0},
        }})
        WhitelistRepository(documents).load(store)
        assert store.is_whitelisted("abc")

    def test_malformed_records_skipped(self, documents, store):
        documents.write("WhitelistManager", {"entries": {
            make_id(1): {"player_id": make_id(1), "added_by": "x", "added_at": 1.0},
            make_id(2): "garbage",
            make_id(3): {"player_id": make_id(3), "added_at": "not a number"},
        }})
        assert WhitelistRepository(documents).load(store) == 1
        assert store.ids() == frozenset({make_id(1)})


class TestLegacyMigration:
    def test_flat_list_is_migrated(self, documents, clock):
        documents.write("WhitelistManager", ["a", "b"])
        store = WhitelistStore(clock=clock)
        repo = WhitelistRepository(documents)

        assert repo.load(store) == 2

        for player_id in ("a", "b"):
            entry = store.get(player_id)
            assert entry.expiration is None
            assert entry.added_by == LEGACY_ADDED_BY
            assert entry.added_at == clock.now

    def test_migration_persists_new_schema(self, documents, clock):
        documents.write("WhitelistManager", ["a", "b"])
        repo = WhitelistRepository(documents)
        first = WhitelistStore(clock=clock)
        repo.load(first)

        raw = documents.read("WhitelistManager")
        assert isinstance(raw, dict)
        assert set(raw["entries"]) == {"a", "b"}

        clock.advance(100)
        second = WhitelistStore(clock=clock)
        repo.load(second)
        assert second.snapshot() == first.snapshot()

    def test_duplicates_in_legacy_list_collapse(self, documents, store):
        documents.write("WhitelistManager", ["A", "a", "", "b"])
        assert WhitelistRepository(documents).load(store) == 2

    def test_migrated_store_is_clean(self, documents, store):
        documents.write("WhitelistManager", ["a"])
        WhitelistRepository(documents).load(store)
        assert not store.is_dirty


class TestLoadFailures:
    def test_missing_document_gives_empty_store(self, documents, store):
        assert WhitelistRepository(documents).load(store) == 0
        assert store.count() == 0

    def test_empty_current_document_gives_empty_store(self, documents, store):
        documents.write("WhitelistManager", {"version": 2, "entries": {}})
        assert WhitelistRepository(documents).load(store) == 0

    def test_read_error_is_logged_not_raised(self, store, caplog):
        repo = WhitelistRepository(FailingDocuments(fail_read=True))
        store.add(make_id(1), added_by="")
        assert repo.load(store) == 0
        assert store.count() == 0
        assert isinstance(repo.last_error, PersistenceIOError)
        assert "disk unavailable" in caplog.text

    def test_corrupt_file_gives_empty_store(self, documents, store, temp_dir: Path):
        (temp_dir / "WhitelistManager.json").write_text("[[[", encoding="utf-8")
        repo = WhitelistRepository(documents)
        assert repo.load(store) == 0
        assert repo.last_error is not None

    def test_reload_failure_raises_and_keeps_store(self, documents, store, temp_dir: Path):
        store.add(make_id(1), added_by="")
        store.mark_clean()
        (temp_dir / "WhitelistManager.json").write_text("{not json", encoding="utf-8")
        repo = WhitelistRepository(documents)
        with pytest.raises(PersistenceIOError, match="Corrupt"):
            repo.reload(store)
        assert store.ids() == frozenset({make_id(1)})
        assert repo.last_error is not None


class TestSaveFailures:
    def test_save_failure_keeps_dirty(self, store):
        repo = WhitelistRepository(FailingDocuments())
        store.add(make_id(1), added_by="")
        assert repo.save(store) is False
        assert store.is_dirty
        assert repo.last_error.reason == "disk full"
        # In-memory state is still authoritative.
        assert store.is_whitelisted(make_id(1))

    def test_successful_save_clears_last_error(self, documents, store):
        repo = WhitelistRepository(documents)
        repo.last_error = PersistenceIOError("old")
        repo.save(store)
        assert repo.last_error is None

    def test_flush_skips_clean_store(self, store):
        docs = FailingDocuments()
        repo = WhitelistRepository(docs)
        assert repo.flush(store) is True
        assert docs.writes == 0


class TestAutoSaver:
    def test_start_schedules_flush(self, documents, store, scheduler):
        saver = AutoSaver(store, WhitelistRepository(documents), interval_seconds=60)
        saver.start(scheduler)
        assert scheduler.tasks[0][0] == 60
        assert saver.running

    def test_scheduled_flush_writes_dirty_store(self, documents, store, scheduler):
        repo = WhitelistRepository(documents)
        saver = AutoSaver(store, repo, interval_seconds=60)
        saver.start(scheduler)
        store.add(make_id(1), added_by="")

        _, task, _ = scheduler.tasks[0]
        task()

        assert not store.is_dirty
        assert make_id(1) in documents.read("WhitelistManager")["entries"]

    def test_stop_cancels_and_flushes(self, documents, store, scheduler):
        saver = AutoSaver(store, WhitelistRepository(documents), interval_seconds=60)
        saver.start(scheduler)
        store.add(make_id(1), added_by="")

        assert saver.stop() is True
        assert scheduler.tasks[0][2].cancelled
        assert not saver.running
        assert documents.read("WhitelistManager") is not None

    def test_failed_final_save_is_logged(self, store, caplog):
        saver = AutoSaver(store, WhitelistRepository(FailingDocuments()))
        store.add(make_id(1), added_by="")
        assert saver.stop() is False
        assert "Final whitelist save failed" in caplog.text
