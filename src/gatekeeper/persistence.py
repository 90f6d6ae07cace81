"""Persistence for the whitelist store.

A DocumentStore is the host's key-value data-file facility. The
WhitelistRepository maps the store onto a single named document, migrating
the old flat-list format the first time it is seen.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from gatekeeper.errors import PersistenceIOError
from gatekeeper.scheduler import ScheduledTask, Scheduler
from gatekeeper.store import WhitelistEntry, WhitelistStore

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
LEGACY_ADDED_BY = "Legacy Import"


class DocumentStore(Protocol):
    def read(self, name: str) -> Any | None:  # pragma: no cover
        ...

    def write(self, name: str, document: Any) -> None:  # pragma: no cover
        ...

    def read_text(self, name: str) -> str | None:  # pragma: no cover
        ...

    def write_text(self, name: str, text: str) -> None:  # pragma: no cover
        ...


def _check_name(name: str) -> str:
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise PersistenceIOError(f"Invalid document name: {name!r}")
    return name


class JsonDocumentStore:
    """Stores each document as <data_dir>/<name>.json (text documents as .txt)."""

    def __init__(self, data_dir: Path | str):
        self._data_dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, name: str, suffix: str = ".json") -> Path:
        return self._data_dir / f"{_check_name(name)}{suffix}"

    def _read_raw(self, path: Path) -> str | None:
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceIOError(f"Failed to read {path}: {exc}") from exc

    def _write_raw(self, path: Path, text: str) -> None:
        # Write to a sibling temp file then swap, so a crash never leaves half a document.
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceIOError(f"Failed to write {path}: {exc}") from exc

    def read(self, name: str) -> Any | None:
        path = self.path_for(name)
        raw = self._read_raw(path)
        if raw is None or not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceIOError(f"Corrupt document {path}: {exc}") from exc

    def write(self, name: str, document: Any) -> None:
        self._write_raw(self.path_for(name), json.dumps(document, indent=2))

    def read_text(self, name: str) -> str | None:
        return self._read_raw(self.path_for(name, ".txt"))

    def write_text(self, name: str, text: str) -> None:
        self._write_raw(self.path_for(name, ".txt"), text)


def _entries_from_current(document: Any) -> list[WhitelistEntry] | None:
    """Parse the current schema. Returns None when the document is not in it."""
    if not isinstance(document, dict):
        return None
    # Versioned envelope, or a bare {id: entry} mapping.
    raw = document.get("entries") if "entries" in document else document
    if not isinstance(raw, dict):
        return None
    entries: list[WhitelistEntry] = []
    for player_id, data in raw.items():
        if not isinstance(data, dict):
            logger.warning("Skipping malformed whitelist record for %s", player_id)
            continue
        try:
            entries.append(WhitelistEntry.from_dict({"player_id": player_id, **data}))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed whitelist record for %s: %s", player_id, exc)
    return entries


class WhitelistRepository:
    """Loads and saves a WhitelistStore under a fixed document name."""

    def __init__(self, documents: DocumentStore, *, document_name: str = "WhitelistManager"):
        self._documents = documents
        self._name = document_name
        self.last_error: PersistenceIOError | None = None

    @property
    def document_name(self) -> str:
        return self._name

    def to_document(self, store: WhitelistStore) -> dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "updated_at": datetime.now().isoformat(),
            "entries": {
                entry.player_id: {
                    "player_id": entry.player_id,
                    "expiration": entry.expiration,
                    "added_by": entry.added_by,
                    "added_at": entry.added_at,
                }
                for entry in store.snapshot()
            },
        }

    def load(self, store: WhitelistStore) -> int:
        """Populate store at startup. Never raises on I/O failure.

        A failed read leaves the store empty so the plugin can still start.
        Returns the number of entries loaded.
        """
        try:
            return self.reload(store)
        except PersistenceIOError:
            store.replace_all([])
            return 0

    def reload(self, store: WhitelistStore) -> int:
        """Replace the store contents with the persisted document.

        Raises PersistenceIOError and leaves store untouched if the document
        cannot be read.
        """
        try:
            document = self._documents.read(self._name)
        except PersistenceIOError as exc:
            self.last_error = exc
            logger.error("Failed to load whitelist: %s", exc)
            raise

        entries = _entries_from_current(document)
        if entries:
            count = store.replace_all(entries)
            logger.info("Loaded %d whitelist entries from %s", count, self._name)
            return count

        if isinstance(document, list):
            return self._migrate_legacy(store, document)

        store.replace_all([])
        logger.info("No whitelist data found in %s, starting empty", self._name)
        return 0

    def _migrate_legacy(self, store: WhitelistStore, ids: list[Any]) -> int:
        now = store.now()
        entries: dict[str, WhitelistEntry] = {}
        for item in ids:
            if not isinstance(item, (str, int)):
                continue
            player_id = str(item).strip()
            if not player_id or player_id.lower() in entries:
                continue
            entries[player_id.lower()] = WhitelistEntry(
                player_id=player_id,
                added_by=LEGACY_ADDED_BY,
                added_at=now,
            )
        count = store.replace_all(entries.values())
        logger.info("Migrated %d legacy whitelist entries from %s", count, self._name)
        self.save(store)
        return count

    def save(self, store: WhitelistStore) -> bool:
        """Write the full mapping. Failures are logged and leave the store dirty."""
        # Hold the lock so the snapshot and the clean flag agree.
        with store.lock:
            document = self.to_document(store)
            try:
                self._documents.write(self._name, document)
            except PersistenceIOError as exc:
                self.last_error = exc
                logger.error("Failed to save whitelist: %s", exc)
                return False
            store.mark_clean()
        self.last_error = None
        logger.debug("Saved %d whitelist entries to %s", len(document["entries"]), self._name)
        return True

    def flush(self, store: WhitelistStore) -> bool:
        """Save only if the store has unsaved changes."""
        if not store.is_dirty:
            return True
        return self.save(store)


class AutoSaver:
    """Periodically flushes a dirty store, with a final flush on stop."""

    def __init__(
        self,
        store: WhitelistStore,
        repository: WhitelistRepository,
        *,
        interval_seconds: float = 60.0,
    ):
        self._store = store
        self._repository = repository
        self._interval = interval_seconds
        self._task: ScheduledTask | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.cancelled

    def start(self, scheduler: Scheduler) -> None:
        if self.running:
            return
        self._task = scheduler.every(self._interval, self.flush, name="gatekeeper-autosave")

    def flush(self) -> bool:
        return self._repository.flush(self._store)

    def stop(self) -> bool:
        """Cancel the periodic flush and make one last attempt."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        saved = self.flush()
        if not saved:
            logger.error("Final whitelist save failed; unsaved changes are lost")
        return saved
