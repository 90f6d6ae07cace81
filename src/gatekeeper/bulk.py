"""Batch mutation and plain-text import/export."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from gatekeeper.errors import AlreadyWhitelistedError, InvalidIdentifierError, NotFoundError
from gatekeeper.persistence import DocumentStore
from gatekeeper.safety.validator import is_valid_id, require_valid_id
from gatekeeper.store import WhitelistStore

logger = logging.getLogger(__name__)

BULK_OPERATIONS = ("add", "remove")
EXPORT_PREFIX = "WhitelistManager_Export"


@dataclass(frozen=True)
class BulkResult:
    success: int
    failed: int


@dataclass(frozen=True)
class ImportResult:
    imported: int
    invalid: int


def bulk(store: WhitelistStore, op: str, ids: Iterable[str], *, added_by: str = "") -> BulkResult:
    """Apply op to each id independently; one id failing never blocks the rest."""
    op = op.lower()
    if op not in BULK_OPERATIONS:
        raise ValueError(f"Unknown bulk operation: {op!r}")

    success = 0
    failed = 0
    for raw in ids:
        try:
            player_id = require_valid_id(raw)
            if op == "add":
                store.add(player_id, added_by=added_by)
            else:
                store.remove(player_id)
            success += 1
        except (InvalidIdentifierError, AlreadyWhitelistedError, NotFoundError):
            failed += 1

    if success:
        logger.info("Bulk %s: %d succeeded, %d failed (by %s)", op, success, failed, added_by or "unknown")
    return BulkResult(success=success, failed=failed)


def export_ids(store: WhitelistStore) -> str | None:
    """Newline-joined sorted ids, or None when there is nothing to export."""
    entries = store.snapshot()
    if not entries:
        return None
    return "\n".join(e.player_id for e in entries)


def export_document_name(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"{EXPORT_PREFIX}_{now.strftime('%Y%m%d_%H%M%S')}"


def export_to_document(
    store: WhitelistStore,
    documents: DocumentStore,
    *,
    now: datetime | None = None,
) -> str | None:
    """Write the export as a text document. Returns its name, or None if empty."""
    text = export_ids(store)
    if text is None:
        return None
    name = export_document_name(now)
    documents.write_text(name, text)
    logger.info("Exported %d whitelist ids to %s", text.count("\n") + 1, name)
    return name


def import_ids(store: WhitelistStore, text: str, *, added_by: str = "") -> ImportResult:
    """Add every valid id not already present.

    Invalid lines are counted; ids already on the whitelist are skipped
    without being counted as either.
    """
    imported = 0
    invalid = 0
    for line in text.splitlines():
        candidate = line.strip()
        if not candidate:
            continue
        if not is_valid_id(candidate):
            invalid += 1
            continue
        try:
            store.add(candidate, added_by=added_by)
        except AlreadyWhitelistedError:
            continue
        imported += 1

    if imported:
        logger.info("Imported %d whitelist ids (%d invalid lines)", imported, invalid)
    return ImportResult(imported=imported, invalid=invalid)


def import_from_document(
    store: WhitelistStore,
    documents: DocumentStore,
    name: str,
    *,
    added_by: str = "",
) -> ImportResult | None:
    """Import from a text document. Returns None if the document does not exist."""
    text = documents.read_text(name)
    if text is None:
        return None
    return import_ids(store, text, added_by=added_by)
