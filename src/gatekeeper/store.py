"""Whitelist entry store.

Holds the authoritative mapping from player id to whitelist entry. Every
public operation takes the store lock for its full duration.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Iterable

from gatekeeper.errors import AlreadyWhitelistedError, NotFoundError

logger = logging.getLogger(__name__)


def _format_timestamp(timestamp: float) -> str:
    try:
        return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")
    except (OverflowError, OSError, ValueError):
        # Outside the platform's datetime range.
        return f"@{timestamp:.0f}"


@dataclass
class WhitelistEntry:
    """A single whitelist record."""

    player_id: str
    added_by: str
    added_at: float  # Unix timestamp
    expiration: float | None = None  # Unix timestamp, None means permanent

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WhitelistEntry":
        expiration = data.get("expiration")
        return cls(
            player_id=str(data["player_id"]),
            added_by=data.get("added_by", ""),
            added_at=float(data.get("added_at", time.time())),
            expiration=float(expiration) if expiration is not None else None,
        )

    @property
    def key(self) -> str:
        return self.player_id.lower()

    @property
    def is_permanent(self) -> bool:
        return self.expiration is None

    def is_expired(self, now: float) -> bool:
        return self.expiration is not None and self.expiration <= now

    def remaining_seconds(self, now: float) -> float | None:
        if self.expiration is None:
            return None
        return max(0.0, self.expiration - now)

    @property
    def added_at_date(self) -> str:
        return _format_timestamp(self.added_at)

    @property
    def expiration_date(self) -> str:
        if self.expiration is None:
            return "never"
        return _format_timestamp(self.expiration)


@dataclass(frozen=True)
class Page:
    entries: list[WhitelistEntry]
    page: int
    total_pages: int
    total: int


def _sort_key(entry: WhitelistEntry) -> str:
    return entry.key


class WhitelistStore:
    """Case-insensitive mapping of player id to WhitelistEntry."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        on_added: Callable[[WhitelistEntry], None] | None = None,
        on_removed: Callable[[WhitelistEntry], None] | None = None,
    ):
        self._clock = clock
        self._on_added = on_added
        self._on_removed = on_removed
        self._lock = threading.RLock()
        self._entries: dict[str, WhitelistEntry] = {}
        self._ids: frozenset[str] = frozenset()
        self._dirty = False

    # -- bookkeeping ---------------------------------------------------

    def now(self) -> float:
        return self._clock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def is_dirty(self) -> bool:
        with self._lock:
            return self._dirty

    def set_listeners(
        self,
        *,
        on_added: Callable[[WhitelistEntry], None] | None = None,
        on_removed: Callable[[WhitelistEntry], None] | None = None,
    ) -> None:
        """on_removed fires for every removal: remove, clear and expiry."""
        self._on_added = on_added
        self._on_removed = on_removed

    def mark_dirty(self) -> None:
        with self._lock:
            self._dirty = True

    def mark_clean(self) -> None:
        with self._lock:
            self._dirty = False

    def _changed(self) -> None:
        # Caller holds the lock.
        self._ids = frozenset(self._entries)
        self._dirty = True

    # -- queries -------------------------------------------------------

    def is_whitelisted(self, player_id: str) -> bool:
        key = player_id.strip().lower()
        with self._lock:
            if key not in self._ids:
                return False
            entry = self._entries[key]
            if not entry.is_expired(self._clock()):
                return True
            del self._entries[key]
            self._changed()
        logger.info("Whitelist entry for %s expired on lookup", entry.player_id)
        self._removed([entry])
        return False

    def get(self, player_id: str) -> WhitelistEntry | None:
        with self._lock:
            return self._entries.get(player_id.strip().lower())

    def ids(self) -> frozenset[str]:
        """Lower-cased ids currently stored (expired entries included until evicted)."""
        with self._lock:
            return self._ids

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, player_id: object) -> bool:
        if not isinstance(player_id, str):
            return False
        return player_id.strip().lower() in self.ids()

    def snapshot(self) -> list[WhitelistEntry]:
        """All entries, sorted ascending by id."""
        with self._lock:
            return sorted(self._entries.values(), key=_sort_key)

    def list_page(self, page: int = 1, page_size: int = 10) -> Page:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        with self._lock:
            ordered = sorted(self._entries.values(), key=_sort_key)
        total = len(ordered)
        total_pages = max(1, math.ceil(total / page_size))
        page = min(max(1, page), total_pages)
        start = (page - 1) * page_size
        return Page(
            entries=ordered[start:start + page_size],
            page=page,
            total_pages=total_pages,
            total=total,
        )

    def search(self, text: str) -> list[WhitelistEntry]:
        needle = text.strip().lower()
        with self._lock:
            matches = [e for e in self._entries.values() if needle in e.key]
        return sorted(matches, key=_sort_key)

    # -- mutations -----------------------------------------------------

    def add(
        self,
        player_id: str,
        *,
        added_by: str,
        expiration: float | None = None,
    ) -> WhitelistEntry:
        """Insert a new entry. Raises AlreadyWhitelistedError if one exists."""
        player_id = player_id.strip()
        key = player_id.lower()
        with self._lock:
            if key in self._entries:
                raise AlreadyWhitelistedError(player_id)
            entry = WhitelistEntry(
                player_id=player_id,
                added_by=added_by,
                added_at=self._clock(),
                expiration=expiration,
            )
            self._entries[key] = entry
            self._changed()
        logger.debug(
            "Whitelisted %s (by %s, expiration %s)",
            player_id, added_by, expiration,
        )
        if self._on_added is not None:
            self._on_added(entry)
        return entry

    def remove(self, player_id: str) -> WhitelistEntry:
        """Delete an entry. Raises NotFoundError if absent."""
        key = player_id.strip().lower()
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                raise NotFoundError(player_id.strip())
            self._changed()
        logger.debug("Removed %s from whitelist", entry.player_id)
        self._removed([entry])
        return entry

    def clear(self) -> int:
        with self._lock:
            removed = list(self._entries.values())
            self._entries.clear()
            self._changed()
        logger.info("Cleared whitelist (%d entries removed)", len(removed))
        self._removed(removed)
        return len(removed)

    def evict_expired(self, now: float | None = None) -> list[WhitelistEntry]:
        """Remove every entry whose expiration is at or before now."""
        with self._lock:
            if now is None:
                now = self._clock()
            expired = [e for e in self._entries.values() if e.is_expired(now)]
            for entry in expired:
                del self._entries[entry.key]
            if expired:
                self._changed()
        expired.sort(key=_sort_key)
        self._removed(expired)
        return expired

    def replace_all(self, entries: Iterable[WhitelistEntry]) -> int:
        """Replace the whole mapping with already-validated entries.

        Used by load and reload; leaves the store clean.
        """
        with self._lock:
            self._entries = {e.key: e for e in entries}
            self._ids = frozenset(self._entries)
            self._dirty = False
            return len(self._entries)

    def _removed(self, entries: list[WhitelistEntry]) -> None:
        # Runs outside the lock; listeners may call into the host.
        if self._on_removed is None:
            return
        for entry in entries:
            self._on_removed(entry)
