"""The `whitelist` admin command.

Parses subcommands, checks the admin permission, applies the store and bulk
operations, and turns whitelist errors into one-line replies.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Sequence

from gatekeeper import bulk as bulk_ops
from gatekeeper.config import GatekeeperSettings
from gatekeeper.errors import (
    AlreadyWhitelistedError,
    BadArgumentsError,
    InvalidIdentifierError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceIOError,
    WhitelistError,
)
from gatekeeper.host import Actor, describe_actor
from gatekeeper.persistence import DocumentStore, WhitelistRepository
from gatekeeper.safety.validator import require_valid_id
from gatekeeper.store import WhitelistEntry, WhitelistStore
from gatekeeper.sweeper import ExpirySweeper

logger = logging.getLogger(__name__)

COMMAND_NAME = "whitelist"

MESSAGES: dict[str, str] = {
    "NotWhitelisted": "You are not whitelisted on this server.",
    "AlreadyWhitelisted": "{player} is already whitelisted.",
    "AddedToWhitelist": "{player} has been added to the whitelist.",
    "TempAddedToWhitelist": "{player} has been added to the whitelist for {duration}.",
    "DurationTooLong": "Duration too long, the maximum is {max}.",
    "RemovedFromWhitelist": "{player} has been removed from the whitelist.",
    "NoPermission": "You do not have permission to use this command.",
    "PlayerNotFound": "{player} was not found on the whitelist.",
    "InvalidId": "{player} is not a valid player id.",
    "ListHeader": "Whitelisted players (page {page}/{pages}, {total} total):",
    "ListEmpty": "The whitelist is empty.",
    "SearchNoResults": "No whitelisted ids match '{text}'.",
    "SearchResults": "{count} match(es) for '{text}':",
    "Count": "There are {count} whitelisted players.",
    "Cleared": "Whitelist cleared ({count} entries removed).",
    "ClearConfirm": "This removes every entry. Run '/whitelist clear confirm' to proceed.",
    "Reloaded": "Whitelist reloaded ({count} entries).",
    "ReloadFailed": "Reload failed: {reason}. Keeping the {count} entries in memory.",
    "BulkResult": "Bulk {op}: {success} succeeded, {failed} failed.",
    "ExportDone": "Exported {count} ids to {name}.",
    "ExportEmpty": "Nothing to export, the whitelist is empty.",
    "ImportDone": "Imported {imported} ids ({invalid} invalid lines).",
    "ImportMissing": "Import document '{name}' not found.",
    "Info": "{player}: added by {added_by} on {added_at}, expires {expires}.",
    "ConfigLine": "{key} = {value}",
    "ConfigSet": "{key} set to {value}.",
    "ConfigUnknown": "Unknown config key '{key}'. Known keys: {keys}.",
    "ConfigBadValue": "Invalid value '{value}' for {key}.",
}

USAGE: dict[str, str] = {
    "": "Usage: /whitelist <add|remove|temp|list|search|info|count|clear|reload|config|bulk|export|import>",
    "add": "Usage: /whitelist add <player id>",
    "remove": "Usage: /whitelist remove <player id>",
    "temp": "Usage: /whitelist temp <player id> <duration, e.g. 30m, 12h, 7d>",
    "list": "Usage: /whitelist list [page]",
    "search": "Usage: /whitelist search <text>",
    "info": "Usage: /whitelist info <player id>",
    "count": "Usage: /whitelist count",
    "clear": "Usage: /whitelist clear confirm",
    "reload": "Usage: /whitelist reload",
    "config": "Usage: /whitelist config [<key> <value>]",
    "bulk": "Usage: /whitelist bulk <add|remove> <player id> [<player id> ...]",
    "export": "Usage: /whitelist export",
    "import": "Usage: /whitelist import <document name>",
}

# Runtime-adjustable settings exposed through `/whitelist config`.
CONFIG_KEYS: tuple[str, ...] = (
    "enabled",
    "kick_on_expiration",
    "notify_admins_on_expiration",
    "deferred_save",
    "page_size",
)

# Keeps expirations inside the range datetime can format.
MAX_DURATION_SECONDS = 100 * 365 * 86400

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
_DURATION_PART = re.compile(r"(\d+)([smhdw])")
_DURATION_FULL = re.compile(r"^(?:\d+[smhdw])+$")


def message(key: str, /, **kwargs: object) -> str:
    return MESSAGES[key].format(**kwargs)


def parse_duration(text: str) -> float:
    """Parse durations like '30m', '12h', '7d' or '1d12h' into seconds."""
    value = (text or "").strip().lower()
    if value.isdigit():
        # Bare number means minutes.
        seconds = int(value) * 60
    elif _DURATION_FULL.match(value):
        seconds = sum(int(n) * _DURATION_UNITS[u] for n, u in _DURATION_PART.findall(value))
    else:
        raise BadArgumentsError(USAGE["temp"])
    if seconds <= 0:
        raise BadArgumentsError(USAGE["temp"])
    if seconds > MAX_DURATION_SECONDS:
        raise BadArgumentsError(message("DurationTooLong", max=format_duration(MAX_DURATION_SECONDS)))
    return float(seconds)


def format_duration(seconds: float) -> str:
    remaining = int(round(seconds))
    if remaining <= 0:
        return "0s"
    parts: list[str] = []
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
        amount, remaining = divmod(remaining, size)
        if amount:
            parts.append(f"{amount}{unit}")
    return " ".join(parts)


def _parse_bool(value: str) -> bool:
    lower = value.strip().lower()
    if lower in {"true", "on", "yes", "1"}:
        return True
    if lower in {"false", "off", "no", "0"}:
        return False
    raise ValueError(value)


class WhitelistCommands:
    """Handler for `/whitelist <subcommand> ...`."""

    def __init__(
        self,
        store: WhitelistStore,
        repository: WhitelistRepository,
        documents: DocumentStore,
        settings: GatekeeperSettings,
        *,
        sweeper: ExpirySweeper | None = None,
        after_mutation: Callable[[], None] | None = None,
    ):
        self._store = store
        self._repository = repository
        self._documents = documents
        self._settings = settings
        self._sweeper = sweeper
        self._after_mutation = after_mutation
        self._handlers: dict[str, Callable[[Actor, list[str]], str]] = {
            "add": self._add,
            "remove": self._remove,
            "temp": self._temp,
            "list": self._list,
            "search": self._search,
            "info": self._info,
            "count": self._count,
            "clear": self._clear,
            "reload": self._reload,
            "config": self._config,
            "bulk": self._bulk,
            "export": self._export,
            "import": self._import,
        }

    @property
    def subcommands(self) -> list[str]:
        return list(self._handlers)

    def dispatch(self, actor: Actor, args: Sequence[str]) -> str:
        """Run a subcommand and reply to the actor. Returns the reply text."""
        reply = self._dispatch(actor, list(args))
        actor.reply(reply)
        return reply

    def _dispatch(self, actor: Actor, args: list[str]) -> str:
        if not args:
            return USAGE[""]
        action = args[0].lower()
        handler = self._handlers.get(action)
        if handler is None:
            return USAGE[""]

        try:
            self._require_admin(actor)
            return handler(actor, args[1:])
        except PermissionDeniedError:
            return message("NoPermission")
        except BadArgumentsError as exc:
            return exc.usage
        except InvalidIdentifierError as exc:
            return message("InvalidId", player=exc.player_id)
        except AlreadyWhitelistedError as exc:
            return message("AlreadyWhitelisted", player=exc.player_id)
        except NotFoundError as exc:
            return message("PlayerNotFound", player=exc.player_id)
        except WhitelistError as exc:
            logger.error("Whitelist command %s failed: %s", action, exc)
            return str(exc)

    def _require_admin(self, actor: Actor) -> None:
        if not actor.has_permission(self._settings.admin_permission):
            logger.info("Denied whitelist command for %s", describe_actor(actor))
            raise PermissionDeniedError(self._settings.admin_permission)

    def _mutated(self) -> None:
        if self._after_mutation is not None:
            self._after_mutation()

    @staticmethod
    def _expect(args: list[str], count: int, usage_key: str) -> None:
        if len(args) != count:
            raise BadArgumentsError(USAGE[usage_key])

    # -- subcommands ---------------------------------------------------

    def _add(self, actor: Actor, args: list[str]) -> str:
        self._expect(args, 1, "add")
        player_id = require_valid_id(args[0])
        self._store.add(player_id, added_by=describe_actor(actor))
        logger.info("%s whitelisted by %s", player_id, describe_actor(actor))
        self._mutated()
        return message("AddedToWhitelist", player=player_id)

    def _temp(self, actor: Actor, args: list[str]) -> str:
        self._expect(args, 2, "temp")
        player_id = require_valid_id(args[0])
        seconds = parse_duration(args[1])
        self._store.add(
            player_id,
            added_by=describe_actor(actor),
            expiration=self._store.now() + seconds,
        )
        logger.info("%s whitelisted for %s by %s", player_id, format_duration(seconds), describe_actor(actor))
        self._mutated()
        return message("TempAddedToWhitelist", player=player_id, duration=format_duration(seconds))

    def _remove(self, actor: Actor, args: list[str]) -> str:
        self._expect(args, 1, "remove")
        player_id = require_valid_id(args[0])
        self._store.remove(player_id)
        logger.info("%s removed from whitelist by %s", player_id, describe_actor(actor))
        self._mutated()
        return message("RemovedFromWhitelist", player=player_id)

    def _list(self, actor: Actor, args: list[str]) -> str:
        if len(args) > 1:
            raise BadArgumentsError(USAGE["list"])
        page_number = 1
        if args:
            try:
                page_number = int(args[0])
            except ValueError:
                raise BadArgumentsError(USAGE["list"])
        page = self._store.list_page(page_number, self._settings.page_size)
        if page.total == 0:
            return message("ListEmpty")
        now = self._store.now()
        lines = [message("ListHeader", page=page.page, pages=page.total_pages, total=page.total)]
        lines.extend(self._format_line(e, now) for e in page.entries)
        return "\n".join(lines)

    @staticmethod
    def _format_line(entry: WhitelistEntry, now: float) -> str:
        remaining = entry.remaining_seconds(now)
        if remaining is None:
            return f"- {entry.player_id}"
        return f"- {entry.player_id} (expires in {format_duration(remaining)})"

    def _search(self, actor: Actor, args: list[str]) -> str:
        self._expect(args, 1, "search")
        text = args[0]
        matches = self._store.search(text)
        if not matches:
            return message("SearchNoResults", text=text)
        now = self._store.now()
        lines = [message("SearchResults", count=len(matches), text=text)]
        lines.extend(self._format_line(e, now) for e in matches)
        return "\n".join(lines)

    def _info(self, actor: Actor, args: list[str]) -> str:
        self._expect(args, 1, "info")
        player_id = require_valid_id(args[0])
        entry = self._store.get(player_id)
        if entry is None:
            raise NotFoundError(player_id)
        now = self._store.now()
        if entry.is_permanent:
            expires = "never"
        else:
            expires = f"{entry.expiration_date} (in {format_duration(entry.remaining_seconds(now) or 0)})"
        return message(
            "Info",
            player=entry.player_id,
            added_by=entry.added_by,
            added_at=entry.added_at_date,
            expires=expires,
        )

    def _count(self, actor: Actor, args: list[str]) -> str:
        self._expect(args, 0, "count")
        return message("Count", count=self._store.count())

    def _clear(self, actor: Actor, args: list[str]) -> str:
        if not args:
            return message("ClearConfirm")
        if len(args) != 1 or args[0].lower() != "confirm":
            raise BadArgumentsError(USAGE["clear"])
        removed = self._store.clear()
        logger.info("Whitelist cleared by %s", describe_actor(actor))
        self._mutated()
        return message("Cleared", count=removed)

    def _reload(self, actor: Actor, args: list[str]) -> str:
        self._expect(args, 0, "reload")
        try:
            count = self._repository.reload(self._store)
        except PersistenceIOError as exc:
            return message("ReloadFailed", reason=exc.reason, count=self._store.count())
        return message("Reloaded", count=count)

    def _config(self, actor: Actor, args: list[str]) -> str:
        if not args:
            return "\n".join(
                message("ConfigLine", key=key, value=getattr(self._settings, key))
                for key in CONFIG_KEYS
            )
        self._expect(args, 2, "config")
        key, raw = args[0].lower(), args[1]
        if key not in CONFIG_KEYS:
            return message("ConfigUnknown", key=key, keys=", ".join(CONFIG_KEYS))
        try:
            if key == "page_size":
                value: object = int(raw)
                if value < 1:
                    raise ValueError(raw)
            else:
                value = _parse_bool(raw)
        except ValueError:
            return message("ConfigBadValue", key=key, value=raw)

        setattr(self._settings, key, value)
        if self._sweeper is not None:
            if key == "kick_on_expiration":
                self._sweeper.kick_on_expiration = bool(value)
            elif key == "notify_admins_on_expiration":
                self._sweeper.notify_admins = bool(value)
        logger.info("Config %s set to %s by %s", key, value, describe_actor(actor))
        return message("ConfigSet", key=key, value=value)

    def _bulk(self, actor: Actor, args: list[str]) -> str:
        if len(args) < 2 or args[0].lower() not in bulk_ops.BULK_OPERATIONS:
            raise BadArgumentsError(USAGE["bulk"])
        op = args[0].lower()
        added_by = describe_actor(actor)
        result = bulk_ops.bulk(self._store, op, args[1:], added_by=added_by)
        if result.success:
            self._mutated()
        return message("BulkResult", op=op, success=result.success, failed=result.failed)

    def _export(self, actor: Actor, args: list[str]) -> str:
        self._expect(args, 0, "export")
        name = bulk_ops.export_to_document(self._store, self._documents)
        if name is None:
            return message("ExportEmpty")
        return message("ExportDone", count=self._store.count(), name=name)

    def _import(self, actor: Actor, args: list[str]) -> str:
        self._expect(args, 1, "import")
        name = args[0]
        result = bulk_ops.import_from_document(
            self._store, self._documents, name, added_by=describe_actor(actor)
        )
        if result is None:
            return message("ImportMissing", name=name)
        if result.imported:
            self._mutated()
        return message("ImportDone", imported=result.imported, invalid=result.invalid)
