"""Periodic eviction of expired whitelist entries."""
from __future__ import annotations

import logging

from gatekeeper.host import ServerHost
from gatekeeper.scheduler import ScheduledTask, Scheduler
from gatekeeper.store import WhitelistEntry, WhitelistStore

logger = logging.getLogger(__name__)

ADMIN_NOTICE_TEMPLATE = "Whitelist entry for {player} has expired and was removed."


class ExpirySweeper:
    """Evicts expired entries, then kicks and notifies outside the store lock.

    Eviction is final: a failed kick or notification is logged and the
    remaining signals still go out.
    """

    def __init__(
        self,
        store: WhitelistStore,
        host: ServerHost,
        *,
        interval_seconds: float = 300.0,
        kick_on_expiration: bool = True,
        notify_admins: bool = True,
        kick_message: str = "Your whitelist access has expired.",
        admin_permission: str = "whitelistmanager.admin",
    ):
        self._store = store
        self._host = host
        self._interval = interval_seconds
        self.kick_on_expiration = kick_on_expiration
        self.notify_admins = notify_admins
        self.kick_message = kick_message
        self._admin_permission = admin_permission
        self._task: ScheduledTask | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.cancelled

    def start(self, scheduler: Scheduler) -> None:
        if self.running:
            return
        self._task = scheduler.every(self._interval, self.run_once, name="gatekeeper-sweeper")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def run_once(self, now: float | None = None) -> list[WhitelistEntry]:
        evicted = self._store.evict_expired(now)
        if not evicted:
            logger.debug("Expiry sweep found nothing to remove")
            return evicted

        logger.info("Expiry sweep removed %d entries", len(evicted))
        for entry in evicted:
            if self.kick_on_expiration:
                self._kick(entry)
            if self.notify_admins:
                self._notify(entry)
        return evicted

    def _kick(self, entry: WhitelistEntry) -> None:
        try:
            player = self._host.find_connected(entry.player_id)
            if player is not None and player.is_connected:
                player.kick(self.kick_message)
                logger.info("Kicked %s after whitelist expiry", entry.player_id)
        except Exception as exc:
            logger.warning("Failed to kick expired player %s: %s", entry.player_id, exc)

    def _notify(self, entry: WhitelistEntry) -> None:
        message = ADMIN_NOTICE_TEMPLATE.format(player=entry.player_id)
        try:
            admins = [
                p for p in self._host.connected_players()
                if p.has_permission(self._admin_permission)
            ]
        except Exception as exc:
            logger.warning("Failed to list admins for expiry notice: %s", exc)
            return
        for admin in admins:
            try:
                admin.reply(message)
            except Exception as exc:
                logger.warning("Failed to notify %s of expiry: %s", admin.id, exc)
