"""Whitelist plugin: wires the store, persistence, sweeper and commands to a host."""
from __future__ import annotations

import logging
from typing import Sequence

from gatekeeper.commands import WhitelistCommands, message
from gatekeeper.config import GatekeeperSettings, get_settings
from gatekeeper.host import Actor, ServerHost
from gatekeeper.persistence import AutoSaver, DocumentStore, JsonDocumentStore, WhitelistRepository
from gatekeeper.scheduler import Scheduler, ThreadScheduler
from gatekeeper.store import WhitelistEntry, WhitelistStore
from gatekeeper.sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


class WhitelistPlugin:
    def __init__(
        self,
        host: ServerHost,
        *,
        settings: GatekeeperSettings | None = None,
        documents: DocumentStore | None = None,
        scheduler: Scheduler | None = None,
        store: WhitelistStore | None = None,
    ):
        self.settings = settings or get_settings()
        self.host = host
        self.documents = documents or JsonDocumentStore(self.settings.data_dir)
        # A scheduler handed in by the host may carry the host's own tasks.
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler if scheduler is not None else ThreadScheduler()

        self.store = store if store is not None else WhitelistStore()
        self.store.set_listeners(on_added=self._on_entry_added, on_removed=self._on_entry_removed)

        self.repository = WhitelistRepository(self.documents, document_name=self.settings.document_name)
        self.autosaver = AutoSaver(
            self.store,
            self.repository,
            interval_seconds=self.settings.save_interval_seconds,
        )
        self.sweeper = ExpirySweeper(
            self.store,
            self.host,
            interval_seconds=self.settings.sweep_interval_seconds,
            kick_on_expiration=self.settings.kick_on_expiration,
            notify_admins=self.settings.notify_admins_on_expiration,
            kick_message=self.settings.expiration_kick_message,
            admin_permission=self.settings.admin_permission,
        )
        self.commands = WhitelistCommands(
            self.store,
            self.repository,
            self.documents,
            self.settings,
            sweeper=self.sweeper,
            after_mutation=self._after_mutation,
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        if self._started:
            return
        count = self.repository.load(self.store)
        self.sweeper.start(self.scheduler)
        self.autosaver.start(self.scheduler)
        self._started = True
        logger.info(
            "Whitelist plugin started with %d entries (sweep every %ss, %s save)",
            count,
            self.settings.sweep_interval_seconds,
            "deferred" if self.settings.deferred_save else "immediate",
        )

    def shutdown(self) -> None:
        if not self._started:
            return
        self.sweeper.stop()
        self.autosaver.stop()
        if self._owns_scheduler:
            self.scheduler.cancel_all()
        self._started = False
        logger.info("Whitelist plugin stopped")

    def is_whitelisted(self, player_id: str) -> bool:
        return self.store.is_whitelisted(player_id)

    def on_player_connected(self, player: Actor) -> bool:
        """Kick the player unless they may join. Returns True if allowed."""
        if not self.settings.enabled:
            return True
        # Checked first so an expired entry is evicted and its linked bypass
        # revoked before the permission is consulted.
        if self.store.is_whitelisted(player.id):
            return True
        if player.has_permission(self.settings.bypass_permission):
            logger.debug("%s holds %s, admitted without whitelist entry", player.id, self.settings.bypass_permission)
            return True
        logger.info("Rejected %s (%s): not whitelisted", player.name, player.id)
        player.kick(message("NotWhitelisted"))
        return False

    def on_command(self, actor: Actor, args: Sequence[str]) -> str:
        return self.commands.dispatch(actor, args)

    def _after_mutation(self) -> None:
        if not self.settings.deferred_save:
            self.repository.save(self.store)

    def _on_entry_added(self, entry: WhitelistEntry) -> None:
        if not self.settings.grant_bypass_permission:
            return
        try:
            self.host.grant_permission(entry.player_id, self.settings.bypass_permission)
        except Exception as exc:
            logger.warning("Failed to grant %s to %s: %s", self.settings.bypass_permission, entry.player_id, exc)

    def _on_entry_removed(self, entry: WhitelistEntry) -> None:
        if not self.settings.grant_bypass_permission:
            return
        try:
            self.host.revoke_permission(entry.player_id, self.settings.bypass_permission)
        except Exception as exc:
            logger.warning("Failed to revoke %s from %s: %s", self.settings.bypass_permission, entry.player_id, exc)
