"""Stand-alone console host for running the whitelist plugin locally.

Reads lines from stdin. `whitelist ...` (or `wl ...`) runs the admin command
as the server console; `connect <id> [name]`, `disconnect <id>` and
`players` simulate connections; `sweep` and `save` trigger maintenance.
"""
from __future__ import annotations

import logging
import shlex
import sys
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, TextIO

from gatekeeper.config import get_settings
from gatekeeper.plugin import WhitelistPlugin

logger = logging.getLogger(__name__)

CONSOLE_ID = "server_console"


@dataclass
class ConsolePlayer:
    id: str
    name: str
    permissions: set[str] = field(default_factory=set)
    is_connected: bool = True
    output: Callable[[str], None] = print
    kicked_reason: str | None = None

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def reply(self, message: str) -> None:
        self.output(f"[to {self.name}] {message}")

    def kick(self, reason: str) -> None:
        self.is_connected = False
        self.kicked_reason = reason
        self.output(f"[kick {self.name}] {reason}")


@dataclass
class ServerConsole:
    """The console actor holds every permission."""

    output: Callable[[str], None] = print
    id: str = CONSOLE_ID
    name: str = "Server Console"
    is_connected: bool = True

    def has_permission(self, permission: str) -> bool:
        return True

    def reply(self, message: str) -> None:
        self.output(message)

    def kick(self, reason: str) -> None:
        pass


class ConsoleHost:
    """In-process stand-in for the game server's player and permission services."""

    def __init__(self, output: Callable[[str], None] = print):
        self._output = output
        self._lock = threading.Lock()
        self._players: dict[str, ConsolePlayer] = {}
        self._grants: dict[str, set[str]] = {}

    def connect(self, player_id: str, name: str | None = None) -> ConsolePlayer:
        with self._lock:
            player = ConsolePlayer(
                id=player_id,
                name=name or player_id,
                permissions=self._grants.setdefault(player_id.lower(), set()),
                output=self._output,
            )
            self._players[player_id.lower()] = player
            return player

    def disconnect(self, player_id: str) -> bool:
        with self._lock:
            return self._players.pop(player_id.lower(), None) is not None

    def connected_players(self) -> Iterable[ConsolePlayer]:
        with self._lock:
            return [p for p in self._players.values() if p.is_connected]

    def find_connected(self, player_id: str) -> ConsolePlayer | None:
        with self._lock:
            player = self._players.get(player_id.lower())
        if player is None or not player.is_connected:
            return None
        return player

    def grant_permission(self, player_id: str, permission: str) -> None:
        with self._lock:
            self._grants.setdefault(player_id.lower(), set()).add(permission)

    def revoke_permission(self, player_id: str, permission: str) -> None:
        with self._lock:
            self._grants.setdefault(player_id.lower(), set()).discard(permission)


def run_console(plugin: WhitelistPlugin, host: ConsoleHost, stream: TextIO, output: Callable[[str], None] = print) -> None:
    console = ServerConsole(output=output)
    for raw in stream:
        line = raw.strip()
        if not line:
            continue
        try:
            parts = shlex.split(line)
        except ValueError as exc:
            output(f"Could not parse input: {exc}")
            continue

        cmd, args = parts[0].lower(), parts[1:]
        if cmd in {"quit", "exit"}:
            break
        if cmd in {"whitelist", "wl"}:
            plugin.on_command(console, args)
        elif cmd == "connect" and args:
            player = host.connect(args[0], " ".join(args[1:]) or None)
            if plugin.on_player_connected(player):
                output(f"{player.name} joined")
            else:
                host.disconnect(player.id)
        elif cmd == "disconnect" and len(args) == 1:
            if not host.disconnect(args[0]):
                output(f"{args[0]} is not connected")
        elif cmd == "players":
            names = [f"{p.name} ({p.id})" for p in host.connected_players()]
            output(", ".join(names) if names else "No players connected")
        elif cmd == "sweep":
            evicted = plugin.sweeper.run_once()
            output(f"Sweep removed {len(evicted)} expired entries")
        elif cmd == "save":
            ok = plugin.repository.save(plugin.store)
            output("Saved" if ok else f"Save failed: {plugin.repository.last_error}")
        else:
            output("Commands: whitelist|wl <subcommand>, connect <id> [name], disconnect <id>, players, sweep, save, quit")


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    host = ConsoleHost()
    plugin = WhitelistPlugin(host, settings=settings)
    logger.info("Gatekeeper console starting data_dir=%s document=%s", settings.data_dir, settings.document_name)
    plugin.start()
    try:
        run_console(plugin, host, sys.stdin)
    except KeyboardInterrupt:
        pass
    finally:
        plugin.shutdown()


if __name__ == "__main__":
    main()
