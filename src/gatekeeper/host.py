"""Interfaces the plugin consumes from its host runtime."""
from __future__ import annotations

from typing import Iterable, Protocol


class Actor(Protocol):
    """A connected player, or the server console."""

    @property
    def id(self) -> str:  # pragma: no cover
        ...

    @property
    def name(self) -> str:  # pragma: no cover
        ...

    @property
    def is_connected(self) -> bool:  # pragma: no cover
        ...

    def has_permission(self, permission: str) -> bool:  # pragma: no cover
        ...

    def reply(self, message: str) -> None:  # pragma: no cover
        ...

    def kick(self, reason: str) -> None:  # pragma: no cover
        ...


class ServerHost(Protocol):
    def connected_players(self) -> Iterable[Actor]:  # pragma: no cover
        ...

    def find_connected(self, player_id: str) -> Actor | None:  # pragma: no cover
        ...

    def grant_permission(self, player_id: str, permission: str) -> None:  # pragma: no cover
        ...

    def revoke_permission(self, player_id: str, permission: str) -> None:  # pragma: no cover
        ...


def describe_actor(actor: Actor) -> str:
    """Provenance string recorded as added_by."""
    return f"{actor.name} ({actor.id})"
