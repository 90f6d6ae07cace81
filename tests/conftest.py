"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Generator

import pytest

from gatekeeper.config import GatekeeperSettings
from gatekeeper.persistence import JsonDocumentStore
from gatekeeper.scheduler import ScheduledTask
from gatekeeper.store import WhitelistStore

ADMIN = "whitelistmanager.admin"
BYPASS = "whitelistmanager.bypass"


def make_id(n: int) -> str:
    """A valid 17-digit platform id."""
    return f"7656119{n:010d}"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakePlayer:
    id: str
    name: str = "Player"
    permissions: set[str] = field(default_factory=set)
    is_connected: bool = True
    replies: list[str] = field(default_factory=list)
    kicked: str | None = None

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def reply(self, message: str) -> None:
        self.replies.append(message)

    def kick(self, reason: str) -> None:
        self.kicked = reason
        self.is_connected = False


class FakeHost:
    def __init__(self) -> None:
        self.players: list[FakePlayer] = []
        self.granted: list[tuple[str, str]] = []
        self.revoked: list[tuple[str, str]] = []

    def join(self, player: FakePlayer) -> FakePlayer:
        self.players.append(player)
        return player

    def connected_players(self) -> list[FakePlayer]:
        return [p for p in self.players if p.is_connected]

    def find_connected(self, player_id: str) -> FakePlayer | None:
        for p in self.players:
            if p.id.lower() == player_id.lower() and p.is_connected:
                return p
        return None

    def grant_permission(self, player_id: str, permission: str) -> None:
        self.granted.append((player_id, permission))

    def revoke_permission(self, player_id: str, permission: str) -> None:
        self.revoked.append((player_id, permission))


class RecordingScheduler:
    """Scheduler that records tasks instead of starting threads."""

    def __init__(self) -> None:
        self.tasks: list[tuple[float, Callable[[], object], ScheduledTask]] = []
        self.cancelled_all = False

    def every(self, interval: float, task: Callable[[], object], *, name: str = "test") -> ScheduledTask:
        handle = ScheduledTask(task, interval=interval, repeat=True, name=name)
        self.tasks.append((interval, task, handle))
        return handle

    def once(self, delay: float, task: Callable[[], object], *, name: str = "test") -> ScheduledTask:
        handle = ScheduledTask(task, interval=delay, repeat=False, name=name)
        self.tasks.append((delay, task, handle))
        return handle

    def cancel_all(self) -> None:
        self.cancelled_all = True
        for _, _, handle in self.tasks:
            handle.cancel()

    def names(self) -> list[str]:
        return [handle.name for _, _, handle in self.tasks]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after the test."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> WhitelistStore:
    return WhitelistStore(clock=clock)


@pytest.fixture
def documents(temp_dir: Path) -> JsonDocumentStore:
    return JsonDocumentStore(temp_dir)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def admin() -> FakePlayer:
    return FakePlayer(id=make_id(999), name="Admin", permissions={ADMIN})


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def settings(temp_dir: Path) -> GatekeeperSettings:
    return GatekeeperSettings(data_dir=temp_dir)
