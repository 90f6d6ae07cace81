"""Error taxonomy for whitelist operations.

Everything except PersistenceIOError is recovered at the command boundary
and shown to the invoking actor as a one-line reply.
"""
from __future__ import annotations


class WhitelistError(Exception):
    pass


class InvalidIdentifierError(WhitelistError, ValueError):
    def __init__(self, player_id: str):
        super().__init__(f"Invalid player id: {player_id!r}")
        self.player_id = player_id


class AlreadyWhitelistedError(WhitelistError):
    def __init__(self, player_id: str):
        super().__init__(f"{player_id} is already whitelisted")
        self.player_id = player_id


class NotFoundError(WhitelistError, KeyError):
    def __init__(self, player_id: str):
        super().__init__(f"{player_id} is not whitelisted")
        self.player_id = player_id

    def __str__(self) -> str:
        # KeyError quotes its message otherwise.
        return self.args[0]


class PermissionDeniedError(WhitelistError, PermissionError):
    pass


class BadArgumentsError(WhitelistError):
    def __init__(self, usage: str):
        super().__init__(usage)
        self.usage = usage


class PersistenceIOError(WhitelistError, OSError):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def __str__(self) -> str:
        return self.reason
