from __future__ import annotations

import re

from gatekeeper.errors import InvalidIdentifierError

# 64-bit account ids in the individual-account namespace all start with this.
PLATFORM_ID_PREFIX = "7656119"
PLATFORM_ID_LENGTH = 17

_VALID_ID = re.compile(rf"^{PLATFORM_ID_PREFIX}[0-9]{{{PLATFORM_ID_LENGTH - len(PLATFORM_ID_PREFIX)}}}$")


def is_valid_id(value: str | None) -> bool:
    if not isinstance(value, str):
        return False
    # re's $ also matches before a trailing newline; fullmatch does not.
    return _VALID_ID.fullmatch(value) is not None


def require_valid_id(value: str | None) -> str:
    """Return the stripped id, or raise InvalidIdentifierError."""
    candidate = (value or "").strip()
    if not is_valid_id(candidate):
        raise InvalidIdentifierError(candidate)
    return candidate
