"""Sortable prefixed identifiers.

An id is ``<prefix>_<14 hex chars><12 base62 chars>``. The hex block encodes
``milliseconds * 0x1000 + counter`` so ids created in the same process sort in
creation order. Descending ids invert that block so the newest sorts first.
"""

import secrets
import time
from typing import Literal

PREFIX_MAP = {
    "session": "ses",
    "message": "msg",
    "permission": "per",
    "part": "prt",
    "tool": "tool",
    "call": "call",
}

IDPrefix = Literal["session", "message", "permission", "part", "tool", "call"]

HEX_LENGTH = 14
RANDOM_LENGTH = 12
_MASK = (1 << (HEX_LENGTH * 4)) - 1
_BASE62 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"

_last_timestamp = 0
_counter = 0


def _random_base62(length: int) -> str:
    return "".join(secrets.choice(_BASE62) for _ in range(length))


def _create(prefix: IDPrefix, descending: bool, timestamp: int | None = None) -> str:
    global _last_timestamp, _counter

    current = timestamp if timestamp is not None else int(time.time() * 1000)
    if current != _last_timestamp:
        _last_timestamp = current
        _counter = 0
    _counter += 1

    value = current * 0x1000 + _counter
    if descending:
        value = ~value & _MASK

    return f"{PREFIX_MAP[prefix]}_{value:0{HEX_LENGTH}x}{_random_base62(RANDOM_LENGTH)}"


def _check(prefix: IDPrefix, given: str) -> str:
    if not given.startswith(PREFIX_MAP[prefix] + "_"):
        raise ValueError(f"ID {given} does not start with {PREFIX_MAP[prefix]}")
    return given


def ascending(prefix: IDPrefix, given: str | None = None) -> str:
    """Generate an ascending id, or validate ``given`` against the prefix."""
    if given is not None:
        return _check(prefix, given)
    return _create(prefix, descending=False)


def descending(prefix: IDPrefix, given: str | None = None) -> str:
    """Generate a descending id, or validate ``given`` against the prefix."""
    if given is not None:
        return _check(prefix, given)
    return _create(prefix, descending=True)


def timestamp(id_str: str) -> int:
    """Creation time in milliseconds of an ascending id."""
    _, sep, body = id_str.rpartition("_")
    if not sep or len(body) < HEX_LENGTH:
        raise ValueError(f"Invalid ID format: {id_str}")
    return int(body[:HEX_LENGTH], 16) // 0x1000


class Identifier:
    """Namespace for id helpers."""

    ascending = staticmethod(ascending)
    descending = staticmethod(descending)
    timestamp = staticmethod(timestamp)
