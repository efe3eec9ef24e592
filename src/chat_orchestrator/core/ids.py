"""Time-ordered identifiers (UUID version 7)."""

from __future__ import annotations

import os
import time
import uuid

_RFC_4122 = uuid.RFC_4122


def new_id() -> str:
    """Return a new UUIDv7 string: 48-bit unix-ms timestamp, then random bits."""
    unix_ms = time.time_ns() // 1_000_000
    rand = int.from_bytes(os.urandom(10), "big")

    value = (unix_ms & 0xFFFF_FFFF_FFFF) << 80
    value |= 0x7 << 76
    value |= ((rand >> 62) & 0xFFF) << 64
    value |= 0b10 << 62
    value |= rand & 0x3FFF_FFFF_FFFF_FFFF
    return str(uuid.UUID(int=value))


def is_uuid7(value: object) -> bool:
    """Return True if *value* is a string holding an RFC 4122 version-7 UUID."""
    if not isinstance(value, str):
        return False
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        return False
    return parsed.variant == _RFC_4122 and parsed.version == 7
