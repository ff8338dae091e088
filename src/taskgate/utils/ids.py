"""Identifier generation."""

import os
import time
from uuid import UUID


def time_ordered_uuid() -> UUID:
    """
    Generate a version 7 UUID.

    The leading 48 bits carry the Unix time in milliseconds, so ids sort by
    creation time while the remaining 74 bits stay random.
    """
    timestamp_ms = time.time_ns() // 1_000_000
    rand = int.from_bytes(os.urandom(10), "big")

    value = (timestamp_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= ((rand >> 62) & 0xFFF) << 64
    value |= 0b10 << 62
    value |= rand & ((1 << 62) - 1)
    return UUID(int=value)
