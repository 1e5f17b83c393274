"""
Byte-level conversions shared by the beacon decoder.

All helpers are pure functions. Integer conversions are big-endian and accept
at most eight bytes; anything wider is a caller bug and is rejected instead of
being truncated.
"""

from __future__ import annotations

import uuid
from typing import Optional

MAX_INT_BYTES = 8


def _checked_width(data: bytes, what: str) -> bytes:
    blob = bytes(data)
    if not blob:
        raise ValueError(f"{what} requires at least one byte")
    if len(blob) > MAX_INT_BYTES:
        raise ValueError(f"{what} accepts at most {MAX_INT_BYTES} bytes, got {len(blob)}")
    return blob


def bytes_to_unsigned_int(data: bytes) -> int:
    """Big-endian magnitude, no sign bit (counters, kind codes)."""
    return int.from_bytes(_checked_width(data, "bytes_to_unsigned_int"), "big", signed=False)


def bytes_to_signed_int(data: bytes) -> int:
    """Big-endian two's complement, sign-extended from the width of *data*."""
    return int.from_bytes(_checked_width(data, "bytes_to_signed_int"), "big", signed=True)


def bytes_to_hex(data: Optional[bytes], sep: str = ":") -> str:
    # every byte is followed by the separator, including the last one
    if not data:
        return ""
    return "".join(f"{byte:02x}{sep}" for byte in bytes(data))


def bytes_to_latin1_text(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return bytes(data).decode("latin-1")


def text_to_bytes(text: str) -> bytes:
    return text.encode("utf-8")


def text_to_uuid(text: str) -> uuid.UUID:
    """
    Build a UUID whose sixteen bytes are the sixteen characters of *text*.

    Beacon firmware often uses a readable tag such as ``"EPSG-GTI-PROY-3A"``
    as its identifier, so each character maps to one byte.
    """
    if len(text) != 16:
        raise ValueError(f"UUID text must have exactly 16 characters, got {len(text)}")
    try:
        raw = text.encode("latin-1")
    except UnicodeEncodeError as exc:
        raise ValueError("UUID text must only contain characters below U+0100") from exc
    return uuid.UUID(bytes=raw)


def uuid_to_text(value: uuid.UUID) -> str:
    return bytes_to_latin1_text(value.bytes)


def uuid_to_hex(value: uuid.UUID, sep: str = ":") -> str:
    return bytes_to_hex(value.bytes, sep)


def longs_to_bytes(most_significant: int, least_significant: int) -> bytes:
    """Pack two 64-bit words (signed or unsigned) big-endian into 16 bytes."""
    return _word_to_bytes(most_significant) + _word_to_bytes(least_significant)


def _word_to_bytes(word: int) -> bytes:
    if not -(1 << 63) <= word < (1 << 64):
        raise ValueError(f"{word} does not fit in 64 bits")
    return (word & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "big")
