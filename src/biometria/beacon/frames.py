from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Union

from .codec import bytes_to_hex, bytes_to_signed_int

FLAGS_PREAMBLE = b"\x02\x01\x06"
CANONICAL_LENGTH = 30
APPLE_COMPANY_ID = 0x004C
IBEACON_TYPE = 0x02
IBEACON_LENGTH = 0x15

# (name, offset, length) inside the canonical buffer
FIELD_LAYOUT = (
    ("adv_flags", 0, 3),
    ("adv_header", 3, 2),
    ("company_id", 5, 2),
    ("beacon_type", 7, 1),
    ("beacon_length", 8, 1),
    ("uuid", 9, 16),
    ("major", 25, 2),
    ("minor", 27, 2),
    ("tx_power", 29, 1),
)

_HEX_SEPARATORS = re.compile(r"[\s:\-]")

RawFrame = Union[bytes, bytearray, memoryview]


class DecodeError(ValueError):
    """A single advertisement could not be turned into a frame."""


class FrameTooShortError(DecodeError):
    def __init__(self, length: int):
        super().__init__(f"canonical frame has {length} bytes, need {CANONICAL_LENGTH}")
        self.length = length


class HexPayloadError(DecodeError):
    pass


@dataclass(frozen=True)
class DecodedFrame:
    adv_flags: bytes
    adv_header: bytes
    company_id: bytes
    beacon_type: bytes
    beacon_length: bytes
    uuid: bytes
    major: bytes
    minor: bytes
    tx_power: bytes

    @property
    def prefix(self) -> bytes:
        return self.adv_flags + self.adv_header + self.company_id + self.beacon_type + self.beacon_length

    @property
    def uuid_value(self) -> uuid.UUID:
        return uuid.UUID(bytes=self.uuid)

    @property
    def tx_power_dbm(self) -> int:
        return bytes_to_signed_int(self.tx_power)

    def to_bytes(self) -> bytes:
        return b"".join(getattr(self, name) for name, _, _ in FIELD_LAYOUT)

    def describe(self) -> Dict[str, str]:
        return {name: bytes_to_hex(getattr(self, name)) for name, _, _ in FIELD_LAYOUT}


def normalize(raw: RawFrame) -> bytes:
    """Return the canonical buffer, prepending the BLE flags preamble if absent."""
    data = bytes(raw)
    if data.startswith(FLAGS_PREAMBLE):
        return data
    return FLAGS_PREAMBLE + data


def decode_frame(raw: RawFrame) -> DecodedFrame:
    canonical = normalize(raw)
    if len(canonical) < CANONICAL_LENGTH:
        raise FrameTooShortError(len(canonical))
    fields = {name: canonical[offset : offset + length] for name, offset, length in FIELD_LAYOUT}
    return DecodedFrame(**fields)


def parse_hex_payload(text: str) -> bytes:
    cleaned = _HEX_SEPARATORS.sub("", text.strip())
    if cleaned.lower().startswith("0x"):
        cleaned = cleaned[2:]
    try:
        return bytes.fromhex(cleaned)
    except ValueError as exc:
        raise HexPayloadError(f"invalid hex payload {text!r}") from exc


def pack_major(kind_code: int, counter: int) -> int:
    if not 0 <= kind_code <= 0xFF or not 0 <= counter <= 0xFF:
        raise ValueError("kind code and counter must both fit in one byte")
    return (kind_code << 8) + counter


def build_frame(
    beacon_uuid: uuid.UUID | bytes,
    major: int,
    minor: int,
    tx_power: int = -53,
    *,
    company_id: int = APPLE_COMPANY_ID,
    include_flags: bool = True,
) -> bytes:
    """
    Serialize an iBeacon advertisement in the same layout the decoder slices.

    ``minor`` may be negative (two's complement), ``tx_power`` is a signed
    dBm value. With ``include_flags=False`` the result looks like what scan
    APIs deliver once they strip the flags structure.
    """
    uuid_bytes = beacon_uuid.bytes if isinstance(beacon_uuid, uuid.UUID) else bytes(beacon_uuid)
    if len(uuid_bytes) != 16:
        raise ValueError("beacon UUID must be 16 bytes")
    body = (
        company_id.to_bytes(2, "little")
        + bytes([IBEACON_TYPE, IBEACON_LENGTH])
        + uuid_bytes
        + major.to_bytes(2, "big")
        + minor.to_bytes(2, "big", signed=minor < 0)
        + tx_power.to_bytes(1, "big", signed=True)
    )
    header = bytes([len(body) + 1, 0xFF])
    frame = header + body
    return FLAGS_PREAMBLE + frame if include_flags else frame


class FrameDecoder:
    """
    Decoder front-end that keeps counters across a scanning session.
    Frames that fail to decode are logged and skipped by the iterators.
    """

    def __init__(self) -> None:
        self._stats: Dict[str, int] = {"frames": 0, "too_short": 0, "hex_errors": 0}
        self._log = logging.getLogger(__name__)

    def decode(self, raw: RawFrame) -> DecodedFrame:
        try:
            frame = decode_frame(raw)
        except FrameTooShortError:
            self._stats["too_short"] += 1
            raise
        self._stats["frames"] += 1
        return frame

    def iter_frames(self, raws: Iterable[RawFrame]) -> Iterator[DecodedFrame]:
        for raw in raws:
            try:
                yield self.decode(raw)
            except FrameTooShortError as exc:
                self._log.debug("Dropping frame: %s", exc)

    def parse_hex(self, lines: Iterable[str]) -> Iterator[DecodedFrame]:
        for line in iterate_text_stream(lines):
            try:
                raw = parse_hex_payload(line)
            except HexPayloadError as exc:
                self._stats["hex_errors"] += 1
                self._log.debug("Skipping line: %s", exc)
                continue
            yield from self.iter_frames([raw])

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        for key in self._stats:
            self._stats[key] = 0


def iterate_text_stream(handle: Iterable[str]) -> Iterator[str]:
    for line in handle:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        yield line
