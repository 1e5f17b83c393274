from __future__ import annotations

import csv
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, TextIO

from .config import GatewayConfig
from .frames import DecodedFrame, DecodeError, FrameDecoder
from .measurement import Measurement, extract_measurement
from .sequencer import Decision, DuplicateSequencer

logger = logging.getLogger(__name__)

STATUS_ACCEPTED = "accepted"
STATUS_DUPLICATE = "duplicate"
STATUS_DECODE_ERROR = "decode_error"


@dataclass(frozen=True)
class ScanEvent:
    """One advertisement as delivered by the scanner."""

    payload: bytes
    address: str = ""
    rssi: int = 0
    ts: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ProcessOutcome:
    status: str
    event: ScanEvent
    frame: Optional[DecodedFrame] = None
    measurement: Optional[Measurement] = None
    error: Optional[DecodeError] = None

    @property
    def accepted(self) -> bool:
        return self.status == STATUS_ACCEPTED


class CsvLogger:
    """
    Appends accepted measurements to a CSV file, created on the first record so
    that dry runs and tests never touch the filesystem.
    """

    fieldnames = ["ts", "address", "rssi", "kind", "kind_code", "counter", "value"]

    def __init__(self, path: Path):
        self.path = path
        self._handle: Optional[csv.DictWriter[str]] = None
        self._file_handle: Optional[TextIO] = None

    def append(self, event: ScanEvent, measurement: Measurement) -> None:
        if self._handle is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = self.path.open("w", newline="", encoding="utf-8")
            self._handle = csv.DictWriter(self._file_handle, fieldnames=self.fieldnames)
            self._handle.writeheader()
        self._handle.writerow(
            {
                "ts": f"{event.ts:.3f}",
                "address": event.address,
                "rssi": event.rssi,
                "kind": measurement.label(),
                "kind_code": measurement.kind_code,
                "counter": measurement.counter,
                "value": measurement.value,
            }
        )
        if self._file_handle is not None:
            self._file_handle.flush()

    def close(self) -> None:
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None
            self._handle = None


class MeasurementPipeline:
    """
    Glue that turns scan events into measurements: decode, extract, then let
    the duplicate sequencer decide. Accepted measurements are handed to the
    registered callbacks and optionally logged to CSV.
    """

    def __init__(self, config: Optional[GatewayConfig] = None):
        self.config = config or GatewayConfig()
        self.decoder = FrameDecoder()
        self.sequencer = DuplicateSequencer()
        # LRU of per-address sequencers, bounded by host.queue_maxsize
        self._per_device: "OrderedDict[str, DuplicateSequencer]" = OrderedDict()
        self._evicted = {"accepted": 0, "duplicates": 0}
        self._callbacks: List[Callable[[Measurement, ScanEvent], None]] = []
        self._decode_errors = 0
        self.csv_logger = CsvLogger(self.config.output_csv) if self.config.output_csv else None

    def process_event(self, event: ScanEvent) -> ProcessOutcome:
        try:
            frame = self.decoder.decode(event.payload)
        except DecodeError as exc:
            self._decode_errors += 1
            logger.debug("Dropping advertisement from %s: %s", event.address or "?", exc)
            return ProcessOutcome(STATUS_DECODE_ERROR, event, error=exc)
        measurement = extract_measurement(frame)
        decision = self._sequencer_for(event.address).observe(measurement.counter)
        if decision is Decision.DUPLICATE:
            return ProcessOutcome(STATUS_DUPLICATE, event, frame=frame, measurement=measurement)
        logger.info(
            "%s: %s=%d counter=%d rssi=%d",
            event.address or "?",
            measurement.label(),
            measurement.value,
            measurement.counter,
            event.rssi,
        )
        if self.csv_logger:
            self.csv_logger.append(event, measurement)
        for callback in self._callbacks:
            callback(measurement, event)
        return ProcessOutcome(STATUS_ACCEPTED, event, frame=frame, measurement=measurement)

    def process_payload(self, payload: bytes, address: str = "") -> ProcessOutcome:
        return self.process_event(ScanEvent(payload=bytes(payload), address=address))

    def process(self, events: Iterable[ScanEvent]) -> List[ProcessOutcome]:
        return [self.process_event(event) for event in events]

    def register_callback(self, callback: Callable[[Measurement, ScanEvent], None]) -> None:
        self._callbacks.append(callback)

    def reset(self) -> None:
        """Start a new scan session: forget every last-seen counter."""
        self.sequencer.reset()
        self._per_device.clear()
        self._evicted = {"accepted": 0, "duplicates": 0}
        self.decoder.reset()
        self._decode_errors = 0

    def stats(self) -> Dict[str, int]:
        sequencers = [self.sequencer, *self._per_device.values()]
        return {
            "frames": self.decoder.stats()["frames"],
            "accepted": self._evicted["accepted"] + sum(seq.accepted for seq in sequencers),
            "duplicates": self._evicted["duplicates"] + sum(seq.duplicates for seq in sequencers),
            "decode_errors": self._decode_errors,
        }

    def close(self) -> None:
        if self.csv_logger:
            self.csv_logger.close()

    def _sequencer_for(self, address: str) -> DuplicateSequencer:
        if not self.config.host.sequence_per_device:
            return self.sequencer
        sequencer = self._per_device.get(address)
        if sequencer is not None:
            self._per_device.move_to_end(address)
            return sequencer
        if len(self._per_device) >= max(self.config.host.queue_maxsize, 1):
            stale_address, stale = self._per_device.popitem(last=False)
            self._evicted["accepted"] += stale.accepted
            self._evicted["duplicates"] += stale.duplicates
            logger.debug("Forgetting counter of %s", stale_address)
        sequencer = self._per_device[address] = DuplicateSequencer()
        return sequencer
