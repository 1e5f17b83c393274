"""Offline replay of a capture through the decoder and duplicate sequencer."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import pandas as pd

from .beacon.config import GatewayConfig
from .beacon.frames import HexPayloadError, parse_hex_payload
from .beacon.processing import (
    STATUS_ACCEPTED,
    STATUS_DECODE_ERROR,
    STATUS_DUPLICATE,
    MeasurementPipeline,
    ProcessOutcome,
    ScanEvent,
)
from .data import Capture, load_capture_csv

MEASUREMENT_COLUMNS = [
    "ts",
    "address",
    "rssi",
    "payload",
    "status",
    "kind",
    "kind_code",
    "counter",
    "value",
    "error",
]


@dataclass(frozen=True)
class ReplayResult:
    capture: Capture
    measurements: pd.DataFrame
    summary: pd.DataFrame
    counts: Dict[str, int]

    @property
    def accepted(self) -> pd.DataFrame:
        return self.measurements[self.measurements["status"] == STATUS_ACCEPTED]


def run_replay(path: str, *, config: Optional[GatewayConfig] = None) -> ReplayResult:
    """Load a capture and classify every advertisement it holds."""

    capture = load_capture_csv(path)
    pipeline = MeasurementPipeline(config or GatewayConfig(output_csv=None))
    rows: list[dict[str, object]] = []
    try:
        for record in capture.dataframe.itertuples(index=False):
            rows.append(_replay_row(pipeline, record))
    finally:
        pipeline.close()

    measurements = pd.DataFrame(rows, columns=MEASUREMENT_COLUMNS)
    counts = {
        status: int((measurements["status"] == status).sum())
        for status in (STATUS_ACCEPTED, STATUS_DUPLICATE, STATUS_DECODE_ERROR)
    }
    return ReplayResult(
        capture=capture,
        measurements=measurements,
        summary=_build_summary(measurements),
        counts=counts,
    )


def _replay_row(pipeline: MeasurementPipeline, record) -> dict[str, object]:
    row: dict[str, object] = {
        "ts": record.ts,
        "address": record.address,
        "rssi": record.rssi,
        "payload": record.payload,
        "kind": None,
        "kind_code": None,
        "counter": None,
        "value": None,
        "error": None,
    }
    try:
        payload = parse_hex_payload(record.payload)
    except HexPayloadError as exc:
        row.update(status=STATUS_DECODE_ERROR, error=str(exc))
        return row
    event = ScanEvent(payload=payload, address=record.address, rssi=record.rssi, ts=record.ts)
    outcome: ProcessOutcome = pipeline.process_event(event)
    row["status"] = outcome.status
    if outcome.measurement is not None:
        measurement = outcome.measurement
        row.update(
            kind=measurement.label(),
            kind_code=measurement.kind_code,
            counter=measurement.counter,
            value=measurement.value,
        )
    if outcome.error is not None:
        row["error"] = str(outcome.error)
    return row


def _build_summary(measurements: pd.DataFrame) -> pd.DataFrame:
    accepted = measurements[measurements["status"] == STATUS_ACCEPTED].copy()
    columns = ["kind", "readings", "min", "max", "mean", "last"]
    if accepted.empty:
        return pd.DataFrame(columns=columns)
    accepted["value"] = accepted["value"].astype(int)
    grouped = accepted.groupby("kind", sort=True)["value"]
    summary = grouped.agg(["count", "min", "max", "mean", "last"]).reset_index()
    summary.columns = columns
    return summary
