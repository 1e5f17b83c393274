"""Demo capture utilities."""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from .beacon.codec import text_to_uuid
from .beacon.frames import build_frame, pack_major
from .beacon.measurement import GAS_CODE, TEMPERATURE_CODE
from .pipeline import run_replay
from .reporting import export_replay

DEMO_UUID = text_to_uuid("EPSG-GTI-PROY-3A")
DEMO_ADDRESS = "D4:2A:11:C0:FF:EE"


def create_demo_capture(readings: int = 40, max_repeats: int = 4) -> pd.DataFrame:
    """
    Simulate a broadcaster alternating gas and temperature readings, each
    advertised several times with the same counter, as a scanner would record it.
    """
    rng = np.random.default_rng(42)
    rows = []
    ts = 0.0
    for index in range(readings):
        counter = index % 256
        if index % 2 == 0:
            kind = GAS_CODE
            value = int(rng.integers(350, 1200))
        else:
            kind = TEMPERATURE_CODE
            value = int(rng.normal(loc=22.0, scale=3.0))
        # some scan APIs strip the flags structure before handing data over
        include_flags = bool(rng.integers(0, 2))
        frame = build_frame(DEMO_UUID, pack_major(kind, counter), value, include_flags=include_flags)
        for _ in range(int(rng.integers(1, max_repeats + 1))):
            ts += float(rng.uniform(0.05, 0.3))
            rows.append(
                {
                    "ts": round(ts, 3),
                    "address": DEMO_ADDRESS,
                    "rssi": int(rng.integers(-90, -40)),
                    "payload": frame.hex(),
                }
            )
        if index % 10 == 9:
            ts += 0.01
            rows.append(
                {"ts": round(ts, 3), "address": DEMO_ADDRESS, "rssi": -95, "payload": frame[:12].hex()}
            )
    return pd.DataFrame(rows)


def run_demo(out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    csv_path = out_dir / "demo_capture.csv"
    df = create_demo_capture()
    df.to_csv(csv_path, index=False)

    result = run_replay(str(csv_path))
    export_replay(result, out_dir, input_path=csv_path)
