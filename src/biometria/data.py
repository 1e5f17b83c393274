"""Loading of advertisement capture files."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pandas as pd

REQUIRED_COLUMNS = {"payload"}
OPTIONAL_COLUMNS = {"ts": 0.0, "address": "", "rssi": 0}


@dataclass(frozen=True)
class Capture:
    """Advertisements recorded from a scan session, in arrival order."""

    dataframe: pd.DataFrame
    path: Path

    def __len__(self) -> int:
        return len(self.dataframe)


def load_capture_csv(path: str | Path) -> Capture:
    """Load a capture from *path*.

    Parameters
    ----------
    path:
        CSV file with a `payload` column holding one advertisement per row as
        hex text, plus optional `ts` (seconds), `address` and `rssi` columns.

    Returns
    -------
    Capture
        Rows sorted by `ts` (stable, so equal timestamps keep file order) with
        the optional columns filled in.
    """

    path = Path(path)
    if not path.exists():  # pragma: no cover - defensive
        raise FileNotFoundError(path)

    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    df = df.copy()
    for column, default in OPTIONAL_COLUMNS.items():
        if column not in df.columns:
            df[column] = default
    df["ts"] = pd.to_numeric(df["ts"], errors="coerce").fillna(0.0).astype(float)
    df["rssi"] = pd.to_numeric(df["rssi"], errors="coerce").fillna(0).astype(int)
    df["address"] = df["address"].astype(str)
    df = df.sort_values("ts", kind="mergesort")
    df.reset_index(drop=True, inplace=True)
    return Capture(dataframe=df[["ts", "address", "rssi", "payload"]], path=path)
