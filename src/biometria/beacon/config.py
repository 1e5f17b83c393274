from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .frames import APPLE_COMPANY_ID

DEFAULT_ENDPOINT = "https://amburet.upv.edu.es/api/medicion"
SCANNING_MODES = {"active", "passive"}


@dataclass
class ScanSettings:
    device_name: Optional[str] = "GTI"
    company_id: Optional[int] = APPLE_COMPANY_ID
    scanning_mode: str = "active"
    reconnect_initial_sec: float = 0.5
    reconnect_max_sec: float = 5.0


@dataclass
class ReporterSettings:
    url: str = DEFAULT_ENDPOINT
    timeout_sec: float = 5.0
    max_workers: int = 2
    enabled: bool = True


@dataclass
class HostRuntime:
    queue_maxsize: int = 512
    stats_log_interval: float = 60.0
    sequence_per_device: bool = False


@dataclass
class GatewayConfig:
    output_csv: Path | None = None
    scan: ScanSettings = field(default_factory=ScanSettings)
    reporter: ReporterSettings = field(default_factory=ReporterSettings)
    host: HostRuntime = field(default_factory=HostRuntime)

    def validate(self) -> "GatewayConfig":
        if self.scan.scanning_mode not in SCANNING_MODES:
            raise ValueError(f"Unsupported scanning_mode '{self.scan.scanning_mode}'")
        if self.scan.company_id is not None and not 0 <= self.scan.company_id <= 0xFFFF:
            raise ValueError("scan.company_id must fit in 16 bits")
        if self.reporter.max_workers < 1:
            raise ValueError("reporter.max_workers must be at least 1")
        if self.reporter.timeout_sec <= 0:
            raise ValueError("reporter.timeout_sec must be positive")
        if self.host.queue_maxsize < 1:
            raise ValueError("host.queue_maxsize must be at least 1")
        return self


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def _optional(value: Any, cast) -> Any:
    if value is None or (isinstance(value, str) and value.lower() in {"", "none", "null"}):
        return None
    return cast(value)


def _company_id(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def _flag(value: Any, name: str) -> bool:
    if isinstance(value, str):
        value = _coerce_value(value.strip())
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false, got {value!r}")
    return value


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> GatewayConfig:
    """
    Load the gateway configuration from JSON and apply CLI-style overrides.

    Overrides are dotted `key=value` pairs, e.g.:
        ["reporter.timeout_sec=2", "scan.device_name=GTI"]
    Without a path the defaults are used as the base.
    """
    data = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    scan_data = merged.get("scan") or {}
    reporter_data = merged.get("reporter") or {}
    host_data = merged.get("host") or {}
    defaults = ScanSettings()
    config = GatewayConfig(
        output_csv=Path(merged["output_csv"]) if merged.get("output_csv") else None,
        scan=ScanSettings(
            device_name=_optional(scan_data.get("device_name", defaults.device_name), str),
            company_id=_optional(scan_data.get("company_id", defaults.company_id), _company_id),
            scanning_mode=str(scan_data.get("scanning_mode", "active")).lower(),
            reconnect_initial_sec=float(scan_data.get("reconnect_initial_sec", 0.5)),
            reconnect_max_sec=float(scan_data.get("reconnect_max_sec", 5.0)),
        ),
        reporter=ReporterSettings(
            url=str(reporter_data.get("url", DEFAULT_ENDPOINT)),
            timeout_sec=float(reporter_data.get("timeout_sec", 5.0)),
            max_workers=int(reporter_data.get("max_workers", 2)),
            enabled=_flag(reporter_data.get("enabled", True), "reporter.enabled"),
        ),
        host=HostRuntime(
            queue_maxsize=int(host_data.get("queue_maxsize", 512)),
            stats_log_interval=float(host_data.get("stats_log_interval", 60.0)),
            sequence_per_device=_flag(
                host_data.get("sequence_per_device", False), "host.sequence_per_device"
            ),
        ),
    )
    return config.validate()


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if raw.lower().startswith("0x"):
            return int(raw, 16)
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
