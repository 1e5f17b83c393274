from __future__ import annotations

from pathlib import Path

import pytest

from biometria.beacon.config import DEFAULT_ENDPOINT, GatewayConfig, load_config


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(
        """
        {
          "output_csv": "out/measurements.csv",
          "scan": {"device_name": "GTI", "company_id": "0x004C"},
          "reporter": {"url": "http://localhost:3000/api/medicion", "timeout_sec": 3}
        }
        """,
        encoding="utf-8",
    )
    cfg = load_config(
        cfg_path,
        overrides=["reporter.timeout_sec=1.5", "scan.scanning_mode=passive", "host.sequence_per_device=true"],
    )
    assert isinstance(cfg, GatewayConfig)
    assert cfg.output_csv == Path("out/measurements.csv")
    assert cfg.scan.company_id == 0x004C
    assert cfg.scan.scanning_mode == "passive"
    assert cfg.reporter.url == "http://localhost:3000/api/medicion"
    assert cfg.reporter.timeout_sec == 1.5
    assert cfg.host.sequence_per_device is True


def test_defaults_without_file() -> None:
    cfg = load_config()
    assert cfg.reporter.url == DEFAULT_ENDPOINT
    assert cfg.scan.device_name == "GTI"
    assert cfg.output_csv is None


def test_filters_can_be_disabled() -> None:
    cfg = load_config(overrides=["scan.device_name=none", "scan.company_id=null"])
    assert cfg.scan.device_name is None
    assert cfg.scan.company_id is None


def test_invalid_values_rejected() -> None:
    with pytest.raises(ValueError):
        load_config(overrides=["scan.scanning_mode=sideways"])
    with pytest.raises(ValueError):
        load_config(overrides=["reporter.max_workers=0"])
    with pytest.raises(ValueError):
        load_config(overrides=["missing_equals"])


def test_shipped_config_loads() -> None:
    cfg = load_config(Path(__file__).resolve().parents[1] / "host_pi" / "config.json")
    assert cfg.scan.device_name == "GTI"
    assert cfg.reporter.enabled is True


def test_string_flags_in_file_are_parsed(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(
        '{"reporter": {"enabled": "false"}, "host": {"sequence_per_device": "True"}}',
        encoding="utf-8",
    )
    cfg = load_config(cfg_path)
    assert cfg.reporter.enabled is False
    assert cfg.host.sequence_per_device is True


def test_non_boolean_flag_rejected(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text('{"reporter": {"enabled": "sometimes"}}', encoding="utf-8")
    with pytest.raises(ValueError, match="reporter.enabled"):
        load_config(cfg_path)
