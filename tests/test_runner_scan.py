from __future__ import annotations

import io
import queue
from types import SimpleNamespace

import pytest
from typer.testing import CliRunner

from biometria.beacon.codec import text_to_uuid
from biometria.beacon.config import GatewayConfig, ScanSettings
from biometria.beacon.frames import build_frame, decode_frame, pack_major
from biometria.beacon.measurement import extract_measurement
from biometria.beacon.runner import (
    BeaconHost,
    BeaconScannerThread,
    ScannerUnavailableError,
    advertisement_payload,
)
from biometria.cli import app

BEACON_UUID = text_to_uuid("EPSG-GTI-PROY-3A")


class FakeBleakError(Exception):
    pass


class FakeNotAvailableError(FakeBleakError):
    pass


class FakeBleakModule:
    def __init__(self, scanner_factory):
        self.BleakScanner = scanner_factory
        self.exc = SimpleNamespace(BleakError=FakeBleakError, BleakBluetoothNotAvailableError=FakeNotAvailableError)


def apple_manufacturer_data(kind: int, counter: int, value: int) -> bytes:
    # bleak strips the length/type header and the company id
    return build_frame(BEACON_UUID, pack_major(kind, counter), value)[7:]


def make_advertisement(name: str, manufacturer_data: dict[int, bytes], rssi: int = -58):
    device = SimpleNamespace(name=name, address="C0:FF:EE:00:00:01")
    adv = SimpleNamespace(local_name=name, manufacturer_data=manufacturer_data, rssi=rssi)
    return device, adv


class FakeScannerFactory:
    def __init__(self, adverts, first_error: Exception | None = None):
        self.calls = 0
        self.adverts = adverts
        self.first_error = first_error

    def __call__(self, detection_callback=None, scanning_mode="active"):
        self.calls += 1
        if self.calls == 1 and self.first_error is not None:
            raise self.first_error
        return FakeScanner(detection_callback, self.adverts)


class FakeScanner:
    def __init__(self, callback, adverts):
        self._callback = callback
        self._adverts = adverts

    async def start(self) -> None:
        for device, adv in self._adverts:
            self._callback(device, adv)

    async def stop(self) -> None:
        pass


def test_advertisement_payload_decodes_like_raw_scan_record() -> None:
    payload = advertisement_payload(0x004C, apple_manufacturer_data(11, 3, 200))
    assert payload == build_frame(BEACON_UUID, pack_major(11, 3), 200, include_flags=False)
    measurement = extract_measurement(decode_frame(payload))
    assert (measurement.kind_code, measurement.counter, measurement.value) == (11, 3, 200)


def test_scanner_restarts_after_bleak_error(monkeypatch) -> None:
    adverts = [
        make_advertisement("Other", {0x004C: apple_manufacturer_data(11, 1, 1)}),
        make_advertisement("GTI", {0x0059: b"\x01\x02\x03"}),
        make_advertisement("GTI", {0x004C: apple_manufacturer_data(12, 7, -4)}),
    ]
    factory = FakeScannerFactory(adverts, first_error=FakeBleakError("adapter busy"))
    monkeypatch.setattr("biometria.beacon.runner.bleak", FakeBleakModule(factory))

    settings = ScanSettings(device_name="GTI", reconnect_initial_sec=0.01, reconnect_max_sec=0.02)
    events: "queue.Queue" = queue.Queue()
    reader = BeaconScannerThread(settings, events)
    reader.start()
    try:
        event = events.get(timeout=2.0)
        assert event.rssi == -58
        assert event.address == "C0:FF:EE:00:00:01"
        assert extract_measurement(decode_frame(event.payload)).value == -4
        assert factory.calls >= 2
        assert events.empty()
    finally:
        reader.stop()
        reader.join(timeout=2.0)
    assert not reader.is_alive()


def test_missing_adapter_stops_scanner(monkeypatch) -> None:
    factory = FakeScannerFactory([], first_error=FakeNotAvailableError("no adapter"))
    monkeypatch.setattr("biometria.beacon.runner.bleak", FakeBleakModule(factory))
    reader = BeaconScannerThread(ScanSettings(reconnect_initial_sec=0.01), queue.Queue())
    reader.start()
    reader.join(timeout=2.0)
    assert not reader.is_alive()
    assert isinstance(reader.fatal_error, FakeNotAvailableError)


def test_full_queue_drops_events() -> None:
    events: "queue.Queue" = queue.Queue(maxsize=1)
    reader = BeaconScannerThread(ScanSettings(device_name=None), events)
    device, adv = make_advertisement("GTI", {0x004C: apple_manufacturer_data(11, 1, 1)})
    reader._on_detection(device, adv)
    reader._on_detection(device, adv)
    assert events.qsize() == 1
    assert reader.stats()["dropped"] == 1


def test_host_reads_hex_lines_from_stdin(monkeypatch) -> None:
    frames = [
        build_frame(BEACON_UUID, pack_major(11, 3), 200).hex(),
        build_frame(BEACON_UUID, pack_major(11, 3), 200).hex(),
        "# comment",
        "0201",
        build_frame(BEACON_UUID, pack_major(12, 4), 19, include_flags=False).hex(":"),
    ]
    monkeypatch.setattr("sys.stdin", io.StringIO("\n".join(frames) + "\n"))
    host = BeaconHost(GatewayConfig(), source="-")
    received = []
    host.pipeline.register_callback(lambda measurement, event: received.append(measurement))
    host.run()
    assert [(m.kind_code, m.value) for m in received] == [(11, 200), (12, 19)]
    assert host.pipeline.stats() == {"frames": 3, "accepted": 2, "duplicates": 1, "decode_errors": 1}


class RecordingReporter:
    def __init__(self) -> None:
        self.submitted = []
        self.closed = False

    def submit(self, measurement, callback=None):
        self.submitted.append(measurement)

    def close(self) -> None:
        self.closed = True


def test_host_consumes_ble_events_until_scanner_stops(monkeypatch) -> None:
    adverts = [
        make_advertisement("GTI", {0x004C: apple_manufacturer_data(11, 3, 200)}),
        make_advertisement("GTI", {0x004C: apple_manufacturer_data(11, 3, 200)}),
    ]
    monkeypatch.setattr("biometria.beacon.runner.bleak", FakeBleakModule(FakeScannerFactory(adverts)))
    reporter = RecordingReporter()
    host = BeaconHost(GatewayConfig(), source="ble", reporter=reporter)
    seen = []

    def stop_after_first_reading(measurement, event) -> None:
        seen.append(measurement)
        host.reader.stop()

    host.pipeline.register_callback(stop_after_first_reading)
    host.run()
    assert [(m.kind_code, m.counter, m.value) for m in reporter.submitted] == [(11, 3, 200)]
    assert len(seen) == 1
    assert reporter.closed
    assert not host.reader.is_alive()


def test_host_raises_when_adapter_missing(monkeypatch) -> None:
    factory = FakeScannerFactory([], first_error=FakeNotAvailableError("no adapter"))
    monkeypatch.setattr("biometria.beacon.runner.bleak", FakeBleakModule(factory))
    reporter = RecordingReporter()
    host = BeaconHost(GatewayConfig(), source="ble", reporter=reporter)
    with pytest.raises(ScannerUnavailableError, match="no adapter"):
        host.run()
    assert reporter.closed
    assert factory.calls == 1


def test_beacon_run_exits_with_error_when_adapter_missing(monkeypatch) -> None:
    factory = FakeScannerFactory([], first_error=FakeNotAvailableError("no adapter"))
    monkeypatch.setattr("biometria.beacon.runner.bleak", FakeBleakModule(factory))
    result = CliRunner().invoke(app, ["beacon", "run", "--source", "ble", "--dry-run"])
    assert result.exit_code == 1


def test_each_host_run_starts_a_fresh_session(monkeypatch) -> None:
    line = build_frame(BEACON_UUID, pack_major(11, 3), 200).hex() + "\n"
    host = BeaconHost(GatewayConfig(), source="-")
    received = []
    host.pipeline.register_callback(lambda measurement, event: received.append(measurement.counter))

    monkeypatch.setattr("sys.stdin", io.StringIO(line + line))
    host.run()
    assert host.pipeline.stats()["duplicates"] == 1

    monkeypatch.setattr("sys.stdin", io.StringIO(line))
    host.run()
    assert received == [3, 3]
    assert host.pipeline.stats() == {"frames": 1, "accepted": 1, "duplicates": 0, "decode_errors": 0}
