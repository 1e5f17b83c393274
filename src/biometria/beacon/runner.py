from __future__ import annotations

import asyncio
import logging
import queue
import sys
import threading
import time
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional

import typer

try:
    import bleak  # type: ignore[import]
except ImportError:  # pragma: no cover - handled in CLI validation
    bleak = None  # type: ignore[assignment]

from .config import GatewayConfig, ScanSettings, load_config
from .frames import HexPayloadError, iterate_text_stream, parse_hex_payload
from .processing import MeasurementPipeline, ScanEvent
from .reporter import MeasurementReporter

logger = logging.getLogger(__name__)

MANUFACTURER_AD_TYPE = 0xFF


class ScannerUnavailableError(RuntimeError):
    """The scanner stopped for good (no adapter or no BLE backend)."""


def advertisement_payload(company_id: int, data: bytes) -> bytes:
    """
    Rebuild the manufacturer-specific AD structure from bleak's parsed view.

    bleak hands out manufacturer data keyed by company id with the id already
    stripped, so the length/type header and the little-endian id are put back.
    The flags structure is left out; the frame decoder adds it.
    """
    body = company_id.to_bytes(2, "little") + bytes(data)
    return bytes([len(body) + 1, MANUFACTURER_AD_TYPE]) + body


class BeaconScannerThread(threading.Thread):
    """
    Runs a bleak scanner on its own event loop and pushes every matching
    advertisement into *event_queue*. Scanner failures restart the scan with
    exponential backoff; a missing adapter ends the thread.
    """

    def __init__(self, settings: ScanSettings, event_queue: "queue.Queue[ScanEvent]") -> None:
        super().__init__(daemon=True, name="beacon-scanner")
        self.settings = settings
        self.queue = event_queue
        self._stop_event = threading.Event()
        self._dropped = 0
        self._restarts = 0
        self._started_once = False
        self.last_exception: Optional[Exception] = None
        self.fatal_error: Optional[Exception] = None
        self._log = logging.getLogger(__name__)

    def run(self) -> None:
        if bleak is None:
            self.fatal_error = ImportError("bleak is required for BLE scanning. Install extra 'ble'.")
            self._log.error("%s", self.fatal_error)
            return
        initial_delay = max(self.settings.reconnect_initial_sec, 0.01)
        max_delay = max(self.settings.reconnect_max_sec, initial_delay)
        backoff = initial_delay
        while not self._stop_event.is_set():
            try:
                asyncio.run(self._scan_session())
                backoff = initial_delay
            except bleak.exc.BleakBluetoothNotAvailableError as exc:
                self.fatal_error = exc
                self._log.error("Bluetooth not available: %s", exc)
                break
            except bleak.exc.BleakError as exc:
                self.last_exception = exc
                self._log.warning("Scanner error: %s", exc)
            except Exception as exc:  # pragma: no cover - defensive
                self.last_exception = exc
                self._log.exception("Unexpected error in scanner thread")
            if self._stop_event.is_set():
                break
            wait_time = min(backoff, max_delay)
            self._log.info("Restarting scan in %.1fs", wait_time)
            self._stop_event.wait(wait_time)
            backoff = min(backoff * 2, max_delay)

    async def _scan_session(self) -> None:
        scanner = bleak.BleakScanner(
            detection_callback=self._on_detection,
            scanning_mode=self.settings.scanning_mode,
        )
        await scanner.start()
        if self._started_once:
            self._restarts += 1
            self._log.info("Scan restarted")
        else:
            self._log.info("Scanning (mode=%s, device=%s)", self.settings.scanning_mode, self.settings.device_name or "*")
            self._started_once = True
        self.last_exception = None
        try:
            while not self._stop_event.is_set():
                await asyncio.sleep(0.1)
        finally:
            await scanner.stop()

    def _on_detection(self, device: Any, advertisement_data: Any) -> None:
        name = device.name or advertisement_data.local_name
        if self.settings.device_name and name != self.settings.device_name:
            return
        for company_id, data in advertisement_data.manufacturer_data.items():
            if self.settings.company_id is not None and company_id != self.settings.company_id:
                self._log.debug("Ignoring manufacturer 0x%04x from %s", company_id, device.address)
                continue
            self._emit(
                ScanEvent(
                    payload=advertisement_payload(company_id, data),
                    address=device.address,
                    rssi=advertisement_data.rssi,
                )
            )

    def _emit(self, event: ScanEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except queue.Full:
            self._dropped += 1
            self._log.warning("Event queue full (%d), dropping advertisement", self.queue.qsize())

    def stop(self) -> None:
        self._stop_event.set()

    def stats(self) -> dict[str, int]:
        return {"dropped": self._dropped, "restarts": self._restarts}


def iterate_hex_events(lines: Iterable[str]) -> Iterator[ScanEvent]:
    """Turn hex capture lines (one advertisement per line) into scan events."""
    for line in iterate_text_stream(lines):
        try:
            payload = parse_hex_payload(line)
        except HexPayloadError as exc:
            logger.warning("Skipping line: %s", exc)
            continue
        yield ScanEvent(payload=payload, address="stdin")


class BeaconHost:
    """Scan session orchestrator: scanner thread -> pipeline -> reporter."""

    def __init__(
        self,
        config: GatewayConfig,
        source: str = "ble",
        reporter: Optional[MeasurementReporter] = None,
    ):
        self.config = config
        self.source = source
        self.pipeline = MeasurementPipeline(config)
        self.reporter = reporter
        if self.reporter is not None:
            self.pipeline.register_callback(self._report)
        self.reader: Optional[BeaconScannerThread] = None

    def run(self) -> None:
        # a stale counter from an earlier session must not hide the first reading
        self.pipeline.reset()
        if self.source == "-":
            self._run_from_stream()
            return

        event_queue: "queue.Queue[ScanEvent]" = queue.Queue(maxsize=self.config.host.queue_maxsize)
        reader = BeaconScannerThread(self.config.scan, event_queue)
        self.reader = reader
        reader.start()
        processed = 0
        interval_sec = max(float(self.config.host.stats_log_interval), 5.0)
        next_log = time.monotonic() + interval_sec

        def emit_stats(prefix: str) -> None:
            stats = {**self.pipeline.stats(), **reader.stats()}
            logger.info(
                "%sprocessed=%d accepted=%d duplicates=%d decode_errors=%d dropped=%d restarts=%d",
                prefix,
                processed,
                stats["accepted"],
                stats["duplicates"],
                stats["decode_errors"],
                stats["dropped"],
                stats["restarts"],
            )

        try:
            while True:
                try:
                    event = event_queue.get(timeout=1.0)
                except queue.Empty:
                    if not reader.is_alive():
                        if reader.fatal_error is not None:
                            raise ScannerUnavailableError(str(reader.fatal_error)) from reader.fatal_error
                        break
                    if time.monotonic() >= next_log:
                        emit_stats("")
                        next_log = time.monotonic() + interval_sec
                    continue
                self.pipeline.process_event(event)
                processed += 1
                if time.monotonic() >= next_log:
                    emit_stats("")
                    next_log = time.monotonic() + interval_sec
        except KeyboardInterrupt:
            logger.info("Stopping gateway (Ctrl+C)")
        finally:
            reader.stop()
            reader.join(timeout=5)
            emit_stats("Final stats: ")
            self._close()

    def _run_from_stream(self) -> None:
        try:
            outcomes = self.pipeline.process(iterate_hex_events(sys.stdin))
            stats = self.pipeline.stats()
            logger.info(
                "Processed %d advertisements from stdin (accepted=%d duplicates=%d decode_errors=%d)",
                len(outcomes),
                stats["accepted"],
                stats["duplicates"],
                stats["decode_errors"],
            )
        finally:
            self._close()

    def _report(self, measurement, event: ScanEvent) -> None:
        assert self.reporter is not None
        self.reporter.submit(
            measurement,
            callback=lambda status, body: logger.debug("Response %d from endpoint: %s", status, body),
        )

    def _close(self) -> None:
        self.pipeline.close()
        if self.reporter is not None:
            self.reporter.close()


app = typer.Typer(add_completion=False, help="BLE beacon gateway.")


@app.command()
def run(
    source: str = typer.Option("ble", "--source", "-s", help="Advertisement source: 'ble' or '-' for hex lines on stdin."),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to gateway config JSON (defaults when omitted)."
    ),
    override: Optional[List[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set scan.device_name=GTI --set reporter.timeout_sec=2",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Decode and deduplicate but do not POST."),
):
    """Scan for beacons, deduplicate readings and forward them to the endpoint."""

    if source not in {"ble", "-"}:
        raise typer.BadParameter("--source must be 'ble' or '-'", param_hint="--source")
    try:
        cfg = load_config(config_path, override or None)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Invalid configuration: {exc}") from exc
    if source == "ble" and bleak is None:
        raise typer.BadParameter("bleak is required for BLE scanning (pip install .[ble])", param_hint="--source")
    reporter = None
    if cfg.reporter.enabled and not dry_run:
        reporter = MeasurementReporter(cfg.reporter)
    else:
        logger.info("Reporting disabled; measurements are only logged")
    host = BeaconHost(cfg, source=source, reporter=reporter)
    try:
        host.run()
    except ScannerUnavailableError as exc:
        logger.error("Scanner unavailable (%s). Exiting", exc)
        raise typer.Exit(code=1) from exc
