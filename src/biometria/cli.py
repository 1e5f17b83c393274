"""Command line interface for the biometria package."""
from __future__ import annotations

import logging
from pathlib import Path

import typer

from . import __version__
from .beacon.codec import bytes_to_hex, bytes_to_latin1_text
from .beacon.frames import DecodeError, decode_frame, parse_hex_payload
from .beacon.measurement import extract_measurement, measurement_payload
from .beacon.runner import app as beacon_app
from .demo import run_demo
from .pipeline import run_replay
from .reporting import export_replay

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMAT = "[%(asctime)s - %(name)s - %(levelname)s] %(message)s"

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})
app.add_typer(beacon_app, name="beacon")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"biometria {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", "-D", help="One of DEBUG, INFO, WARNING, ERROR."),
    version: bool = typer.Option(
        False, "--version", "-v", callback=_version_callback, is_eager=True, help="Show version and exit."
    ),
) -> None:
    """Decode sensor beacons and forward their readings."""

    level = log_level.upper()
    if level not in LOG_LEVELS:
        raise typer.BadParameter(f"Expected one of {', '.join(LOG_LEVELS)}", param_hint="--log-level")
    logging.basicConfig(level=level, format=LOG_FORMAT)


@app.command()
def decode(
    payload: str = typer.Argument(..., help="Advertisement bytes as hex, separators ':' '-' or spaces allowed."),
) -> None:
    """Decode a single advertisement and print its fields."""

    try:
        frame = decode_frame(parse_hex_payload(payload))
    except DecodeError as exc:
        typer.echo(f"Decode failed: {exc}")
        raise typer.Exit(code=1) from exc

    for name, value in frame.describe().items():
        typer.echo(f"{name:>14}: {value}")
    typer.echo(f"{'uuid (text)':>14}: {bytes_to_latin1_text(frame.uuid)!r}")
    typer.echo(f"{'tx_power':>14}: {frame.tx_power_dbm} dBm")
    measurement = extract_measurement(frame)
    typer.echo(
        f"Measurement: kind={measurement.label()} counter={measurement.counter} value={measurement.value}"
    )
    typer.echo(f"Payload: {measurement_payload(measurement)}  (prefix {bytes_to_hex(frame.prefix)})")


@app.command()
def replay(
    input_path: Path = typer.Option(..., "--in", help="Capture CSV with a hex 'payload' column.", exists=True),
    report_dir: Path = typer.Option(..., "--report", help="Output directory for reports."),
) -> None:
    """Replay a capture through the decoder and duplicate sequencer."""

    try:
        result = run_replay(str(input_path))
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--in") from exc
    export_replay(result, report_dir, input_path=input_path)
    typer.echo(
        f"{result.counts['accepted']} readings accepted, {result.counts['duplicate']} duplicates, "
        f"{result.counts['decode_error']} undecodable; report written to {report_dir}"
    )


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for demo report."),
) -> None:
    """Generate a synthetic capture and report."""

    run_demo(out_dir)
    typer.echo(f"Demo capture and report written to {out_dir}")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
