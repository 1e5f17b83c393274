"""Report writers for capture replays."""
from __future__ import annotations

from pathlib import Path

from .pipeline import ReplayResult


def export_replay(
    result: ReplayResult,
    output_dir: Path,
    *,
    input_path: Path | None = None,
) -> None:
    """Persist classified advertisements, per-kind summary and markdown report to *output_dir*."""

    output_dir.mkdir(parents=True, exist_ok=True)
    result.measurements.to_csv(output_dir / "measurements.csv", index=False)
    result.summary.to_csv(output_dir / "summary.csv", index=False)
    _write_report_md(result, output_dir, input_path=input_path)


def _write_report_md(
    result: ReplayResult,
    output_dir: Path,
    *,
    input_path: Path | None,
) -> None:
    counts = result.counts
    total = len(result.measurements)
    lines: list[str] = []
    lines.append("# Beacon Capture Report")
    if input_path is not None:
        lines.append(f"*Input file:* `{input_path}`  ")
    lines.append(f"*Advertisements:* {total}  ")
    lines.append(f"*Accepted readings:* {counts.get('accepted', 0)}  ")
    lines.append(f"*Suppressed duplicates:* {counts.get('duplicate', 0)}  ")
    lines.append(f"*Undecodable frames:* {counts.get('decode_error', 0)}  ")
    lines.append("")

    lines.append("## Readings by kind")
    lines.append("| Kind | Readings | Min | Max | Mean | Last |")
    lines.append("| --- | ---: | ---: | ---: | ---: | ---: |")
    for row in result.summary.itertuples(index=False):
        lines.append(
            f"| {row.kind} | {row.readings} | {row.min} | {row.max} | {row.mean:.2f} | {row.last} |"
        )
    lines.append("")

    lines.append("### Notes")
    lines.append(
        "- A reading is accepted when its rolling counter differs from the previous accepted one."
    )
    lines.append("- Frames shorter than 30 bytes (after adding the flags preamble) are dropped.")

    (output_dir / "report.md").write_text("\n".join(lines), encoding="utf-8")
