"""
Session export to CSV and JSON.

Both formats carry the same per-sample rows.  The JSON document wraps them
with session and metadata blocks, including a disclaimer that the data is
for reference only.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Tuple

from .session import Session, now_ms

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"
EXPORT_FORMAT = "PPG Vital Signs Data"
DISCLAIMER = (
    "This data is for reference only and should not be used for medical diagnosis."
)
CSV_COLUMNS = (
    "timestamp",
    "datetime",
    "raw_value",
    "filtered_value",
    "peak_flag",
    "bpm_instant",
    "spo2_estimate",
    "signal_quality",
)


class ExportError(Exception):
    """Raised when a session cannot be exported; the session itself is untouched."""


def iso_datetime(timestamp_ms: float) -> str:
    """``1700000000123`` -> ``'2023-11-14T22:13:20.123Z'``"""
    dt = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _timestamp_field(timestamp_ms: float):
    return int(timestamp_ms) if float(timestamp_ms).is_integer() else timestamp_ms


def session_to_csv(session: Session) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for row in session.rows:
        writer.writerow([
            _timestamp_field(row.timestamp),
            iso_datetime(row.timestamp),
            f"{row.raw_value:.6f}",
            f"{row.filtered_value:.6f}",
            "1" if row.peak_flag else "0",
            row.bpm_instant,
            row.spo2_estimate,
            row.signal_quality,
        ])
    return buf.getvalue()


def session_to_json(session: Session, export_time: datetime | None = None) -> str:
    end_time = session.end_time if session.end_time is not None else now_ms()
    export_time = export_time or datetime.now(timezone.utc)
    document = {
        "session": {
            "id": session.id,
            "startTime": _timestamp_field(session.start_time),
            "endTime": _timestamp_field(end_time),
            "duration": end_time - session.start_time,
            "dataPoints": len(session.rows),
        },
        "metadata": {
            "exportTime": export_time.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "version": EXPORT_VERSION,
            "format": EXPORT_FORMAT,
            "disclaimer": DISCLAIMER,
        },
        "data": [
            {
                "timestamp": _timestamp_field(row.timestamp),
                "datetime": iso_datetime(row.timestamp),
                "measurements": {
                    "rawPPG": row.raw_value,
                    "filteredPPG": row.filtered_value,
                    "isPeak": row.peak_flag,
                    "heartRate": row.bpm_instant,
                    "spo2": row.spo2_estimate,
                    "signalQuality": row.signal_quality,
                },
            }
            for row in session.rows
        ],
    }
    return json.dumps(document, indent=2)


def export_session(session: Session | None, out_dir: Path | str) -> Tuple[Path, Path]:
    """
    Write ``vital_signs_session_<time>.csv`` and ``.json`` into *out_dir*.

    Returns the ``(csv_path, json_path)`` pair.  Raises :class:`ExportError`
    for an empty session or any I/O failure; the session can be exported
    again once the cause is fixed.
    """
    if session is None or not session.rows:
        raise ExportError("No data to export")

    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    base = f"vital_signs_session_{stamp}"
    out_dir = Path(out_dir)
    csv_path = out_dir / f"{base}.csv"
    json_path = out_dir / f"{base}.json"

    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        csv_path.write_text(session_to_csv(session), encoding="utf-8")
        try:
            json_path.write_text(session_to_json(session), encoding="utf-8")
        except OSError:
            # Never leave a CSV without its JSON twin
            csv_path.unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise ExportError(f"Failed to export {session.id} to {out_dir}: {exc}") from exc

    logger.info("Files saved to: %s, %s", csv_path, json_path)
    return csv_path, json_path
