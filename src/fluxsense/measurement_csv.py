"""Measurement session CSV files: metadata block, blank line, sample table."""
from __future__ import annotations

import csv
import io
import logging
import math
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import PersistenceFailure
from .records import Measurement
from .storage import FolderRef, Storage

logger = logging.getLogger(__name__)

HEADER = ["Timestamp", "Date", "CO2 (ppm)", "Temperature (C)", "Humidity (%)"]
CHANNELS = [
    ("CO2 (ppm)", "co2"),
    ("Temperature (C)", "temperature"),
    ("Humidity (%)", "humidity"),
]


def iso_utc(timestamp_ms: float) -> str:
    """Millisecond epoch as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_number(value: float) -> str:
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def date_part(timestamp_ms: float) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000.0).strftime("%Y-%m-%d")


def sanitize_file_part(value: str) -> str:
    text = re.sub(r"\s+", "-", value.lower().strip())
    text = re.sub(r"[^a-z0-9\-_]", "", text)
    text = re.sub(r"-+", "-", text)
    text = re.sub(r"^[-_]+|[-_]+$", "", text)
    return text or "sensor"


def measurement_filename(timestamp_ms: float, sensor_name: str, index: int) -> str:
    return f"{date_part(timestamp_ms)}-{sanitize_file_part(sensor_name)}-{index}.csv"


def _channel_stats(
    rows: Sequence[Measurement], attr: str
) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    values = [v for v in (getattr(row, attr) for row in rows) if v is not None and math.isfinite(v)]
    if not values:
        return None, None, None
    return sum(values) / len(values), min(values), max(values)


def _format_stat(value: Optional[float]) -> str:
    if value is None:
        return ""
    return format_number(round(value, 2))


def _format_optional(value: Optional[float]) -> str:
    return "" if value is None else format_number(value)


def build_measurement_csv(rows: Sequence[Measurement], sensor_name: str) -> str:
    if not rows:
        raise ValueError("Cannot build a measurement CSV without rows")
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["Metadata", "Value"])
    writer.writerow(["Sensor", sensor_name])
    writer.writerow(["Session Start", iso_utc(rows[0].timestamp)])
    writer.writerow(["Session End", iso_utc(rows[-1].timestamp)])
    writer.writerow(["Samples", len(rows)])
    for label, attr in CHANNELS:
        avg, low, high = _channel_stats(rows, attr)
        writer.writerow([f"Avg {label}", _format_stat(avg)])
        writer.writerow([f"Min {label}", _format_stat(low)])
        writer.writerow([f"Max {label}", _format_stat(high)])
    buffer.write("\n")
    writer.writerow(HEADER)
    for row in rows:
        writer.writerow(
            [
                row.timestamp,
                iso_utc(row.timestamp),
                _format_optional(row.co2),
                _format_optional(row.temperature),
                _format_optional(row.humidity),
            ]
        )
    return buffer.getvalue()


def _optional_float(raw: str) -> Optional[float]:
    raw = raw.strip()
    if not raw:
        return None
    value = float(raw)
    return value if math.isfinite(value) else None


def parse_measurement_csv(text: str) -> Tuple[Dict[str, str], List[Measurement]]:
    """
    Read back a file produced by :func:`build_measurement_csv`.
    Malformed sample rows are skipped.
    """
    metadata: Dict[str, str] = {}
    measurements: List[Measurement] = []
    in_table = False
    skipped = 0
    for row in csv.reader(io.StringIO(text)):
        if not row or not any(cell.strip() for cell in row):
            continue
        if not in_table:
            if row[0] == HEADER[0]:
                in_table = True
            elif row[0] != "Metadata" and len(row) >= 2:
                metadata[row[0]] = row[1]
            continue
        if len(row) < len(HEADER):
            skipped += 1
            continue
        try:
            measurements.append(
                Measurement(
                    timestamp=int(float(row[0])),
                    co2=_optional_float(row[2]),
                    temperature=_optional_float(row[3]),
                    humidity=_optional_float(row[4]),
                )
            )
        except ValueError:
            skipped += 1
    if skipped:
        logger.debug("Skipped %d malformed measurement rows", skipped)
    return metadata, measurements


class MeasurementCsvWriter:
    """Writes one CSV per acquisition session, never overwriting an existing file."""

    def __init__(self, storage: Storage, folder: Optional[FolderRef]) -> None:
        self.storage = storage
        self.folder = folder

    async def save(self, rows: Sequence[Measurement], sensor_name: str) -> Optional[str]:
        if not rows:
            return None
        if not self.folder:
            raise PersistenceFailure("Save folder is not configured")
        content = build_measurement_csv(rows, sensor_name)
        try:
            name = await self._next_available_name(rows[0].timestamp, sensor_name)
            path = await self.storage.write_text_file(self.folder, name, content)
        except (OSError, ValueError) as exc:
            # ValueError covers undecodable existing files (UnicodeDecodeError)
            raise PersistenceFailure(f"Failed to write measurements: {exc}") from exc
        logger.info("Saved %d measurements to %s", len(rows), path)
        return path

    async def _next_available_name(self, timestamp_ms: float, sensor_name: str) -> str:
        index = 1
        while True:
            name = measurement_filename(timestamp_ms, sensor_name, index)
            if await self.storage.read_text_file(self.folder, name) is None:
                return name
            index += 1


def load_measurements(paths: Iterable[str]) -> List[Measurement]:
    merged: List[Measurement] = []
    for path in paths:
        with open(path, "r", encoding="utf-8") as fh:
            _, rows = parse_measurement_csv(fh.read())
        merged.extend(rows)
    merged.sort(key=lambda row: row.timestamp)
    return merged
