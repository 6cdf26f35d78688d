"""Append-only ``flux_data.csv`` holding one summary row per saved selection."""
from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import astuple, dataclass, fields
from typing import List, Optional, Sequence

import pandas as pd

from .errors import PersistenceFailure
from .storage import FolderRef, Storage

logger = logging.getLogger(__name__)

FILE_NAME = "flux_data.csv"

CSV_HEADER = [
    "Timestamp",
    "Date",
    "Sensor",
    "Longitude",
    "Latitude",
    "CO₂ Slope",
    "CO₂ R²",
    "CO₂ Min",
    "CO₂ Max",
    "Temperature Min",
    "Temperature Max",
    "Humidity Min",
    "Humidity Max",
    "CO₂ Multiplier",
    "CO₂ Offset",
]

LEGACY_COLUMNS = 12


@dataclass(frozen=True)
class FluxRow:
    timestamp: int
    date: str
    sensor_name: str
    longitude: float
    latitude: float
    co2_slope: float
    co2_r2: float
    co2_min: float
    co2_max: float
    temp_min: float
    temp_max: float
    hum_min: float
    hum_max: float
    co2_multiplier: float
    co2_offset: float


def _format_cell(value: object) -> str:
    if isinstance(value, float):
        text = repr(value)
        return text[:-2] if text.endswith(".0") else text
    return str(value)


def format_row(row: FluxRow) -> str:
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="").writerow([_format_cell(value) for value in astuple(row)])
    return buffer.getvalue()


def format_header() -> str:
    return ",".join(CSV_HEADER)


def _parse_legacy_row(cols: Sequence[str]) -> FluxRow:
    # Timestamp..Humidity Max without sensor name and calibration columns
    return FluxRow(
        timestamp=int(float(cols[0])),
        date=cols[1],
        sensor_name="",
        longitude=float(cols[2]),
        latitude=float(cols[3]),
        co2_slope=float(cols[4]),
        co2_r2=float(cols[5]),
        co2_min=float(cols[6]),
        co2_max=float(cols[7]),
        temp_min=float(cols[8]),
        temp_max=float(cols[9]),
        hum_min=float(cols[10]),
        hum_max=float(cols[11]),
        co2_multiplier=1.0,
        co2_offset=0.0,
    )


def parse_row(cols: Sequence[str]) -> Optional[FluxRow]:
    """Positional decode of one data row; ``None`` for rows that must be discarded.

    Rows with 12 to 14 columns are read in the older layout that had no
    ``Sensor``, ``CO₂ Multiplier`` or ``CO₂ Offset`` columns.
    """
    if len(cols) < LEGACY_COLUMNS:
        return None
    if len(cols) < len(CSV_HEADER):
        try:
            row = _parse_legacy_row(cols)
        except ValueError:
            return None
        if not math.isfinite(row.latitude) or not math.isfinite(row.longitude):
            return None
        return row
    try:
        row = FluxRow(
            timestamp=int(float(cols[0])),
            date=cols[1],
            sensor_name=cols[2],
            longitude=float(cols[3]),
            latitude=float(cols[4]),
            co2_slope=float(cols[5]),
            co2_r2=float(cols[6]),
            co2_min=float(cols[7]),
            co2_max=float(cols[8]),
            temp_min=float(cols[9]),
            temp_max=float(cols[10]),
            hum_min=float(cols[11]),
            hum_max=float(cols[12]),
            co2_multiplier=float(cols[13]),
            co2_offset=float(cols[14]),
        )
    except ValueError:
        return None
    if not math.isfinite(row.latitude) or not math.isfinite(row.longitude):
        return None
    return row


def parse_flux_csv(text: str) -> List[FluxRow]:
    lines = [line for line in text.split("\n") if line.strip()]
    rows: List[FluxRow] = []
    discarded = 0
    for cols in csv.reader(lines[1:]):
        row = parse_row(cols)
        if row is None:
            discarded += 1
            continue
        rows.append(row)
    if discarded:
        logger.warning("Discarded %d unreadable rows from %s", discarded, FILE_NAME)
    return rows


async def append_flux_row(storage: Storage, folder: FolderRef, row: FluxRow) -> str:
    try:
        existing = await storage.read_text_file(folder, FILE_NAME)
        line = format_row(row)
        if existing is not None and existing.strip():
            content = existing.rstrip() + "\n" + line + "\n"
        else:
            content = format_header() + "\n" + line + "\n"
        path = await storage.write_text_file(folder, FILE_NAME, content)
    except (OSError, ValueError) as exc:
        raise PersistenceFailure(f"Failed to append flux row: {exc}") from exc
    logger.info("Appended flux row (slope=%s R²=%.4f) to %s", row.co2_slope, row.co2_r2, path)
    return path


async def load_flux_rows(storage: Storage, folder: FolderRef) -> List[FluxRow]:
    try:
        raw = await storage.read_text_file(folder, FILE_NAME)
    except (OSError, ValueError) as exc:
        raise PersistenceFailure(f"Failed to read {FILE_NAME}: {exc}") from exc
    if not raw:
        return []
    return parse_flux_csv(raw)


def flux_frame(rows: Sequence[FluxRow]) -> pd.DataFrame:
    columns = [field.name for field in fields(FluxRow)]
    return pd.DataFrame([astuple(row) for row in rows], columns=columns)
