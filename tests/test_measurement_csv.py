from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, Optional, Tuple

import pytest

from fluxsense.errors import PersistenceFailure
from fluxsense.measurement_csv import (
    HEADER,
    MeasurementCsvWriter,
    build_measurement_csv,
    date_part,
    iso_utc,
    load_measurements,
    measurement_filename,
    parse_measurement_csv,
    sanitize_file_part,
)
from fluxsense.records import Measurement
from fluxsense.storage import FolderStorage

T0 = 1_700_000_000_000


class MemoryStorage:
    def __init__(self) -> None:
        self.files: Dict[Tuple[str, str], str] = {}
        self.fail_writes = False

    async def read_text_file(self, folder, name: str) -> Optional[str]:
        return self.files.get((str(folder), name))

    async def write_text_file(self, folder, name: str, text: str) -> str:
        if self.fail_writes:
            raise OSError("disk full")
        self.files[(str(folder), name)] = text
        return f"{folder}/{name}"


def _rows() -> list[Measurement]:
    return [
        Measurement(timestamp=T0, co2=410.0, temperature=21.5, humidity=40.0),
        Measurement(timestamp=T0 + 1000, co2=412.5, temperature=None, humidity=41.0),
        Measurement(timestamp=T0 + 2000, co2=415.0, temperature=22.5, humidity=None),
    ]


def test_iso_utc_milliseconds() -> None:
    assert iso_utc(0) == "1970-01-01T00:00:00.000Z"
    assert iso_utc(1_500) == "1970-01-01T00:00:01.500Z"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Chamber A", "chamber-a"),
        ("  Soil  Probe #2 ", "soil-probe-2"),
        ("--x__", "x"),
        ("a - - b", "a-b"),
        ("***", "sensor"),
        ("", "sensor"),
    ],
)
def test_sanitize_file_part(raw: str, expected: str) -> None:
    assert sanitize_file_part(raw) == expected


def test_measurement_filename() -> None:
    assert measurement_filename(T0, "Chamber A", 3) == f"{date_part(T0)}-chamber-a-3.csv"


def test_build_measurement_csv_layout() -> None:
    text = build_measurement_csv(_rows(), "Chamber A")
    lines = text.split("\n")
    assert lines[0] == "Metadata,Value"
    assert lines[1] == "Sensor,Chamber A"
    assert lines[2] == f"Session Start,{iso_utc(T0)}"
    assert lines[3] == f"Session End,{iso_utc(T0 + 2000)}"
    assert lines[4] == "Samples,3"
    assert "Avg CO2 (ppm),412.5" in lines
    assert "Min CO2 (ppm),410" in lines
    assert "Max Humidity (%),41" in lines
    assert "Avg Temperature (C),22" in lines
    header_index = lines.index(",".join(HEADER))
    assert lines[header_index - 1] == ""
    body = [line for line in lines[header_index + 1 :] if line]
    assert len(body) == 3
    assert body[1] == f"{T0 + 1000},{iso_utc(T0 + 1000)},412.5,,41"


def test_blank_stats_when_channel_missing() -> None:
    rows = [Measurement(timestamp=T0, co2=400.0)]
    text = build_measurement_csv(rows, "s")
    assert "Avg Temperature (C)," in text.split("\n")


def test_parse_round_trip_skips_malformed_rows() -> None:
    text = build_measurement_csv(_rows(), "Chamber A")
    text += "oops,row\nnot-a-number,x,1,2,3\n"
    metadata, rows = parse_measurement_csv(text)
    assert metadata["Sensor"] == "Chamber A"
    assert metadata["Samples"] == "3"
    assert [row.timestamp for row in rows] == [T0, T0 + 1000, T0 + 2000]
    assert rows[1].temperature is None
    assert rows[2].humidity is None
    assert rows[0].co2 == 410.0


def test_writer_increments_index_past_existing_files() -> None:
    storage = MemoryStorage()
    writer = MeasurementCsvWriter(storage, "/data")

    first = asyncio.run(writer.save(_rows(), "Chamber A"))
    second = asyncio.run(writer.save(_rows(), "Chamber A"))

    prefix = f"/data/{date_part(T0)}-chamber-a-"
    assert first == prefix + "1.csv"
    assert second == prefix + "2.csv"
    assert len(storage.files) == 2


def test_writer_empty_rows_write_nothing() -> None:
    storage = MemoryStorage()
    writer = MeasurementCsvWriter(storage, "/data")
    assert asyncio.run(writer.save([], "x")) is None
    assert storage.files == {}


def test_writer_failures_become_persistence_failure() -> None:
    storage = MemoryStorage()
    storage.fail_writes = True
    with pytest.raises(PersistenceFailure):
        asyncio.run(MeasurementCsvWriter(storage, "/data").save(_rows(), "x"))
    with pytest.raises(PersistenceFailure):
        asyncio.run(MeasurementCsvWriter(MemoryStorage(), None).save(_rows(), "x"))


def test_folder_storage_and_load_measurements(tmp_path: Path) -> None:
    writer = MeasurementCsvWriter(FolderStorage(), tmp_path / "out")
    rows = _rows()
    late = asyncio.run(writer.save(rows[1:], "probe"))
    early = asyncio.run(writer.save(rows[:1], "probe"))
    assert late is not None and early is not None
    merged = load_measurements([late, early])
    assert [row.timestamp for row in merged] == [T0, T0 + 1000, T0 + 2000]
