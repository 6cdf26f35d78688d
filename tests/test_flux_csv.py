from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path

from fluxsense.flux_csv import (
    CSV_HEADER,
    FILE_NAME,
    FluxRow,
    append_flux_row,
    flux_frame,
    format_header,
    format_row,
    load_flux_rows,
    parse_flux_csv,
)
from fluxsense.storage import FolderStorage


def _row(index: int) -> FluxRow:
    return FluxRow(
        timestamp=1_700_000_000_000 + index,
        date="2023-11-14T22:13:20.000Z",
        sensor_name=f"Chamber {index}",
        longitude=14.5 + index / 10,
        latitude=46.05,
        co2_slope=0.8 + index,
        co2_r2=0.987654321,
        co2_min=410.0,
        co2_max=455.25,
        temp_min=21.0,
        temp_max=23.5,
        hum_min=40.0,
        hum_max=48.0,
        co2_multiplier=1.02,
        co2_offset=-3.0,
    )


def test_header_has_fixed_columns() -> None:
    assert len(CSV_HEADER) == 15
    assert format_header().startswith("Timestamp,Date,Sensor,Longitude,Latitude,CO₂ Slope,CO₂ R²")


def test_format_row_quotes_names_with_commas() -> None:
    line = format_row(replace(_row(1), sensor_name="Plot 3, north"))
    assert '"Plot 3, north"' in line
    assert parse_flux_csv(format_header() + "\n" + line + "\n")[0].sensor_name == "Plot 3, north"


def test_append_and_load_preserves_order(tmp_path: Path) -> None:
    storage = FolderStorage()
    rows = [_row(i) for i in range(5)]

    async def scenario():
        for row in rows:
            await append_flux_row(storage, tmp_path, row)
        return await load_flux_rows(storage, tmp_path)

    loaded = asyncio.run(scenario())
    assert loaded == rows
    text = (tmp_path / FILE_NAME).read_text(encoding="utf-8")
    assert text.count("Timestamp,Date") == 1
    assert text.endswith("\n")
    assert not text.endswith("\n\n")


def test_header_rewritten_when_file_is_blank(tmp_path: Path) -> None:
    (tmp_path / FILE_NAME).write_text("\n\n", encoding="utf-8")
    asyncio.run(append_flux_row(FolderStorage(), tmp_path, _row(0)))
    lines = (tmp_path / FILE_NAME).read_text(encoding="utf-8").splitlines()
    assert lines[0] == format_header()
    assert len(lines) == 2


def test_corrupt_rows_are_discarded() -> None:
    good = [format_row(_row(i)) for i in range(3)]
    bad_lat = format_row(replace(_row(9), latitude=float("nan")))
    text = "\n".join(
        [
            format_header(),
            good[0],
            "1,2,3",
            bad_lat,
            good[1],
            "abc,2023,x,not-a-number,1,1,1,1,1,1,1,1,1,1,1",
            good[2],
        ]
    )
    loaded = parse_flux_csv(text)
    assert [row.timestamp for row in loaded] == [_row(i).timestamp for i in range(3)]


def test_rows_without_sensor_and_calibration_columns() -> None:
    text = "\n".join(
        [
            "Timestamp,Date,Longitude,Latitude,CO₂ Slope,CO₂ R²,CO₂ Min,CO₂ Max,"
            "Temperature Min,Temperature Max,Humidity Min,Humidity Max",
            "1700000000000,2023-11-14T22:13:20.000Z,14.51,46.05,0.8,0.97,410,455,21,23.5,40,48",
            "1700000000001,2023-11-14T22:13:20.001Z,x,46.05,0.8,0.97,410,455,21,23.5,40,48",
        ]
    )
    rows = parse_flux_csv(text)
    assert len(rows) == 1
    row = rows[0]
    assert row.sensor_name == ""
    assert (row.longitude, row.latitude) == (14.51, 46.05)
    assert row.co2_slope == 0.8
    assert row.hum_max == 48.0
    assert (row.co2_multiplier, row.co2_offset) == (1.0, 0.0)


def test_missing_file_loads_empty(tmp_path: Path) -> None:
    assert asyncio.run(load_flux_rows(FolderStorage(), tmp_path)) == []


def test_flux_frame_columns() -> None:
    rows = [_row(0), _row(1)]
    frame = flux_frame(rows)
    assert list(frame.columns)[:3] == ["timestamp", "date", "sensor_name"]
    assert frame["co2_slope"].tolist() == [row.co2_slope for row in rows]
