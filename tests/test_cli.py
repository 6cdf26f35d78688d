from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from fluxsense.cli import app
from fluxsense.flux_csv import FILE_NAME, parse_flux_csv

runner = CliRunner()


def test_demo_then_flux_commands(tmp_path: Path) -> None:
    out_dir = tmp_path / "demo"
    result = runner.invoke(app, ["demo", "--out", str(out_dir), "--samples", "12"])
    assert result.exit_code == 0, result.output
    assert "measurements:" in result.output

    measurement = next(out_dir.glob("*demo-chamber*.csv"))
    result = runner.invoke(app, ["flux", "--in", str(measurement), "--out", str(out_dir), "--precision", "2"])
    assert result.exit_code == 0, result.output
    rows = parse_flux_csv((out_dir / FILE_NAME).read_text(encoding="utf-8"))
    assert len(rows) == 2
    assert rows[1].sensor_name == "Demo Chamber"

    result = runner.invoke(app, ["flux-list", "--folder", str(out_dir)])
    assert result.exit_code == 0, result.output
    assert "Demo Chamber" in result.output


def test_flux_list_on_empty_folder(tmp_path: Path) -> None:
    result = runner.invoke(app, ["flux-list", "--folder", str(tmp_path)])
    assert result.exit_code == 0
    assert "No flux rows stored" in result.output


def test_run_rejects_unknown_transport() -> None:
    result = runner.invoke(app, ["run", "--address", "COM3", "--transport", "usb"])
    assert result.exit_code != 0
