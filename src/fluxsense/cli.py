"""Command line interface for the fluxsense package."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer

from .demo import run_demo
from .errors import InsufficientData, SessionError
from .flux import FluxAnalysisService
from .flux_csv import flux_frame
from .measurement_csv import load_measurements, parse_measurement_csv
from .position import StaticPosition
from .records import CalibrationSettings
from .session.client import SensorClient
from .session.config import ClientConfig, load_config
from .storage import FolderStorage

logger = logging.getLogger(__name__)

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _resolve_config(
    config_path: Optional[Path],
    overrides: Optional[List[str]],
) -> ClientConfig:
    try:
        return load_config(config_path, overrides or None)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


async def _run_session(client: SensorClient, address: str, duration: float) -> None:
    await client.connect(address)
    try:
        await client.start_acquisition()
        logger.info("Acquiring for %.1fs", duration)
        await asyncio.sleep(duration)
        path = await client.stop_acquisition()
        if path:
            typer.echo(f"Measurements written to {path}")
    finally:
        if client.connection.device is not None:
            await client.disconnect()
        for path in await client.acquisition.retry_unsaved():
            typer.echo(f"Recovered unsaved measurements to {path}")


@app.command("run")
def run_command(
    address: str = typer.Option(..., "--address", "-a", help="Serial port, BLE address or mock id."),
    transport: Optional[str] = typer.Option(
        None, "--transport", "-t", help="Transport: serial|ble|mock (overrides config)."
    ),
    duration: float = typer.Option(60.0, "--duration", "-d", help="Acquisition length in seconds."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to client config JSON."),
    out_dir: Optional[Path] = typer.Option(None, "--out", help="Folder for measurement CSV files."),
    override: Optional[List[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set retry.attempts=3 --set serial.baudrate=115200",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol traffic."),
) -> None:
    """Connect, record one acquisition of DURATION seconds and save it."""

    _configure_logging(verbose)
    overrides = list(override or [])
    if transport:
        overrides.append(f"transport={transport}")
    if out_dir is not None:
        overrides.append(f"storage.folder={out_dir}")
    cfg = _resolve_config(config_path, overrides)
    if duration <= 0:
        raise typer.BadParameter("--duration must be positive", param_hint="--duration")

    client = SensorClient.from_config(cfg)
    try:
        asyncio.run(_run_session(client, address, duration))
    except KeyboardInterrupt:
        logger.info("Stopping session (Ctrl+C)")
    except SessionError as exc:
        typer.echo(f"[error] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    for key, value in client.summary().items():
        typer.echo(f"{key}: {value}")


@app.command()
def flux(
    inputs: List[Path] = typer.Option(..., "--in", help="Measurement CSV file(s) to analyse."),
    out_dir: Path = typer.Option(..., "--out", help="Folder holding flux_data.csv."),
    start: Optional[float] = typer.Option(None, "--start", help="Window start (ms epoch). Defaults to first sample."),
    end: Optional[float] = typer.Option(None, "--end", help="Window end (ms epoch). Defaults to last sample."),
    sensor: Optional[str] = typer.Option(None, "--sensor", help="Sensor name. Defaults to the file metadata."),
    multiplier: float = typer.Option(1.0, "--multiplier", help="CO2 multiplier recorded with the row."),
    offset: float = typer.Option(0.0, "--offset", help="CO2 offset recorded with the row."),
    latitude: float = typer.Option(0.0, "--lat", help="Fallback latitude."),
    longitude: float = typer.Option(0.0, "--lon", help="Fallback longitude."),
    precision: int = typer.Option(1, "--precision", help="Decimals kept on the CO2 slope."),
) -> None:
    """Fit a CO2 slope over a time window of saved samples and append it to flux_data.csv."""

    for path in inputs:
        if not path.exists():
            raise typer.BadParameter(f"{path} does not exist", param_hint="--in")
    buffer = load_measurements(str(path) for path in inputs)
    if not buffer:
        raise typer.BadParameter("No samples found in the input files", param_hint="--in")
    if sensor is None:
        metadata, _ = parse_measurement_csv(inputs[0].read_text(encoding="utf-8"))
        sensor = metadata.get("Sensor", "sensor")
    window = (
        buffer[0].timestamp if start is None else start,
        buffer[-1].timestamp if end is None else end,
    )
    service = FluxAnalysisService(
        FolderStorage(),
        out_dir,
        StaticPosition(latitude, longitude),
        precision=precision,
    )
    calibration = CalibrationSettings(co2_multiplier=multiplier, co2_offset=offset)
    try:
        path = asyncio.run(service.save_selection(buffer, window, sensor, calibration))
    except InsufficientData as exc:
        raise typer.BadParameter(str(exc), param_hint="--start/--end") from exc
    except SessionError as exc:
        typer.echo(f"[error] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Flux row appended to {path}")


@app.command("flux-list")
def flux_list(
    folder: Path = typer.Option(..., "--folder", help="Folder holding flux_data.csv."),
) -> None:
    """Print the stored flux rows."""

    service = FluxAnalysisService(FolderStorage(), folder, StaticPosition())
    try:
        rows = asyncio.run(service.load())
    except SessionError as exc:
        typer.echo(f"[error] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if not rows:
        typer.echo("No flux rows stored")
        return
    typer.echo(flux_frame(rows).to_string(index=False))


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for demo files."),
    samples: int = typer.Option(30, "--samples", help="Number of mock samples to record."),
) -> None:
    """Record a session from the mock sensor and derive a flux row."""

    _configure_logging(False)
    paths = run_demo(out_dir, samples=samples)
    for kind, path in paths.items():
        typer.echo(f"{kind}: {path}")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
