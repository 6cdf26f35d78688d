"""CO2 flux estimation over a user-selected time window of buffered samples."""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, fields
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import InsufficientData, PersistenceFailure
from .flux_csv import FluxRow, append_flux_row, load_flux_rows
from .measurement_csv import iso_utc
from .position import PositionProvider
from .records import CalibrationSettings, Measurement, Position
from .regression import linear_regression
from .storage import FolderRef, Storage

logger = logging.getLogger(__name__)

NUMERIC_COLUMNS = [f.name for f in fields(Measurement) if f.name != "timestamp"]


def measurements_frame(buffer: Sequence[Measurement]) -> pd.DataFrame:
    """Tabular view of the buffer; absent channels become NaN."""
    df = pd.DataFrame([asdict(row) for row in buffer], columns=["timestamp", *NUMERIC_COLUMNS])
    df["timestamp"] = df["timestamp"].astype("int64")
    df[NUMERIC_COLUMNS] = df[NUMERIC_COLUMNS].astype(float)
    return df


def _min_max(series: pd.Series) -> Tuple[float, float]:
    values = series.to_numpy(dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return 0.0, 0.0
    return float(values.min()), float(values.max())


def select_window(buffer: Sequence[Measurement], window: Tuple[float, float]) -> pd.DataFrame:
    lo, hi = min(window), max(window)
    df = measurements_frame(buffer)
    return df[(df["timestamp"] >= lo) & (df["timestamp"] <= hi)]


def compute_flux(
    buffer: Sequence[Measurement],
    window: Tuple[float, float],
    position: Position,
    sensor_name: str,
    calibration: CalibrationSettings,
    *,
    precision: int = 1,
    now_ms: Optional[int] = None,
) -> FluxRow:
    """Fit CO2 against time inside *window* (inclusive) and summarise it.

    The slope is reported per 1000 time units (ppm/s for millisecond
    timestamps) and rounded to *precision* decimals.
    """

    selected = select_window(buffer, window)
    co2_points = selected[np.isfinite(selected["co2"].to_numpy(dtype=float))]
    if len(co2_points) < 2:
        raise InsufficientData(
            f"Need at least 2 CO2 samples in the selection, found {len(co2_points)}"
        )
    regression = linear_regression(
        co2_points["timestamp"].to_numpy(dtype=float),
        co2_points["co2"].to_numpy(dtype=float),
    )
    if regression is None:
        raise InsufficientData("CO2 samples in the selection could not be fitted")
    logger.debug(
        "Flux fit over %d points: slope=%.6g r2=%.4f", regression.n, regression.slope, regression.r_squared
    )

    data_latitude = float(selected["latitude"].fillna(0.0).mean())
    data_longitude = float(selected["longitude"].fillna(0.0).mean())
    # 0,0 means no GPS fix while recording
    if data_latitude != 0 or data_longitude != 0:
        latitude, longitude = data_latitude, data_longitude
    else:
        latitude, longitude = position.latitude, position.longitude

    co2_min, co2_max = _min_max(selected["co2"])
    temp_min, temp_max = _min_max(selected["temperature"])
    hum_min, hum_max = _min_max(selected["humidity"])
    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)

    return FluxRow(
        timestamp=stamp,
        date=iso_utc(stamp),
        sensor_name=sensor_name,
        longitude=float(longitude),
        latitude=float(latitude),
        co2_slope=round(regression.slope * 1000.0, precision),
        co2_r2=regression.r_squared,
        co2_min=co2_min,
        co2_max=co2_max,
        temp_min=temp_min,
        temp_max=temp_max,
        hum_min=hum_min,
        hum_max=hum_max,
        co2_multiplier=float(calibration.co2_multiplier),
        co2_offset=float(calibration.co2_offset),
    )


class FluxAnalysisService:
    def __init__(
        self,
        storage: Storage,
        folder: Optional[FolderRef],
        position_provider: PositionProvider,
        precision: int = 1,
    ) -> None:
        self.storage = storage
        self.folder = folder
        self.position_provider = position_provider
        self.precision = precision

    async def save_selection(
        self,
        buffer: Sequence[Measurement],
        window: Tuple[float, float],
        sensor_name: str,
        calibration: CalibrationSettings,
    ) -> str:
        if not self.folder:
            raise PersistenceFailure("Save folder is not configured")
        row = compute_flux(
            list(buffer),
            window,
            self.position_provider.get_location(),
            sensor_name,
            calibration,
            precision=self.precision,
        )
        return await append_flux_row(self.storage, self.folder, row)

    async def load(self) -> List[FluxRow]:
        if not self.folder:
            return []
        return await load_flux_rows(self.storage, self.folder)
