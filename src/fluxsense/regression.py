"""Least-squares line fitting for CO2 time series."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class RegressionResult:
    """Summary of a straight-line fit ``y = slope * x + intercept``."""

    slope: float
    intercept: float
    r_squared: float
    mean_x: float
    mean_y: float
    min_x: float
    max_x: float
    n: int


def linear_regression(
    x: Sequence[float] | np.ndarray,
    y: Sequence[float] | np.ndarray,
) -> Optional[RegressionResult]:
    """Centered ordinary least squares fit.

    Parameters
    ----------
    x, y:
        Paired samples. ``x`` is typically a millisecond epoch timestamp, so
        both series are centered on their means before accumulating the
        cross products.

    Returns
    -------
    RegressionResult or None
        ``None`` when fewer than two points are supplied.
    """

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    if xs.ndim != 1 or ys.ndim != 1:
        raise ValueError("x and y must be 1-D arrays")
    if xs.size != ys.size:
        raise ValueError(f"x and y differ in length ({xs.size} != {ys.size})")
    if xs.size < 2:
        return None

    mean_x = float(xs.mean())
    mean_y = float(ys.mean())
    dx = xs - mean_x
    dy = ys - mean_y
    ss_xx = float(np.sum(dx * dx))
    ss_xy = float(np.sum(dx * dy))

    slope = ss_xy / ss_xx if ss_xx != 0 else 0.0
    intercept = mean_y - slope * mean_x

    y_hat = slope * dx + mean_y
    ss_tot = float(np.sum(dy * dy))
    ss_res = float(np.sum((ys - y_hat) ** 2))
    if ss_tot == 0:
        raw_r_squared = 1.0 if ss_res == 0 else 0.0
    else:
        raw_r_squared = 1.0 - ss_res / ss_tot
    r_squared = float(np.clip(raw_r_squared, 0.0, 1.0))

    return RegressionResult(
        slope=slope,
        intercept=intercept,
        r_squared=r_squared,
        mean_x=mean_x,
        mean_y=mean_y,
        min_x=float(xs.min()),
        max_x=float(xs.max()),
        n=int(xs.size),
    )
