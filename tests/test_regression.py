from __future__ import annotations

import numpy as np
import pytest

from fluxsense.regression import linear_regression


def test_exact_line() -> None:
    x = np.arange(0.0, 10.0)
    result = linear_regression(x, 2.0 * x + 5.0)
    assert result is not None
    assert result.slope == pytest.approx(2.0)
    assert result.intercept == pytest.approx(5.0)
    assert result.r_squared == pytest.approx(1.0)
    assert result.n == 10
    assert result.min_x == 0.0
    assert result.max_x == 9.0
    assert result.mean_x == pytest.approx(4.5)


def test_epoch_timestamps_are_stable() -> None:
    x = 1.7e12 + np.arange(60) * 1000.0
    y = 420.0 + 0.0008 * (x - x[0])
    result = linear_regression(x, y)
    assert result is not None
    assert result.slope == pytest.approx(0.0008, rel=1e-9)
    assert result.r_squared == pytest.approx(1.0)


def test_noisy_fit_has_partial_r_squared() -> None:
    rng = np.random.default_rng(42)
    x = np.linspace(0.0, 100.0, 50)
    y = 0.5 * x + rng.normal(scale=10.0, size=x.size)
    result = linear_regression(x, y)
    assert result is not None
    assert 0.0 < result.r_squared < 1.0


def test_too_few_points() -> None:
    assert linear_regression([], []) is None
    assert linear_regression([1.0], [2.0]) is None


def test_degenerate_inputs() -> None:
    flat = linear_regression([1.0, 2.0, 3.0], [5.0, 5.0, 5.0])
    assert flat is not None
    assert flat.slope == 0.0
    assert flat.r_squared == 1.0

    vertical = linear_regression([3.0, 3.0, 3.0], [1.0, 2.0, 6.0])
    assert vertical is not None
    assert vertical.slope == 0.0
    assert vertical.intercept == pytest.approx(3.0)
    assert vertical.r_squared == 0.0


def test_length_mismatch() -> None:
    with pytest.raises(ValueError):
        linear_regression([1.0, 2.0], [1.0])
