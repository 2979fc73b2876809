import math

import numpy as np
import pytest

from audio_spectrum_analyzer.axis import (
    amplitude_range,
    clamp_frequency_range,
    live_frequency_bounds,
    resolve_frequency_range,
)
from audio_spectrum_analyzer.config import ConfigStore


def _axis(stop_hz: float = 20000.0, bins: int = 2001) -> np.ndarray:
    return np.linspace(0.0, stop_hz, bins)


def test_linear_request_is_clamped_to_live_axis() -> None:
    assert resolve_frequency_range(-500.0, 50000.0, _axis(), log_scale=False) == (0.0, 20000.0)


def test_log_mode_never_resolves_to_zero() -> None:
    axis = _axis()
    lo, hi = resolve_frequency_range(0.0, 20000.0, axis, log_scale=True)
    assert lo == pytest.approx(math.log10(axis[1]))
    assert hi == pytest.approx(math.log10(20000.0))
    clamped = clamp_frequency_range(0.0, 20000.0, axis, log_scale=True)
    assert clamped.min_hz > 0.0


def test_live_bounds_use_first_nonzero_bin_in_log_mode() -> None:
    axis = _axis()
    assert live_frequency_bounds(axis, log_scale=False) == (0.0, 20000.0)
    assert live_frequency_bounds(axis, log_scale=True) == (axis[1], 20000.0)


def test_empty_axis_is_rejected() -> None:
    with pytest.raises(ValueError):
        live_frequency_bounds(np.zeros(0), log_scale=False)


def test_stale_min_above_live_max_restarts_from_live_min() -> None:
    # A sample-rate drop can leave the old minimum beyond the new axis.
    clamped = clamp_frequency_range(30000.0, 40000.0, _axis(), log_scale=False)
    assert clamped.min_hz == 0.0
    assert clamped.max_hz == 20000.0


def test_stale_max_below_live_min_restarts_from_live_max() -> None:
    axis = _axis()
    clamped = clamp_frequency_range(-10.0, -5.0, axis, log_scale=True)
    assert clamped.min_hz == axis[1]
    assert clamped.max_hz == 20000.0


def test_decade_requests_are_converted_to_hz() -> None:
    lo, hi = resolve_frequency_range(2.0, 4.0, _axis(), log_scale=True, in_decades=True)
    assert lo == pytest.approx(2.0)
    assert hi == pytest.approx(4.0)
    clamped = clamp_frequency_range(2.0, 4.0, _axis(), log_scale=True, in_decades=True)
    assert clamped.min_hz == pytest.approx(100.0)
    assert clamped.max_hz == pytest.approx(10000.0)


def test_non_finite_request_uses_live_bounds() -> None:
    clamped = clamp_frequency_range(float("nan"), float("inf"), _axis(), log_scale=False)
    assert (clamped.min_hz, clamped.max_hz) == (0.0, 20000.0)


def test_inverted_request_falls_back_to_full_range() -> None:
    clamped = clamp_frequency_range(5000.0, 1000.0, _axis(), log_scale=False)
    assert (clamped.min_hz, clamped.max_hz) == (0.0, 20000.0)


def test_resolution_is_pure() -> None:
    axis = _axis()
    first = resolve_frequency_range(100.0, 8000.0, axis, log_scale=True)
    second = resolve_frequency_range(100.0, 8000.0, axis, log_scale=True)
    assert first == second


def test_amplitude_range_follows_auto_scale() -> None:
    store = ConfigStore()
    cfg = store.apply({"min_amplitude": 10.0, "max_amplitude": 90.0})
    assert amplitude_range(cfg) == (10.0, 90.0)
    assert amplitude_range(store.apply({})) == (0.0, 100.0)
    assert amplitude_range(store.apply({"auto_scale": True})) is None
