"""Frequency and amplitude axis range resolution.

Pure functions: every result is derived from the requested bounds, the live
frequency axis, and the scale flag. Ranges are kept in linear Hz and only
converted to log10 at the axis boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from audio_spectrum_analyzer.config import SpectrumConfig


@dataclass(frozen=True)
class FrequencyRange:
    """Linear-Hz frequency range with min_hz < max_hz."""

    min_hz: float
    max_hz: float

    def to_axis(self, log_scale: bool) -> Tuple[float, float]:
        if log_scale:
            return math.log10(self.min_hz), math.log10(self.max_hz)
        return self.min_hz, self.max_hz


def live_frequency_bounds(axis: Sequence[float], log_scale: bool) -> Tuple[float, float]:
    """Return (first valid bin, last bin) of a frequency axis in Hz."""

    freqs = np.asarray(axis, dtype=np.float64)
    if freqs.size == 0:
        raise ValueError("frequency axis is empty")
    if log_scale:
        # log10(0) is undefined, so the DC bin is never a valid log bound.
        nonzero = freqs[freqs > 0.0]
        if nonzero.size == 0:
            raise ValueError("frequency axis has no nonzero bin")
        return float(nonzero[0]), float(freqs[-1])
    return float(freqs[0]), float(freqs[-1])


def clamp_frequency_range(
    requested_min: float,
    requested_max: float,
    axis: Sequence[float],
    log_scale: bool,
    in_decades: bool = False,
) -> FrequencyRange:
    live_min, live_max = live_frequency_bounds(axis, log_scale)

    lo = float(requested_min)
    hi = float(requested_max)
    if in_decades:
        lo = 10.0 ** lo if math.isfinite(lo) else lo
        hi = 10.0 ** hi if math.isfinite(hi) else hi
    if not math.isfinite(lo):
        lo = live_min
    if not math.isfinite(hi):
        hi = live_max

    # Stale requests (e.g. after the sample rate shrank) restart from the live edge.
    if lo > live_max:
        lo = live_min
    if hi < live_min:
        hi = live_max

    lo = min(max(lo, live_min), live_max)
    hi = min(max(hi, live_min), live_max)
    if lo >= hi:
        lo, hi = live_min, live_max
    return FrequencyRange(lo, hi)


def resolve_frequency_range(
    requested_min: float,
    requested_max: float,
    axis: Sequence[float],
    log_scale: bool,
    in_decades: bool = False,
) -> Tuple[float, float]:
    """Clamp a requested range to the live axis and express it in axis units."""

    clamped = clamp_frequency_range(requested_min, requested_max, axis, log_scale, in_decades)
    return clamped.to_axis(log_scale)


def amplitude_range(cfg: SpectrumConfig) -> Optional[Tuple[float, float]]:
    """Fixed amplitude bounds, or None when auto-scaling."""

    if cfg.auto_scale:
        return None
    return float(cfg.min_amplitude), float(cfg.max_amplitude)
