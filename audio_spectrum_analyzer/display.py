"""Display-focused decimation, resampling, and color map helpers."""

from __future__ import annotations

from typing import Tuple

import numpy as np

from audio_spectrum_analyzer.config import ColorScale

# Upper bound on points sent per 3-D history line.
MAX_HISTORY_3D_POINTS = 512


def _decimate_indices(count: int, max_bins: int) -> np.ndarray:
    if max_bins <= 0:
        raise ValueError("max_bins must be positive")
    if count <= max_bins:
        return np.arange(count, dtype=int)
    indices = np.linspace(0, count - 1, num=max_bins, dtype=int)
    indices = np.unique(indices)
    if indices[0] != 0:
        indices = np.insert(indices, 0, 0)
    if indices[-1] != count - 1:
        indices = np.append(indices, count - 1)
    return indices


def decimate_xy(
    x: np.ndarray,
    y: np.ndarray,
    max_bins: int,
) -> Tuple[np.ndarray, np.ndarray]:
    if x.shape != y.shape:
        raise ValueError("x and y must have matching shapes")
    indices = _decimate_indices(x.size, max_bins)
    return x[indices], y[indices]


def log_resample_columns(
    freqs: np.ndarray,
    matrix: np.ndarray,
    rows: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Resample a [freq][time] matrix onto log-spaced frequency rows.

    Image items draw on a uniform grid; a log axis needs the rows spaced in
    decades. Returns (log10 row centers, resampled matrix).
    """

    freqs = np.asarray(freqs, dtype=np.float64)
    matrix = np.asarray(matrix, dtype=np.float32)
    positive = freqs > 0.0
    if matrix.ndim != 2 or matrix.shape[0] != freqs.size:
        raise ValueError("matrix rows must match the frequency axis")
    if not np.any(positive) or matrix.shape[1] == 0:
        return np.zeros(0, dtype=np.float64), np.zeros((0, matrix.shape[1]), dtype=np.float32)
    src = np.log10(freqs[positive])
    values = matrix[positive, :]
    target = np.linspace(src[0], src[-1], num=max(2, int(rows)))
    out = np.empty((target.size, values.shape[1]), dtype=np.float32)
    for col in range(values.shape[1]):
        out[:, col] = np.interp(target, src, values[:, col])
    return target, out


def colormap_table(scale: str) -> np.ndarray:
    """256x4 uint8 RGBA lookup table for a color scale."""

    ramp = np.linspace(0.0, 1.0, 256)
    rgba = np.empty((256, 4), dtype=np.float64)
    rgba[:, 3] = 1.0
    if scale == ColorScale.GREEN:
        rgba[:, 0] = 0.0
        rgba[:, 1] = ramp
        rgba[:, 2] = 0.0
    elif scale == ColorScale.WHITE:
        rgba[:, 0] = ramp
        rgba[:, 1] = ramp
        rgba[:, 2] = ramp
    else:
        # Blue -> cyan -> yellow -> red, the usual spectrogram ramp.
        stops = np.array([0.0, 0.35, 0.65, 1.0])
        rgba[:, 0] = np.interp(ramp, stops, [0.0, 0.0, 1.0, 1.0])
        rgba[:, 1] = np.interp(ramp, stops, [0.0, 1.0, 1.0, 0.0])
        rgba[:, 2] = np.interp(ramp, stops, [0.5, 1.0, 0.0, 0.0])
    return (rgba * 255.0).round().astype(np.uint8)
