"""Analysis capability: input device ownership and the FFT frame source.

Provides windowing, the frequency axis, and the current frequency- and
time-domain frames for the configured transform size. This module must not
import UI classes; it owns the input device but not the acquisition lifecycle.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np

from audio_spectrum_analyzer.config import AmplitudeMode, WindowFunction

logger = logging.getLogger(__name__)

DeviceFactory = Callable[[int, int], object]


def make_window(n: int, name: str) -> np.ndarray:
    if name == WindowFunction.HANNING:
        return np.hanning(n).astype(np.float32)
    if name == WindowFunction.RECT:
        return np.ones(n, dtype=np.float32)
    if name == WindowFunction.FLAT_TOP:
        # Flattop coefficients favor amplitude accuracy over sidelobes.
        a0, a1, a2, a3, a4 = 1.0, 1.93, 1.29, 0.388, 0.028
        idx = np.arange(n)
        denom = max(n - 1, 1)
        w = (
            a0
            - a1 * np.cos(2.0 * np.pi * idx / denom)
            + a2 * np.cos(4.0 * np.pi * idx / denom)
            - a3 * np.cos(6.0 * np.pi * idx / denom)
            + a4 * np.cos(8.0 * np.pi * idx / denom)
        )
        return w.astype(np.float32)
    return np.blackman(n).astype(np.float32)


class SpectrumAnalyzer:
    """
    Owns the input device and the transform.

    Frames are computed on demand from the most recent fft_size samples.
    """

    def __init__(
        self,
        device_factory: DeviceFactory,
        fft_size: int = 2048,
        window_name: str = WindowFunction.BLACKMAN,
    ):
        self._device_factory = device_factory
        self._device = None
        self.fft_size = int(fft_size)
        self.window_name = window_name
        self.window = make_window(self.fft_size, self.window_name)
        self._update_window_stats()

    def _update_window_stats(self) -> None:
        win = self.window
        # Coherent gain keeps magnitudes comparable across windows.
        total = float(np.sum(win))
        self.coherent_gain = total / len(win) if total > 0 else 1.0

    @property
    def device(self):
        return self._device

    @property
    def sample_rate(self) -> float:
        if self._device is None:
            raise RuntimeError("analyzer has no input device")
        return float(self._device.sample_rate)

    def initialize(self, sample_rate: int):
        """Open the input device; returns the device handle."""

        if self._device is not None:
            return self._device
        self._device = self._device_factory(int(sample_rate), self.fft_size)
        return self._device

    def reconfigure(self, fft_size: int, sample_rate: int, window_name: Optional[str] = None) -> None:
        if self._device is None:
            return
        if int(round(self.sample_rate)) != int(sample_rate):
            # The device clock is fixed at open time; reopen at the new rate.
            logger.info("reopening input device at %d Hz", int(sample_rate))
            self.release()
            self._device = self._device_factory(int(sample_rate), int(fft_size))
        if window_name is not None:
            self.window_name = window_name
        if int(fft_size) != self.fft_size or len(self.window) != int(fft_size) or window_name is not None:
            self.fft_size = int(fft_size)
            self.window = make_window(self.fft_size, self.window_name)
            self._update_window_stats()
        self._device.resize(self.fft_size)

    def current_time_frame(self) -> np.ndarray:
        if self._device is None:
            raise RuntimeError("analyzer has no input device")
        samples = self._device.read_latest(self.fft_size)
        if samples.size < self.fft_size:
            pad = np.zeros(self.fft_size, dtype=np.float32)
            pad[self.fft_size - samples.size :] = samples
            samples = pad
        return samples

    def current_frequency_frame(self, mode: str = AmplitudeMode.DB) -> np.ndarray:
        """Magnitude per bin for the latest fft_size samples (fft_size/2 bins)."""

        n = self.fft_size
        windowed = self.current_time_frame() * self.window
        spectrum = np.fft.rfft(windowed)[: n // 2]
        magnitude = np.abs(spectrum) / (n * self.coherent_gain)
        if mode == AmplitudeMode.LINEAR:
            return magnitude.astype(np.float32)
        # Silent bins become -inf here; the controller clamps them.
        with np.errstate(divide="ignore"):
            return (20.0 * np.log10(magnitude)).astype(np.float32)

    def frequency_axis(self) -> np.ndarray:
        n = self.fft_size
        return np.arange(n // 2, dtype=np.float64) * (self.sample_rate / float(n))

    def elapsed_time(self) -> float:
        if self._device is None:
            raise RuntimeError("analyzer has no input device")
        return float(self._device.time_s)

    def release(self) -> None:
        if self._device is None:
            return
        device = self._device
        self._device = None
        device.close()
