"""Acquisition lifecycle, hop-time gating, and derived frame publication."""

from __future__ import annotations

from enum import Enum
import logging
import time
from typing import Callable, Optional

import numpy as np

from audio_spectrum_analyzer.config import (
    AmplitudeMode,
    ConfigStore,
    SpectrumConfig,
    hop_time_seconds,
)
from audio_spectrum_analyzer.dsp.analyzer import SpectrumAnalyzer
from audio_spectrum_analyzer.protocol import DerivedFrame, make_derived_frame

logger = logging.getLogger(__name__)


class AcquisitionState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"


class AcquisitionError(RuntimeError):
    """The input device could not be acquired; the controller stays idle."""


def apply_amplitude_correction(
    spectrum: np.ndarray,
    mode: str,
    offset_db: float,
    floor_db: float,
) -> np.ndarray:
    """Clamp non-finite bins to the floor, then apply the correction gain."""

    values = np.array(spectrum, dtype=np.float64, copy=True)
    bad = ~np.isfinite(values)
    if mode == AmplitudeMode.LINEAR:
        values[bad] = 10.0 ** (float(floor_db) / 20.0)
        return values * (10.0 ** (float(offset_db) / 20.0))
    values[bad] = float(floor_db)
    return values + float(offset_db)


class AcquisitionController:
    """Owns the acquisition state machine and the latest DerivedFrame."""

    def __init__(
        self,
        analyzer: SpectrumAnalyzer,
        store: ConfigStore,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._analyzer = analyzer
        self._store = store
        self._clock = clock
        self._state = AcquisitionState.IDLE
        self._hop_time_s = 0.0
        self._last_emit: Optional[float] = None
        self._t0 = 0.0
        self._seq = 0
        self._latest: Optional[DerivedFrame] = None

    @property
    def state(self) -> AcquisitionState:
        return self._state

    @property
    def hop_time_s(self) -> float:
        return self._hop_time_s

    @property
    def latest_frame(self) -> Optional[DerivedFrame]:
        return self._latest

    @property
    def frames_emitted(self) -> int:
        return self._seq

    @property
    def has_device(self) -> bool:
        return self._analyzer.device is not None

    @property
    def sample_rate(self) -> Optional[float]:
        if not self.has_device:
            return None
        return self._analyzer.sample_rate

    @property
    def fft_size(self) -> int:
        return self._analyzer.fft_size

    def frequency_axis(self) -> Optional[np.ndarray]:
        if not self.has_device:
            return None
        return self._analyzer.frequency_axis()

    def start(self) -> bool:
        """Acquire the device and begin gated emission; no-op unless idle."""

        if self._state != AcquisitionState.IDLE:
            return False
        cfg = self._store.current
        self._state = AcquisitionState.INITIALIZING
        try:
            self._analyzer.initialize(cfg.sample_rate_hz)
            self._analyzer.reconfigure(cfg.fft_size, cfg.sample_rate_hz, cfg.window)
            self._t0 = self._analyzer.elapsed_time()
        except Exception as exc:
            self._analyzer.release()
            self._state = AcquisitionState.IDLE
            logger.warning("audio input unavailable: %s", exc)
            raise AcquisitionError(str(exc) or "Failed to open audio input") from exc

        self._recompute_hop(cfg)
        self._last_emit = None
        self._latest = None
        self._state = AcquisitionState.RUNNING
        logger.info(
            "acquisition running: %.0f Hz, fft %d, hop %.4f s",
            self._analyzer.sample_rate,
            self._analyzer.fft_size,
            self._hop_time_s,
        )
        return True

    def stop(self) -> None:
        if self._state == AcquisitionState.IDLE:
            return
        # Leave RUNNING first so a late tick sees an idle controller.
        self._state = AcquisitionState.IDLE
        self._analyzer.release()
        self._latest = None
        self._last_emit = None
        logger.info("acquisition stopped")

    def update_config(self, cfg: SpectrumConfig) -> None:
        if self._state == AcquisitionState.IDLE:
            return
        try:
            self._analyzer.reconfigure(cfg.fft_size, cfg.sample_rate_hz, cfg.window)
        except Exception as exc:
            # A reopen can fail after the old device was released.
            self._state = AcquisitionState.IDLE
            self._analyzer.release()
            self._latest = None
            self._last_emit = None
            logger.warning("audio input lost while reconfiguring: %s", exc)
            raise AcquisitionError(str(exc) or "Failed to reopen audio input") from exc
        self._recompute_hop(cfg)

    def _recompute_hop(self, cfg: SpectrumConfig) -> None:
        # The device's actual rate wins over the requested one.
        self._hop_time_s = hop_time_seconds(
            self._analyzer.fft_size,
            self._analyzer.sample_rate,
            cfg.overlap,
        )

    def tick(self, now: Optional[float] = None) -> bool:
        """Emit a new DerivedFrame if the hop interval has elapsed."""

        if self._state != AcquisitionState.RUNNING:
            return False
        if now is None:
            now = self._clock()
        if self._last_emit is not None and now - self._last_emit < self._hop_time_s:
            return False
        self._last_emit = now

        cfg = self._store.current
        raw = self._analyzer.current_frequency_frame(cfg.amplitude_mode)
        spectrum = apply_amplitude_correction(
            raw,
            cfg.amplitude_mode,
            cfg.db_correction_gain,
            cfg.min_db_floor,
        )
        waveform = self._analyzer.current_time_frame()
        elapsed = self._analyzer.elapsed_time() - self._t0
        self._seq += 1
        self._latest = make_derived_frame(
            self._seq,
            elapsed,
            spectrum,
            waveform,
            getattr(cfg.amplitude_mode, "value", str(cfg.amplitude_mode)),
        )
        return True
