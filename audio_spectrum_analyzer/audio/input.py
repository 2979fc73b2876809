"""Audio input wrapper and device helpers.

Encapsulates sounddevice interactions and the sample ring the analyzer reads
from. This module must not import any UI classes to keep capture headless and
testable.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

# Input blocks are small so the ring always holds the freshest samples.
DEFAULT_BLOCK_SIZE = 512


class SampleRing:
    """Fixed-capacity ring of the most recent mono samples."""

    def __init__(self, capacity: int):
        self._lock = threading.Lock()
        self._buf = np.zeros(max(1, int(capacity)), dtype=np.float32)
        self._frames_written = 0

    @property
    def capacity(self) -> int:
        return int(self._buf.size)

    @property
    def frames_written(self) -> int:
        return self._frames_written

    def resize(self, capacity: int) -> None:
        capacity = max(1, int(capacity))
        with self._lock:
            if capacity == self._buf.size:
                return
            latest = self._latest_locked(min(capacity, self._buf.size))
            buf = np.zeros(capacity, dtype=np.float32)
            buf[capacity - latest.size :] = latest
            self._buf = buf

    def write(self, block: np.ndarray) -> None:
        block = np.asarray(block, dtype=np.float32).ravel()
        if block.size == 0:
            return
        with self._lock:
            n = self._buf.size
            if block.size >= n:
                self._buf[:] = block[-n:]
            else:
                self._buf[:-block.size] = self._buf[block.size :]
                self._buf[-block.size :] = block
            self._frames_written += int(block.size)

    def latest(self, count: int) -> np.ndarray:
        with self._lock:
            return self._latest_locked(count)

    def _latest_locked(self, count: int) -> np.ndarray:
        count = min(max(0, int(count)), self._buf.size)
        return self._buf[self._buf.size - count :].copy()


class SoundDeviceInput:
    """
    Small wrapper around a sounddevice input stream.

    This isolates audio-driver calls from analysis and UI logic.
    """

    def __init__(
        self,
        sample_rate: int,
        capacity: int,
        device: Optional[int] = None,
        block_size: int = DEFAULT_BLOCK_SIZE,
    ):
        import sounddevice as sd

        self.ring = SampleRing(capacity)
        self._stream = sd.InputStream(
            samplerate=int(sample_rate),
            channels=1,
            dtype="float32",
            blocksize=int(block_size),
            device=device,
            callback=self._callback,
        )
        self._stream.start()
        self._sample_rate = float(self._stream.samplerate)
        logger.info("audio input opened at %.0f Hz", self._sample_rate)

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("audio input status: %s", status)
        self.ring.write(indata[:, 0])

    def close(self) -> None:
        # Explicitly release the stream handle when reinitializing.
        if self._stream is None:
            return
        self._stream.stop()
        self._stream.close()
        self._stream = None
        logger.info("audio input closed")

    def resize(self, capacity: int) -> None:
        self.ring.resize(capacity)

    def read_latest(self, count: int) -> np.ndarray:
        return self.ring.latest(count)

    @property
    def sample_rate(self) -> float:
        return self._sample_rate

    @property
    def time_s(self) -> float:
        # Device clock: seconds of audio captured since the stream opened.
        return float(self.ring.frames_written) / self._sample_rate


class NullAudioInput:
    """Silent test input on a wall-clock time base; never opens a capture device."""

    def __init__(self, sample_rate: int, capacity: int, clock=time.monotonic):
        self.ring = SampleRing(capacity)
        self._sample_rate = float(max(1, int(sample_rate)))
        self._clock = clock
        self._t0 = clock()

    def close(self) -> None:
        return None

    def resize(self, capacity: int) -> None:
        self.ring.resize(capacity)

    def read_latest(self, count: int) -> np.ndarray:
        return self.ring.latest(count)

    @property
    def sample_rate(self) -> float:
        return self._sample_rate

    @property
    def time_s(self) -> float:
        return float(self._clock() - self._t0)


def open_input_device(sample_rate: int, capacity: int) -> SoundDeviceInput:
    return SoundDeviceInput(sample_rate, capacity)


def list_input_devices() -> list[str]:
    """Describe available input devices as "index: name (channels, rate)"."""

    import sounddevice as sd

    devices = []
    for index, info in enumerate(sd.query_devices()):
        if info["max_input_channels"] > 0:
            devices.append(
                f"{index}: {info['name']} "
                f"({info['max_input_channels']} ch, {int(info['default_samplerate'])} Hz)"
            )
    return devices
