"""Application configuration defaults, normalization, and the config store.

Defines the SpectrumConfig snapshot, the enumerations its fields use, and the
ConfigStore that owns the current snapshot. This module must not import UI,
audio, or rendering classes; it stays focused on configuration data only.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from enum import Enum
import math
from typing import Any, Dict, Mapping, Optional, Tuple, Union


class AmplitudeMode(str, Enum):
    DB = "db"
    LINEAR = "linear"


class FrequencyScale(str, Enum):
    LINEAR = "linear"
    LOG = "log"


class WindowFunction(str, Enum):
    BLACKMAN = "Blackman"
    HANNING = "Hanning"
    FLAT_TOP = "FlatTop"
    RECT = "Rect"


class ColorScale(str, Enum):
    STANDARD = "Standard"
    GREEN = "Green"
    WHITE = "White"


class PanelType(str, Enum):
    """What a display slot shows."""

    FREQUENCY = "fft"
    HEATMAP = "spectrogram"
    HISTORY_3D = "waterfall"
    TIME = "waveform"
    NONE = "empty"


class GraphPair(str, Enum):
    """Named layouts selecting the (panel 1, panel 2) types."""

    FFT_WATERFALL = "fftWaterfall"
    FFT_COLOR = "fftColor"
    WATERFALL_COLOR = "waterfallColor"
    WAVE_COLOR = "waveColor"
    WAVE_FFT = "waveFft"
    FFT_ONLY = "fftOnly"
    WATERFALL_ONLY = "waterfallOnly"
    COLOR_ONLY = "colorOnly"
    WAVE_ONLY = "waveOnly"


GRAPH_PAIR_PANELS: Dict[GraphPair, Tuple[PanelType, PanelType]] = {
    GraphPair.FFT_WATERFALL: (PanelType.FREQUENCY, PanelType.HISTORY_3D),
    GraphPair.FFT_COLOR: (PanelType.FREQUENCY, PanelType.HEATMAP),
    GraphPair.WATERFALL_COLOR: (PanelType.HISTORY_3D, PanelType.HEATMAP),
    GraphPair.WAVE_COLOR: (PanelType.TIME, PanelType.HEATMAP),
    GraphPair.WAVE_FFT: (PanelType.TIME, PanelType.FREQUENCY),
    GraphPair.FFT_ONLY: (PanelType.FREQUENCY, PanelType.NONE),
    GraphPair.WATERFALL_ONLY: (PanelType.HISTORY_3D, PanelType.NONE),
    GraphPair.COLOR_ONLY: (PanelType.HEATMAP, PanelType.NONE),
    GraphPair.WAVE_ONLY: (PanelType.TIME, PanelType.NONE),
}

if set(GRAPH_PAIR_PANELS) != set(GraphPair):
    raise RuntimeError("GRAPH_PAIR_PANELS must map every GraphPair")

# Acquisition parameters are divisors elsewhere; these replace unusable values.
SAFE_SAMPLE_RATE_HZ = 44100
SAFE_FFT_SIZE = 1024

_ENUM_FIELDS = {
    "graph_pair": GraphPair,
    "amplitude_mode": AmplitudeMode,
    "frequency_scale": FrequencyScale,
    "window": WindowFunction,
    "color_scale": ColorScale,
}
_DERIVED_FIELDS = ("bin_width_hz", "hop_time_s")


class ConfigNotSetError(RuntimeError):
    """Raised when the current config is read before the first apply."""


class ConfigurationError(ValueError):
    """A configuration value that cannot be honored (recovered locally)."""


def hop_time_seconds(fft_size: int, sample_rate_hz: float, overlap: float) -> float:
    """Target interval between derived frames."""

    return (float(fft_size) / float(sample_rate_hz)) * (1.0 - float(overlap))


@dataclass(frozen=True)
class SpectrumConfig:
    """
    One immutable configuration snapshot.

    Notes
    Frequency bounds are always linear Hz, whatever the axis scale.
    bin_width_hz and hop_time_s are derived by ConfigStore.apply.
    """

    # Display.
    graph_pair: GraphPair = GraphPair.FFT_WATERFALL
    auto_scale: bool = False
    amplitude_mode: AmplitudeMode = AmplitudeMode.DB
    frequency_scale: FrequencyScale = FrequencyScale.LOG
    min_amplitude: float = 0.0
    max_amplitude: float = 100.0
    freq_min_hz: float = 0.0
    freq_max_hz: float = 20000.0
    history_duration_s: float = 60.0
    color_scale: ColorScale = ColorScale.STANDARD

    # Acquisition.
    sample_rate_hz: int = 44100
    window: WindowFunction = WindowFunction.BLACKMAN
    fft_size: int = 2048
    overlap: float = 0.0

    # Single global correction gain (dB) and the floor for silent bins.
    db_correction_gain: float = 100.0
    min_db_floor: float = -120.0

    # Derived.
    bin_width_hz: float = 0.0
    hop_time_s: float = 0.0

    @property
    def is_db(self) -> bool:
        return self.amplitude_mode == AmplitudeMode.DB

    @property
    def is_log_frequency(self) -> bool:
        return self.frequency_scale == FrequencyScale.LOG

    @property
    def nyquist_hz(self) -> float:
        return float(self.sample_rate_hz) / 2.0

    def to_record(self) -> Dict[str, Any]:
        """Flat key/value record with plain JSON types."""

        record: Dict[str, Any] = {}
        for item in fields(self):
            if item.name in _DERIVED_FIELDS:
                continue
            value = getattr(self, item.name)
            if isinstance(value, Enum):
                value = value.value
            record[item.name] = value
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "SpectrumConfig":
        """Build a snapshot from a flat record; absent keys keep defaults."""

        known = {item.name for item in fields(cls)} - set(_DERIVED_FIELDS)
        values = {key: _coerce_enum(key, value) for key, value in record.items() if key in known}
        return cls(**values)


def _coerce_enum(key: str, value: Any) -> Any:
    enum_cls = _ENUM_FIELDS.get(key)
    if enum_cls is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        # Unknown selectors pass through; consumers report them.
        return value


def _positive_or(value: Any, default: int) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number) or number <= 0:
        return default
    return int(number)


def normalize_config(cfg: SpectrumConfig) -> SpectrumConfig:
    sample_rate = _positive_or(cfg.sample_rate_hz, SAFE_SAMPLE_RATE_HZ)
    fft_size = _positive_or(cfg.fft_size, SAFE_FFT_SIZE)
    coerced = {name: _coerce_enum(name, getattr(cfg, name)) for name in _ENUM_FIELDS}
    return replace(cfg, sample_rate_hz=sample_rate, fft_size=fft_size, **coerced)


def derive_config(cfg: SpectrumConfig) -> SpectrumConfig:
    return replace(
        cfg,
        bin_width_hz=float(cfg.sample_rate_hz) / float(cfg.fft_size),
        hop_time_s=hop_time_seconds(cfg.fft_size, cfg.sample_rate_hz, cfg.overlap),
    )


class ConfigStore:
    """Owns the single current SpectrumConfig snapshot."""

    def __init__(self) -> None:
        self._current: Optional[SpectrumConfig] = None

    def apply(self, raw: Union[SpectrumConfig, Mapping[str, Any]]) -> SpectrumConfig:
        if isinstance(raw, SpectrumConfig):
            cfg = raw
        else:
            cfg = SpectrumConfig.from_record(raw)
        snapshot = derive_config(normalize_config(cfg))
        self._current = snapshot
        return snapshot

    def get(self) -> Optional[SpectrumConfig]:
        return self._current

    @property
    def current(self) -> SpectrumConfig:
        if self._current is None:
            raise ConfigNotSetError("configuration read before first apply")
        return self._current

    @property
    def is_set(self) -> bool:
        return self._current is not None
