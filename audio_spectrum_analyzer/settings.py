"""Settings edit session and the app-level state machine.

Edits live in a scratch record until apply; the authoritative config in the
ConfigStore is never touched by an abandoned or partially invalid session.
This module must not import UI classes; dialogs bind to it.
"""

from __future__ import annotations

from enum import Enum
import logging
import math
from typing import Any, Callable, Dict, Optional

from audio_spectrum_analyzer.config import (
    AmplitudeMode,
    ColorScale,
    ConfigStore,
    FrequencyScale,
    GraphPair,
    SpectrumConfig,
    WindowFunction,
)

logger = logging.getLogger(__name__)


class AppState(str, Enum):
    INIT = "init"
    RUNNING = "running"
    SETTINGS_OPEN = "settings_open"


class SettingsStateError(RuntimeError):
    """An operation was requested in an app state that does not allow it."""


_FLOAT_FIELDS = {
    "min_amplitude",
    "max_amplitude",
    "freq_min_hz",
    "freq_max_hz",
    "history_duration_s",
    "overlap",
    "db_correction_gain",
    "min_db_floor",
}
_POSITIVE_INT_FIELDS = {"sample_rate_hz", "fft_size"}
_BOOL_FIELDS = {"auto_scale"}
_CHOICE_FIELDS = {
    "graph_pair": GraphPair,
    "amplitude_mode": AmplitudeMode,
    "frequency_scale": FrequencyScale,
    "window": WindowFunction,
    "color_scale": ColorScale,
}
# Edits to these re-run the frequency bound normalization.
_FREQUENCY_FIELDS = {"freq_min_hz", "freq_max_hz", "sample_rate_hz", "fft_size"}


def _parse_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
        return None
    if isinstance(value, (int, float)):
        return bool(value)
    return None


class SettingsController:
    """
    App state machine {INIT, RUNNING, SETTINGS_OPEN} with an edit session.

    on_apply receives the new snapshot after ConfigStore.apply and must
    re-synchronize the running system; persist stores it.
    """

    def __init__(
        self,
        store: ConfigStore,
        on_apply: Callable[[SpectrumConfig], None],
        persist: Optional[Callable[[SpectrumConfig], None]] = None,
    ):
        self._store = store
        self._on_apply = on_apply
        self._persist = persist
        self._state = AppState.INIT
        self._edits: Dict[str, Any] = {}
        self._last_valid: Dict[str, Any] = {}

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def edits(self) -> Dict[str, Any]:
        return dict(self._edits)

    @property
    def last_valid(self) -> Dict[str, Any]:
        return dict(self._last_valid)

    def mark_running(self) -> None:
        if self._state != AppState.INIT:
            return
        self._state = AppState.RUNNING

    def open_settings(self) -> Dict[str, Any]:
        if self._state != AppState.RUNNING:
            raise SettingsStateError(f"cannot open settings from {self._state.value}")
        record = self._store.current.to_record()
        self._last_valid = dict(record)
        self._edits = dict(record)
        self._state = AppState.SETTINGS_OPEN
        return dict(self._edits)

    def _require_open(self) -> None:
        if self._state != AppState.SETTINGS_OPEN:
            raise SettingsStateError("settings are not open")

    def edit(self, field: str, value: Any) -> Any:
        """Set one field; invalid input rolls that field back. Returns the kept value."""

        self._require_open()
        if field not in self._last_valid:
            raise KeyError(field)

        parsed = self._parse(field, value)
        if parsed is None:
            logger.debug("rejected %s=%r; keeping %r", field, value, self._last_valid[field])
            self._edits[field] = self._last_valid[field]
            return self._edits[field]

        self._edits[field] = parsed
        if field in _FREQUENCY_FIELDS:
            self.normalize_frequency_inputs()
        else:
            self._last_valid[field] = parsed
        return self._edits[field]

    def _parse(self, field: str, value: Any) -> Any:
        if field in _FLOAT_FIELDS:
            return _parse_float(value)
        if field in _POSITIVE_INT_FIELDS:
            number = _parse_float(value)
            if number is None or int(number) <= 0:
                return None
            return int(number)
        if field in _BOOL_FIELDS:
            return _parse_bool(value)
        enum_cls = _CHOICE_FIELDS.get(field)
        if enum_cls is not None:
            try:
                return enum_cls(value).value
            except ValueError:
                return None
        return value

    def normalize_frequency_inputs(self) -> Dict[str, float]:
        """
        Keep the edited frequency bounds consistent with the edited rate/size.

        A bound that moved (or every bound, when the sample rate or FFT size
        moved) is clamped to [0, Nyquist] and kept at least one bin width away
        from the other bound. The result becomes the new last-valid baseline.
        """

        self._require_open()
        for field in _POSITIVE_INT_FIELDS:
            if not isinstance(self._edits.get(field), int) or self._edits[field] <= 0:
                self._edits[field] = self._last_valid[field]

        sample_rate = float(self._edits["sample_rate_hz"])
        fft_size = float(self._edits["fft_size"])
        bin_width = sample_rate / fft_size
        nyquist = sample_rate / 2.0
        fft_changed = (
            self._edits["sample_rate_hz"] != self._last_valid["sample_rate_hz"]
            or self._edits["fft_size"] != self._last_valid["fft_size"]
        )

        fmin = _parse_float(self._edits["freq_min_hz"])
        fmax = _parse_float(self._edits["freq_max_hz"])
        if fmin is None:
            fmin = float(self._last_valid["freq_min_hz"])
        if fmax is None:
            fmax = float(self._last_valid["freq_max_hz"])

        if fmin != self._last_valid["freq_min_hz"] or fft_changed:
            fmin = max(fmin, 0.0)
            if fmin >= fmax - bin_width:
                fmin = max(bin_width, fmax - bin_width)
        if fmax != self._last_valid["freq_max_hz"] or fft_changed:
            fmax = min(fmax, nyquist)
            if fmax <= fmin + bin_width:
                fmax = fmin + bin_width

        self._edits["freq_min_hz"] = fmin
        self._edits["freq_max_hz"] = fmax
        for field in _FREQUENCY_FIELDS:
            self._last_valid[field] = self._edits[field]
        return {"freq_min_hz": fmin, "freq_max_hz": fmax}

    def apply_settings(self) -> SpectrumConfig:
        """Promote the edits to the authoritative config and re-sync the system."""

        self._require_open()
        snapshot = self._store.apply(self._edits)
        self._edits = {}
        self._last_valid = {}
        self._state = AppState.RUNNING
        logger.info("settings applied")
        try:
            self._on_apply(snapshot)
        finally:
            # Re-sync may resolve the bounds further; store what is current.
            if self._persist is not None:
                self._persist(self._store.current)
        return self._store.current

    def cancel_settings(self) -> None:
        self._require_open()
        self._edits = {}
        self._last_valid = {}
        self._state = AppState.RUNNING
