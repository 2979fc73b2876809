"""Panel rendering: typed display slots, rolling history, and scale pushes.

The renderer turns DerivedFrames into chart backend calls. It owns each
panel's type and history, resolves axis ranges from the current config
snapshot, and writes interactive axis drags back into the ConfigStore. This
module must not import UI classes; drawing belongs to the ChartBackend.
"""

from __future__ import annotations

from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, replace
import logging
import math
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from audio_spectrum_analyzer.axis import (
    amplitude_range,
    clamp_frequency_range,
    resolve_frequency_range,
)
from audio_spectrum_analyzer.chart import ChartBackend
from audio_spectrum_analyzer.config import (
    GRAPH_PAIR_PANELS,
    ConfigStore,
    ConfigurationError,
    PanelType,
    SpectrumConfig,
)
from audio_spectrum_analyzer.controller import AcquisitionController
from audio_spectrum_analyzer.display import MAX_HISTORY_3D_POINTS, decimate_xy
from audio_spectrum_analyzer.protocol import (
    AxisLayout,
    DerivedFrame,
    PanelLayout,
    Trace,
    TraceKind,
)

logger = logging.getLogger(__name__)

# Full 3-D trace rebuilds are the most expensive backend call.
HISTORY_3D_REDRAW_EVERY = 3

# Count caps only apply when no positive history duration is configured.
HEATMAP_COUNT_CAP = 200
HISTORY_3D_COUNT_CAP = 80

PANEL_TITLES = {
    PanelType.FREQUENCY: "FFT Spectrum",
    PanelType.HEATMAP: "Spectrogram",
    PanelType.TIME: "Waveform",
    PanelType.HISTORY_3D: "Waterfall",
}

ErrorCallback = Callable[[Exception], None]


class PanelHistory:
    """
    Rolling (elapsed time, spectrum row) history for one panel.

    Entries are strictly increasing in time. With a positive duration, entries
    older than ``now - duration`` are evicted from the oldest end on every
    append; otherwise the history keeps at most ``count_cap`` entries.
    """

    def __init__(self, duration_s: float, count_cap: int):
        self.duration_s = float(duration_s)
        self.count_cap = max(1, int(count_cap))
        self._times: deque = deque()
        self._rows: deque = deque()

    def __len__(self) -> int:
        return len(self._times)

    def clear(self) -> None:
        self._times.clear()
        self._rows.clear()

    def append(self, elapsed_s: float, row: np.ndarray) -> bool:
        elapsed_s = float(elapsed_s)
        if self._times and elapsed_s <= self._times[-1]:
            return False
        if self._rows and len(self._rows[-1]) != len(row):
            # Bin count changed under us; old rows no longer line up.
            self.clear()
        self._times.append(elapsed_s)
        self._rows.append(row)
        self.evict(elapsed_s)
        return True

    def evict(self, now: float) -> None:
        if self.duration_s > 0:
            cutoff = float(now) - self.duration_s
            while self._times and self._times[0] < cutoff:
                self._times.popleft()
                self._rows.popleft()
            return
        while len(self._times) > self.count_cap:
            self._times.popleft()
            self._rows.popleft()

    def times(self) -> np.ndarray:
        return np.fromiter(self._times, dtype=np.float64, count=len(self._times))

    def items(self) -> List[Tuple[float, np.ndarray]]:
        return list(zip(self._times, self._rows))

    def matrix(self) -> np.ndarray:
        """History as a [frequency][time] matrix."""

        if not self._rows:
            return np.zeros((0, 0), dtype=np.float32)
        return np.column_stack(list(self._rows)).astype(np.float32)


@dataclass
class _Panel:
    panel_id: str
    panel_type: PanelType = PanelType.NONE
    history: Optional[PanelHistory] = None
    created: bool = False
    renders: int = 0


class PanelRenderer:
    """Feeds a fixed set of typed panels from the latest DerivedFrame."""

    def __init__(
        self,
        backend: ChartBackend,
        controller: AcquisitionController,
        store: ConfigStore,
        panel_ids: Sequence[str] = ("graph1", "graph2"),
        history_3d_redraw_every: int = HISTORY_3D_REDRAW_EVERY,
        on_error: Optional[ErrorCallback] = None,
    ):
        self._backend = backend
        self._controller = controller
        self._store = store
        self._panel_ids = tuple(panel_ids)
        self._panels: Dict[str, _Panel] = {pid: _Panel(pid) for pid in self._panel_ids}
        self.history_3d_redraw_every = max(1, int(history_3d_redraw_every))
        self._on_error = on_error
        self._syncing = False
        self._running = False
        self._last_seq = 0
        backend.set_axis_listener(self.on_axis_range_changed)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def panel_ids(self) -> Tuple[str, ...]:
        return self._panel_ids

    @property
    def panel_types(self) -> Tuple[PanelType, ...]:
        return tuple(self._panels[pid].panel_type for pid in self._panel_ids)

    def panel_type(self, panel_id: str) -> PanelType:
        return self._panels[panel_id].panel_type

    def history(self, panel_id: str) -> Optional[PanelHistory]:
        return self._panels[panel_id].history

    @contextmanager
    def _sync(self) -> Iterator[None]:
        # Range writes made here must not come back as user drags.
        previous = self._syncing
        self._syncing = True
        try:
            yield
        finally:
            self._syncing = previous

    def _config(self) -> SpectrumConfig:
        return self._store.current

    def _frequency_axis(self, cfg: SpectrumConfig) -> np.ndarray:
        axis = self._controller.frequency_axis()
        if axis is not None:
            return axis
        n = int(cfg.fft_size)
        return np.arange(n // 2, dtype=np.float64) * (float(cfg.sample_rate_hz) / float(n))

    def _sample_rate(self, cfg: SpectrumConfig) -> float:
        rate = self._controller.sample_rate
        return float(rate) if rate is not None else float(cfg.sample_rate_hz)

    # Layouts

    def _frequency_axis_layout(self, cfg: SpectrumConfig, freqs: np.ndarray) -> AxisLayout:
        log_scale = cfg.is_log_frequency
        if cfg.auto_scale:
            return AxisLayout("Frequency (Hz)", log=log_scale)
        try:
            resolved = resolve_frequency_range(cfg.freq_min_hz, cfg.freq_max_hz, freqs, log_scale)
        except ValueError:
            resolved = None
        return AxisLayout("Frequency (Hz)", log=log_scale, range=resolved)

    def _amplitude_axis_layout(self, cfg: SpectrumConfig) -> AxisLayout:
        title = "Magnitude (dB)" if cfg.is_db else "Magnitude"
        return AxisLayout(title, range=amplitude_range(cfg))

    def layout_for(self, panel_type: PanelType, cfg: SpectrumConfig) -> PanelLayout:
        freqs = self._frequency_axis(cfg)
        title = PANEL_TITLES.get(panel_type, "")
        time_axis = AxisLayout("Time (s)")
        colormap = getattr(cfg.color_scale, "value", str(cfg.color_scale))
        if panel_type == PanelType.FREQUENCY:
            return PanelLayout(
                title,
                x=self._frequency_axis_layout(cfg, freqs),
                y=self._amplitude_axis_layout(cfg),
            )
        if panel_type == PanelType.HEATMAP:
            return PanelLayout(
                title,
                x=time_axis,
                y=self._frequency_axis_layout(cfg, freqs),
                color_range=amplitude_range(cfg),
                colormap=colormap,
            )
        if panel_type == PanelType.HISTORY_3D:
            return PanelLayout(
                title,
                x=self._frequency_axis_layout(cfg, freqs),
                y=time_axis,
                z=self._amplitude_axis_layout(cfg),
                color_range=amplitude_range(cfg),
                colormap=colormap,
            )
        if panel_type == PanelType.TIME:
            return PanelLayout(
                title,
                x=time_axis,
                y=AxisLayout("Amplitude", range=None if cfg.auto_scale else (-1.0, 1.0)),
            )
        return PanelLayout(title, x=AxisLayout(""), y=AxisLayout(""))

    def _initial_traces(self, panel_type: PanelType, cfg: SpectrumConfig) -> List[Trace]:
        empty = np.zeros(0, dtype=np.float64)
        if panel_type == PanelType.HEATMAP:
            freqs = self._frequency_axis(cfg)
            return [Trace(TraceKind.HEATMAP, empty, freqs, np.zeros((freqs.size, 0), dtype=np.float32))]
        if panel_type == PanelType.HISTORY_3D:
            return []
        return [Trace(TraceKind.LINE, empty, empty)]

    # Panel lifecycle

    def set_type(
        self,
        panel_id: str,
        panel_type: PanelType,
        cfg: Optional[SpectrumConfig] = None,
    ) -> None:
        """Tear down and rebuild one panel as ``panel_type``."""

        panel = self._panels[panel_id]
        cfg = cfg or self._config()
        if panel.created:
            self._backend.destroy_panel(panel_id)
            panel.created = False

        panel.panel_type = PanelType(panel_type)
        panel.renders = 0
        if panel.panel_type == PanelType.HEATMAP:
            panel.history = PanelHistory(cfg.history_duration_s, HEATMAP_COUNT_CAP)
        elif panel.panel_type == PanelType.HISTORY_3D:
            panel.history = PanelHistory(cfg.history_duration_s, HISTORY_3D_COUNT_CAP)
        else:
            panel.history = None

        if panel.panel_type != PanelType.NONE:
            with self._sync():
                self._backend.create_panel(
                    panel_id,
                    self._initial_traces(panel.panel_type, cfg),
                    self.layout_for(panel.panel_type, cfg),
                )
            panel.created = True
        self._refresh_visibility()

    def _refresh_visibility(self) -> None:
        for pid in self._panel_ids:
            visible = self._panels[pid].panel_type != PanelType.NONE
            self._backend.set_visible(pid, visible)
        # Single and dual layouts differ in size, so every shown panel re-fits.
        for pid in self._panel_ids:
            if self._panels[pid].panel_type != PanelType.NONE:
                self._backend.resize(pid)

    def apply_config(self, cfg: SpectrumConfig) -> bool:
        """Map the graph pair onto panel types, push scales, then reconfigure."""

        types = GRAPH_PAIR_PANELS.get(cfg.graph_pair)
        if types is None:
            error = ConfigurationError(f"unknown graph pair: {cfg.graph_pair!r}")
            logger.error("%s; panels left unchanged", error)
            if self._on_error is not None:
                self._on_error(error)
            return False
        cfg = self._write_back_frequency_range(cfg)
        for panel_id, panel_type in zip(self._panel_ids, types):
            self.set_type(panel_id, panel_type, cfg)
        self.push_scales(cfg)
        self._controller.update_config(cfg)
        return True

    def _write_back_frequency_range(self, cfg: SpectrumConfig) -> SpectrumConfig:
        """Store the frequency bounds the panels will actually show."""

        try:
            clamped = clamp_frequency_range(
                cfg.freq_min_hz,
                cfg.freq_max_hz,
                self._frequency_axis(cfg),
                cfg.is_log_frequency,
            )
        except ValueError:
            return cfg
        if (clamped.min_hz, clamped.max_hz) == (cfg.freq_min_hz, cfg.freq_max_hz):
            return cfg
        with self._sync():
            snapshot = self._store.apply(replace(cfg, freq_min_hz=clamped.min_hz, freq_max_hz=clamped.max_hz))
        logger.debug("frequency bounds resolved to %.3f..%.3f Hz", clamped.min_hz, clamped.max_hz)
        return snapshot

    def push_scales(self, cfg: Optional[SpectrumConfig] = None) -> None:
        cfg = cfg or self._config()
        with self._sync():
            for pid in self._panel_ids:
                panel = self._panels[pid]
                if panel.panel_type == PanelType.NONE:
                    continue
                self._backend.relayout(pid, self.layout_for(panel.panel_type, cfg))

    def reset_axes(self) -> None:
        """Push the live frequency axis to the frequency-keyed panels."""

        cfg = self._write_back_frequency_range(self._config())
        with self._sync():
            for pid in self._panel_ids:
                panel = self._panels[pid]
                if panel.panel_type not in (PanelType.FREQUENCY, PanelType.HEATMAP):
                    continue
                self._backend.relayout(pid, self.layout_for(panel.panel_type, cfg))

    def start(self) -> None:
        for panel in self._panels.values():
            panel.renders = 0
            if panel.history is not None:
                panel.history.clear()
        self._last_seq = 0
        self._running = True

    def stop(self) -> None:
        self._running = False

    # Rendering

    def render(self, frame: Optional[DerivedFrame]) -> bool:
        """Feed one frame to every shown panel; stale frames are ignored."""

        if not self._running or frame is None:
            return False
        if frame.seq <= self._last_seq:
            return False
        self._last_seq = frame.seq

        cfg = self._config()
        freqs = self._frequency_axis(cfg)
        for pid in self._panel_ids:
            panel = self._panels[pid]
            if panel.panel_type == PanelType.FREQUENCY:
                x, y = self._line_points(cfg, freqs, frame.spectrum)
                self._backend.update_panel_data(pid, {"x": x, "y": y})
            elif panel.panel_type == PanelType.TIME:
                wave = frame.waveform
                x = np.arange(wave.size, dtype=np.float64) / self._sample_rate(cfg)
                self._backend.update_panel_data(pid, {"x": x, "y": wave})
            elif panel.panel_type == PanelType.HEATMAP:
                panel.history.append(frame.elapsed_s, frame.spectrum)
                matrix = panel.history.matrix()
                self._backend.update_panel_data(
                    pid,
                    {"x": panel.history.times(), "y": freqs[: matrix.shape[0]], "z": matrix},
                )
            elif panel.panel_type == PanelType.HISTORY_3D:
                panel.history.append(frame.elapsed_s, frame.spectrum)
                panel.renders += 1
                if panel.renders % self.history_3d_redraw_every == 0:
                    with self._sync():
                        self._backend.replace_panel_traces(
                            pid,
                            self._history_3d_traces(cfg, freqs, panel.history),
                            self.layout_for(panel.panel_type, cfg),
                        )
        return True

    def _line_points(
        self,
        cfg: SpectrumConfig,
        freqs: np.ndarray,
        values: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        count = min(freqs.size, values.size)
        x = freqs[:count]
        y = np.asarray(values[:count], dtype=np.float64)
        if cfg.is_log_frequency:
            # The DC bin has no place on a log axis.
            keep = x > 0.0
            x, y = x[keep], y[keep]
        return x, y

    def _history_3d_traces(
        self,
        cfg: SpectrumConfig,
        freqs: np.ndarray,
        history: PanelHistory,
    ) -> List[Trace]:
        traces = []
        for elapsed_s, row in history.items():
            x, z = self._line_points(cfg, freqs, row)
            x, z = decimate_xy(x, z, MAX_HISTORY_3D_POINTS)
            traces.append(Trace(TraceKind.LINE_3D, x, np.full(x.size, elapsed_s), z))
        return traces

    # Interactive axis writeback

    def _axis_role(self, panel_type: PanelType, axis: str) -> Optional[str]:
        roles = {
            PanelType.FREQUENCY: {"x": "frequency", "y": "amplitude"},
            PanelType.HEATMAP: {"y": "frequency"},
            PanelType.HISTORY_3D: {"x": "frequency", "z": "amplitude"},
        }
        return roles.get(panel_type, {}).get(axis)

    def on_axis_range_changed(self, panel_id: str, axis: str, low: float, high: float) -> None:
        """Write a user axis drag back into the config and re-push scales."""

        if self._syncing:
            return
        cfg = self._store.get()
        panel = self._panels.get(panel_id)
        if cfg is None or cfg.auto_scale or panel is None:
            return
        role = self._axis_role(panel.panel_type, axis)
        if role == "frequency":
            freqs = self._frequency_axis(cfg)
            try:
                clamped = clamp_frequency_range(
                    low,
                    high,
                    freqs,
                    cfg.is_log_frequency,
                    in_decades=cfg.is_log_frequency,
                )
            except ValueError:
                return
            updated = replace(cfg, freq_min_hz=clamped.min_hz, freq_max_hz=clamped.max_hz)
        elif role == "amplitude":
            if not (math.isfinite(low) and math.isfinite(high)) or low >= high:
                return
            updated = replace(cfg, min_amplitude=float(low), max_amplitude=float(high))
        else:
            return
        snapshot = self._store.apply(updated)
        logger.debug("axis drag on %s.%s written back: %.3f..%.3f", panel_id, axis, low, high)
        self.push_scales(snapshot)
