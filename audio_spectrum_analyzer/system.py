"""Process-wide wiring of the analyzer components.

SpectrumSystem owns one instance of each component, built once at startup,
and exposes the measurement lifecycle and config re-synchronization to the
desktop window and the HTTP server. Status and error frames are pushed to
subscribers.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from audio_spectrum_analyzer.audio.input import open_input_device
from audio_spectrum_analyzer.chart import ChartBackend
from audio_spectrum_analyzer.config import ConfigStore, SpectrumConfig
from audio_spectrum_analyzer.controller import AcquisitionController, AcquisitionError
from audio_spectrum_analyzer.dsp.analyzer import DeviceFactory, SpectrumAnalyzer
from audio_spectrum_analyzer.persistence import (
    config_path,
    has_saved_config,
    load_config,
    save_config,
)
from audio_spectrum_analyzer.protocol import (
    EngineErrorFrame,
    EngineFrame,
    EngineStatusFrame,
)
from audio_spectrum_analyzer.renderer import PanelRenderer
from audio_spectrum_analyzer.scheduler import RefreshScheduler
from audio_spectrum_analyzer.settings import SettingsController

logger = logging.getLogger(__name__)

FrameCallback = Callable[[EngineFrame], None]
TimerFactory = Callable[[Callable[[], object]], object]


class SpectrumSystem:
    """Owns the store, controller, renderer, scheduler and settings session."""

    def __init__(
        self,
        store: ConfigStore,
        analyzer: SpectrumAnalyzer,
        controller: AcquisitionController,
        backend: ChartBackend,
        timer_factory: TimerFactory,
        path: Optional[str] = None,
    ):
        self.store = store
        self.analyzer = analyzer
        self.controller = controller
        self.backend = backend
        self._path = path
        self._subscribers: list[FrameCallback] = []
        self._last_error: Optional[EngineErrorFrame] = None
        self.renderer = PanelRenderer(backend, controller, store, on_error=self._report_config_error)
        self.scheduler = RefreshScheduler(controller, self.renderer, timer_factory(self.scheduler_tick))
        self.settings = SettingsController(store, self.apply_config_to_system, self.persist)

    @classmethod
    def build(
        cls,
        backend: ChartBackend,
        timer_factory: TimerFactory,
        device_factory: DeviceFactory = open_input_device,
        config: Optional[SpectrumConfig] = None,
        path: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "SpectrumSystem":
        """Create every component once and lay out the panels for the config."""

        path = path or config_path()
        store = ConfigStore()
        cfg = store.apply(config if config is not None else load_config(path))
        analyzer = SpectrumAnalyzer(device_factory, cfg.fft_size, cfg.window)
        controller = AcquisitionController(analyzer, store, clock=clock)
        system = cls(store, analyzer, controller, backend, timer_factory, path=path)
        system.apply_config_to_system(cfg)
        system.settings.mark_running()
        return system

    def subscribe(self, callback: FrameCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: FrameCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def last_error(self) -> Optional[EngineErrorFrame]:
        return self._last_error

    @property
    def running(self) -> bool:
        return self.scheduler.active

    def scheduler_tick(self) -> None:
        try:
            self.scheduler.tick()
        except Exception as exc:
            # A failing refresh would fail again on every tick; stop instead.
            logger.exception("refresh tick failed")
            self._report_error("refresh_failed", str(exc), recoverable=True)
            self.stop_measurement()

    def start_measurement(self) -> bool:
        """Acquire the input, re-sync from the current config, start the timer."""

        try:
            started = self.controller.start()
        except AcquisitionError as exc:
            self._report_error("audio_input_failed", str(exc), recoverable=True)
            self._emit_status("audio input unavailable")
            raise
        if not started:
            return False
        cfg = self.store.current
        if not has_saved_config(self._path):
            self.persist(cfg)
        self.apply_config_to_system(cfg)
        self.renderer.reset_axes()
        self.renderer.start()
        self.scheduler.start()
        self._emit_status("running")
        return True

    def stop_measurement(self) -> None:
        # The timer goes first so no tick lands on a half-released device.
        self.scheduler.stop()
        self.renderer.stop()
        self.controller.stop()
        self._emit_status("stopped")

    def apply_config_to_system(self, cfg: SpectrumConfig) -> bool:
        """Re-synchronize renderer and controller from one snapshot."""

        try:
            applied = self.renderer.apply_config(cfg)
        except AcquisitionError as exc:
            # The controller is idle again; nothing may tick on it.
            self.scheduler.stop()
            self.renderer.stop()
            self._report_error("audio_input_failed", str(exc), recoverable=True)
            self._emit_status("audio input lost")
            raise
        if applied and self.renderer.running:
            self.renderer.reset_axes()
        self._emit_status("config applied" if applied else "config rejected")
        return applied

    def persist(self, cfg: SpectrumConfig) -> None:
        try:
            save_config(cfg, self._path)
        except OSError as exc:
            logger.warning("could not save config to %s: %s", self._path, exc)
            self._report_error("config_save_failed", str(exc), recoverable=True)

    def status(self, message: Optional[str] = None) -> EngineStatusFrame:
        cfg = self.store.current
        sample_rate = self.controller.sample_rate
        if sample_rate is None:
            sample_rate = float(cfg.sample_rate_hz)
        return EngineStatusFrame(
            ts_monotonic_ns=self._now_ns(),
            state=self.controller.state.value,
            app_state=self.settings.state.value,
            sample_rate_hz=float(sample_rate),
            fft_size=int(cfg.fft_size),
            bin_width_hz=float(cfg.bin_width_hz),
            hop_time_s=float(self.controller.hop_time_s or cfg.hop_time_s),
            frames_emitted=self.controller.frames_emitted,
            graph_pair=getattr(cfg.graph_pair, "value", str(cfg.graph_pair)),
            panel_types=tuple(item.value for item in self.renderer.panel_types),
            message=message,
        )

    def shutdown(self) -> None:
        self.stop_measurement()
        self._subscribers.clear()

    def _report_config_error(self, exc: Exception) -> None:
        self._report_error("configuration_error", str(exc), recoverable=True)

    def _report_error(self, code: str, message: str, recoverable: bool) -> None:
        self._last_error = EngineErrorFrame(
            ts_monotonic_ns=self._now_ns(),
            error_code=code,
            message=message or code,
            recoverable=recoverable,
        )
        self._emit(self._last_error)

    def _emit_status(self, message: Optional[str] = None) -> None:
        self._emit(self.status(message))

    def _emit(self, frame: EngineFrame) -> None:
        for callback in list(self._subscribers):
            try:
                callback(frame)
            except Exception:
                logger.exception("frame subscriber failed")

    @staticmethod
    def _now_ns() -> int:
        return int(time.monotonic() * 1e9)
