"""Qt UI for the audio spectrum analyzer main window.

Defines the main widgets, menus, and event handlers for the GUI. This module
must not implement DSP algorithms or direct audio I/O beyond delegating to the
SpectrumSystem.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import pyqtgraph as pg
from pyqtgraph.Qt import QtCore, QtWidgets

from audio_spectrum_analyzer.audio.input import list_input_devices, open_input_device
from audio_spectrum_analyzer.controller import AcquisitionError, AcquisitionState
from audio_spectrum_analyzer.dsp.analyzer import DeviceFactory
from audio_spectrum_analyzer.protocol import EngineErrorFrame, EngineFrame, EngineStatusFrame
from audio_spectrum_analyzer.scheduler import REFRESH_INTERVAL_MS
from audio_spectrum_analyzer.settings import AppState, SettingsStateError
from audio_spectrum_analyzer.system import SpectrumSystem
from audio_spectrum_analyzer.ui.dialogs import AboutDialog, SettingsDialog
from audio_spectrum_analyzer.ui.plots import PyqtgraphChartBackend

logger = logging.getLogger(__name__)

# Status bar refresh period; frame counters change every tick.
STATUS_INTERVAL_MS = 500


class SpectrumWindow(QtWidgets.QMainWindow):
    """
    Main UI class.
    All audio and rendering actions go through the SpectrumSystem.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        device_factory: DeviceFactory = open_input_device,
    ):
        super().__init__()
        self.setWindowTitle("Audio Spectrum Analyzer")

        pg.setConfigOptions(antialias=False)
        pg.setConfigOption("background", (10, 10, 10))
        pg.setConfigOption("foreground", "w")

        self.backend = PyqtgraphChartBackend()
        self.system = SpectrumSystem.build(
            self.backend,
            self._make_refresh_timer,
            device_factory=device_factory,
            path=path,
        )
        self.system.subscribe(self._on_engine_frame)

        self._build_ui()
        self._build_menu()
        self._wire_events()
        self._update_run_controls()

        # Status readout timer (~2 Hz); plots refresh on their own timer.
        self.status_timer = QtCore.QTimer(self)
        self.status_timer.timeout.connect(self._refresh_status)
        self.status_timer.start(STATUS_INTERVAL_MS)

    def _make_refresh_timer(self, callback: Callable[[], object]) -> QtCore.QTimer:
        timer = QtCore.QTimer(self)
        timer.setInterval(REFRESH_INTERVAL_MS)
        timer.timeout.connect(callback)
        return timer

    def closeEvent(self, event):
        self.status_timer.stop()
        self.system.shutdown()
        event.accept()

    def _build_ui(self):
        cw = QtWidgets.QWidget()
        self.setCentralWidget(cw)
        layout = QtWidgets.QVBoxLayout(cw)
        layout.setSpacing(6)

        controls = QtWidgets.QHBoxLayout()
        self.start_btn = QtWidgets.QPushButton("Start")
        self.stop_btn = QtWidgets.QPushButton("Stop")
        self.settings_btn = QtWidgets.QPushButton("Settings")
        controls.addWidget(self.start_btn)
        controls.addWidget(self.stop_btn)
        controls.addStretch(1)
        controls.addWidget(self.settings_btn)
        layout.addLayout(controls)

        layout.addWidget(self.backend.container, 1)

        self.state_label = QtWidgets.QLabel()
        self.rate_label = QtWidgets.QLabel()
        self.bin_label = QtWidgets.QLabel()
        status_bar = self.statusBar()
        status_bar.addPermanentWidget(self.state_label)
        status_bar.addPermanentWidget(self.rate_label)
        status_bar.addPermanentWidget(self.bin_label)

    def _build_menu(self):
        menu = self.menuBar()
        file_menu = menu.addMenu("File")
        self.quit_action = file_menu.addAction("Quit")

        measure_menu = menu.addMenu("Measurement")
        self.start_action = measure_menu.addAction("Start")
        self.stop_action = measure_menu.addAction("Stop")
        measure_menu.addSeparator()
        self.settings_action = measure_menu.addAction("Settings...")

        help_menu = menu.addMenu("Help")
        self.about_action = help_menu.addAction("About")

    def _wire_events(self):
        self.start_btn.clicked.connect(self.on_start)
        self.stop_btn.clicked.connect(self.on_stop)
        self.settings_btn.clicked.connect(self.on_open_settings)
        self.start_action.triggered.connect(self.on_start)
        self.stop_action.triggered.connect(self.on_stop)
        self.settings_action.triggered.connect(self.on_open_settings)
        self.about_action.triggered.connect(self.on_open_about)
        self.quit_action.triggered.connect(self.close)

    def _update_run_controls(self) -> None:
        running = self.system.controller.state == AcquisitionState.RUNNING
        self.start_btn.setEnabled(not running)
        self.start_action.setEnabled(not running)
        self.stop_btn.setEnabled(running)
        self.stop_action.setEnabled(running)

    def on_start(self):
        try:
            self.system.start_measurement()
        except AcquisitionError as exc:
            QtWidgets.QMessageBox.critical(
                self,
                "Audio Input",
                f"Could not start the audio input:\n{exc}",
            )
        self._update_run_controls()

    def on_stop(self):
        self.system.stop_measurement()
        self._update_run_controls()

    def on_open_settings(self):
        settings = self.system.settings
        if settings.state != AppState.RUNNING:
            return
        try:
            settings.open_settings()
        except SettingsStateError as exc:
            logger.warning("settings unavailable: %s", exc)
            return
        dialog = SettingsDialog(self, settings, status_cb=self.statusBar().showMessage)
        dialog.exec()
        self._update_run_controls()

    def on_open_about(self):
        try:
            devices = list_input_devices()
        except OSError as exc:
            logger.info("cannot list input devices: %s", exc)
            devices = []
        AboutDialog(self, devices).exec()

    def _refresh_status(self) -> None:
        self._show_status(self.system.status())

    def _show_status(self, status: EngineStatusFrame) -> None:
        self.state_label.setText(status.state.capitalize())
        self.rate_label.setText(f"{status.sample_rate_hz:.0f} Hz")
        self.bin_label.setText(f"Bin {status.bin_width_hz:.2f} Hz | {status.frames_emitted} frames")

    def _on_engine_frame(self, frame: EngineFrame) -> None:
        if isinstance(frame, EngineStatusFrame):
            self._show_status(frame)
            if frame.message:
                self.statusBar().showMessage(frame.message, 3000)
        elif isinstance(frame, EngineErrorFrame):
            self.statusBar().showMessage(f"Error: {frame.message}", 8000)
