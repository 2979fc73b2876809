"""Dialog windows for analyzer settings and about/help.

Defines modal dialogs used by the GUI. This module should not touch the audio
device or embed DSP logic; settings edits go through the SettingsController.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Optional

from pyqtgraph.Qt import QtCore, QtWidgets

from audio_spectrum_analyzer import __version__
from audio_spectrum_analyzer.config import (
    AmplitudeMode,
    ColorScale,
    FrequencyScale,
    GraphPair,
    WindowFunction,
)
from audio_spectrum_analyzer.controller import AcquisitionError
from audio_spectrum_analyzer.settings import AppState, SettingsController

SAMPLE_RATES_HZ = [8000, 16000, 22050, 32000, 44100, 48000, 96000]
FFT_SIZES = [256, 512, 1024, 2048, 4096, 8192, 16384, 32768]

GRAPH_PAIR_LABELS = {
    GraphPair.FFT_WATERFALL: "FFT + Waterfall",
    GraphPair.FFT_COLOR: "FFT + Spectrogram",
    GraphPair.WATERFALL_COLOR: "Waterfall + Spectrogram",
    GraphPair.WAVE_COLOR: "Waveform + Spectrogram",
    GraphPair.WAVE_FFT: "Waveform + FFT",
    GraphPair.FFT_ONLY: "FFT only",
    GraphPair.WATERFALL_ONLY: "Waterfall only",
    GraphPair.COLOR_ONLY: "Spectrogram only",
    GraphPair.WAVE_ONLY: "Waveform only",
}

# Line edits whose text is parsed by the SettingsController.
_TEXT_FIELDS = {
    "min_amplitude": "Min amplitude",
    "max_amplitude": "Max amplitude",
    "freq_min_hz": "Min frequency (Hz)",
    "freq_max_hz": "Max frequency (Hz)",
    "history_duration_s": "History duration (s)",
    "db_correction_gain": "Correction gain (dB)",
}


class SettingsDialog(QtWidgets.QDialog):
    """
    Edits one settings session.

    The SettingsController must already be in SETTINGS_OPEN. Every field edit
    is normalized immediately and the normalized values are written back.
    """

    def __init__(
        self,
        parent: QtWidgets.QWidget,
        settings: SettingsController,
        status_cb: Optional[Callable[[str], None]] = None,
    ) -> None:
        super().__init__(parent)
        self.setWindowTitle("Settings")
        self.settings = settings
        self.status_cb = status_cb
        self._edits: Dict[str, QtWidgets.QLineEdit] = {}
        values = settings.edits

        layout = QtWidgets.QVBoxLayout(self)
        form = QtWidgets.QFormLayout()

        self.graph_combo = QtWidgets.QComboBox()
        for pair, label in GRAPH_PAIR_LABELS.items():
            self.graph_combo.addItem(label, pair.value)
        form.addRow("Graphs", self.graph_combo)

        self.amp_mode_combo = self._choice_combo([item.value for item in AmplitudeMode])
        form.addRow("Amplitude", self.amp_mode_combo)
        self.freq_scale_combo = self._choice_combo([item.value for item in FrequencyScale])
        form.addRow("Frequency scale", self.freq_scale_combo)
        self.auto_scale_check = QtWidgets.QCheckBox("Auto scale")
        form.addRow("", self.auto_scale_check)

        for field, label in _TEXT_FIELDS.items():
            edit = QtWidgets.QLineEdit()
            edit.setAlignment(QtCore.Qt.AlignRight)
            edit.editingFinished.connect(lambda f=field: self._on_text_edited(f))
            self._edits[field] = edit
            form.addRow(label, edit)

        self.color_combo = self._choice_combo([item.value for item in ColorScale])
        form.addRow("Color scale", self.color_combo)
        self.rate_combo = self._choice_combo([str(rate) for rate in SAMPLE_RATES_HZ])
        form.addRow("Sample rate (Hz)", self.rate_combo)
        self.window_combo = self._choice_combo([item.value for item in WindowFunction])
        form.addRow("Window", self.window_combo)
        self.fft_combo = self._choice_combo([str(size) for size in FFT_SIZES])
        form.addRow("FFT size", self.fft_combo)
        layout.addLayout(form)

        buttons = QtWidgets.QDialogButtonBox(
            QtWidgets.QDialogButtonBox.Apply | QtWidgets.QDialogButtonBox.Cancel
        )
        layout.addWidget(buttons)

        self._load(values)

        self.graph_combo.currentIndexChanged.connect(
            lambda _i: self.settings.edit("graph_pair", self.graph_combo.currentData())
        )
        self.amp_mode_combo.currentTextChanged.connect(
            lambda text: self.settings.edit("amplitude_mode", text)
        )
        self.freq_scale_combo.currentTextChanged.connect(
            lambda text: self.settings.edit("frequency_scale", text)
        )
        self.auto_scale_check.toggled.connect(lambda checked: self.settings.edit("auto_scale", checked))
        self.color_combo.currentTextChanged.connect(lambda text: self.settings.edit("color_scale", text))
        self.window_combo.currentTextChanged.connect(lambda text: self.settings.edit("window", text))
        self.rate_combo.currentTextChanged.connect(lambda text: self._on_choice_edited("sample_rate_hz", text))
        self.fft_combo.currentTextChanged.connect(lambda text: self._on_choice_edited("fft_size", text))
        buttons.button(QtWidgets.QDialogButtonBox.Apply).clicked.connect(self._apply)
        buttons.rejected.connect(self.reject)

    @staticmethod
    def _choice_combo(items: list[str]) -> QtWidgets.QComboBox:
        combo = QtWidgets.QComboBox()
        combo.addItems(items)
        return combo

    def _load(self, values: Dict[str, object]) -> None:
        index = self.graph_combo.findData(values["graph_pair"])
        if index >= 0:
            self.graph_combo.setCurrentIndex(index)
        self.amp_mode_combo.setCurrentText(str(values["amplitude_mode"]))
        self.freq_scale_combo.setCurrentText(str(values["frequency_scale"]))
        self.auto_scale_check.setChecked(bool(values["auto_scale"]))
        self.color_combo.setCurrentText(str(values["color_scale"]))
        self.rate_combo.setCurrentText(str(values["sample_rate_hz"]))
        self.window_combo.setCurrentText(str(values["window"]))
        self.fft_combo.setCurrentText(str(values["fft_size"]))
        self._refresh_text_fields()

    def _refresh_text_fields(self) -> None:
        values = self.settings.edits
        for field, edit in self._edits.items():
            edit.setText(f"{float(values[field]):g}")

    def _on_text_edited(self, field: str) -> None:
        self.settings.edit(field, self._edits[field].text().strip())
        # Normalization can move the other frequency bound too.
        self._refresh_text_fields()

    def _on_choice_edited(self, field: str, text: str) -> None:
        kept = self.settings.edit(field, text.strip())
        combo = self.rate_combo if field == "sample_rate_hz" else self.fft_combo
        if combo.currentText() != str(kept):
            combo.blockSignals(True)
            combo.setCurrentText(str(kept))
            combo.blockSignals(False)
        self._refresh_text_fields()

    def _apply(self) -> None:
        try:
            self.settings.apply_settings()
        except AcquisitionError as exc:
            if self.status_cb:
                self.status_cb(f"Audio input error: {exc}")
        else:
            if self.status_cb:
                self.status_cb("Settings applied")
        self.accept()

    def reject(self) -> None:
        # Escape and the window close button land here too.
        if self.settings.state == AppState.SETTINGS_OPEN:
            self.settings.cancel_settings()
        super().reject()


class AboutDialog(QtWidgets.QDialog):
    def __init__(self, parent: QtWidgets.QWidget, devices: Optional[list[str]] = None) -> None:
        super().__init__(parent)
        self.setWindowTitle("About")
        layout = QtWidgets.QVBoxLayout(self)

        version_label = QtWidgets.QLabel(f"Audio Spectrum Analyzer v{__version__}")
        version_label.setStyleSheet("font-weight: 600;")
        build_label = QtWidgets.QLabel(f"Build date: {datetime.now().strftime('%Y-%m-%d')}")
        layout.addWidget(version_label)
        layout.addWidget(build_label)

        if devices:
            layout.addWidget(QtWidgets.QLabel("Input devices:"))
            for device in devices:
                layout.addWidget(QtWidgets.QLabel(device))

        buttons = QtWidgets.QDialogButtonBox(QtWidgets.QDialogButtonBox.Close)
        buttons.rejected.connect(self.reject)
        buttons.accepted.connect(self.accept)
        layout.addWidget(buttons)
