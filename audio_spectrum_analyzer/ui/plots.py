"""pyqtgraph chart backend for the desktop window.

Each panel slot is a PlotWidget stacked in a vertical splitter. Line panels
use PlotDataItems, the heatmap uses an ImageItem, and the 3-D history is
drawn as a depth-offset stack of lines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pyqtgraph as pg
from pyqtgraph.Qt import QtCore, QtWidgets

from audio_spectrum_analyzer.chart import ChartBackend
from audio_spectrum_analyzer.display import colormap_table, log_resample_columns
from audio_spectrum_analyzer.protocol import AxisLayout, PanelLayout, Trace, TraceKind

# Log-frequency heatmaps are resampled onto this many rows.
LOG_HEATMAP_ROWS = 256
# Fraction of the amplitude span between consecutive history lines.
HISTORY_3D_DEPTH_STEP = 0.04


@dataclass
class _PlotSlot:
    widget: pg.PlotWidget
    kind: Optional[TraceKind] = None
    layout: Optional[PanelLayout] = None
    curve: Optional[pg.PlotDataItem] = None
    image: Optional[pg.ImageItem] = None
    lines: List[pg.PlotDataItem] = field(default_factory=list)


class PyqtgraphChartBackend(ChartBackend):
    """Draws panels into a QSplitter; ``container`` goes into the window layout."""

    def __init__(self, panel_ids: Sequence[str] = ("graph1", "graph2")):
        super().__init__()
        self.container = QtWidgets.QSplitter(QtCore.Qt.Vertical)
        self._slots: Dict[str, _PlotSlot] = {}
        for panel_id in panel_ids:
            widget = pg.PlotWidget()
            widget.showGrid(x=True, y=True, alpha=0.2)
            widget.setClipToView(True)
            widget.hide()
            self.container.addWidget(widget)
            vb = widget.getPlotItem().getViewBox()
            vb.sigRangeChangedManually.connect(
                lambda *_args, pid=panel_id: self._on_manual_range(pid)
            )
            self._slots[panel_id] = _PlotSlot(widget=widget)

    def _on_manual_range(self, panel_id: str) -> None:
        slot = self._slots[panel_id]
        if slot.layout is None:
            return
        (x_lo, x_hi), (y_lo, y_hi) = slot.widget.getPlotItem().getViewBox().viewRange()
        self.notify_axis_changed(panel_id, "x", x_lo, x_hi)
        if slot.kind != TraceKind.LINE_3D:
            self.notify_axis_changed(panel_id, "y", y_lo, y_hi)

    def create_panel(self, panel_id: str, traces: Sequence[Trace], layout: PanelLayout) -> None:
        slot = self._slots[panel_id]
        self._clear(slot)
        plot = slot.widget.getPlotItem()
        kind = traces[0].kind if traces else TraceKind.LINE_3D
        slot.kind = kind
        if kind == TraceKind.HEATMAP:
            slot.image = pg.ImageItem(axisOrder="row-major")
            plot.addItem(slot.image)
        elif kind == TraceKind.LINE:
            slot.curve = plot.plot(pen=pg.mkPen("#f4c542", width=1))
            slot.curve.setData(np.asarray(traces[0].x), np.asarray(traces[0].y))
        self.relayout(panel_id, layout)
        if kind == TraceKind.LINE_3D and traces:
            self._draw_history(slot, traces)

    def update_panel_data(self, panel_id: str, data: Mapping[str, Any]) -> None:
        slot = self._slots[panel_id]
        if slot.kind == TraceKind.LINE and slot.curve is not None:
            slot.curve.setData(np.asarray(data["x"]), np.asarray(data["y"]))
        elif slot.kind == TraceKind.HEATMAP and slot.image is not None:
            self._draw_heatmap(slot, np.asarray(data["x"]), np.asarray(data["y"]), np.asarray(data["z"]))

    def replace_panel_traces(self, panel_id: str, traces: Sequence[Trace], layout: PanelLayout) -> None:
        slot = self._slots[panel_id]
        if slot.kind != TraceKind.LINE_3D:
            self.create_panel(panel_id, traces, layout)
            return
        if layout != slot.layout:
            self.relayout(panel_id, layout)
        self._draw_history(slot, traces)

    def relayout(self, panel_id: str, layout: PanelLayout) -> None:
        slot = self._slots[panel_id]
        slot.layout = layout
        plot = slot.widget.getPlotItem()
        plot.setTitle(layout.title)
        plot.setLabel("bottom", layout.x.title)
        if slot.kind == TraceKind.LINE_3D and layout.z is not None:
            plot.setLabel("left", layout.z.title)
        else:
            plot.setLabel("left", layout.y.title)

        if slot.kind == TraceKind.HEATMAP:
            # Images ignore plot log mode; rows are resampled and ticks relabeled.
            plot.setLogMode(x=False, y=False)
            plot.getAxis("left").setLogMode(layout.y.log)
            slot.image.setLookupTable(colormap_table(layout.colormap))
        else:
            plot.setLogMode(x=layout.x.log, y=False)
        self._apply_range(plot, "x", layout.x)
        if slot.kind == TraceKind.LINE_3D:
            plot.enableAutoRange(axis="y")
        else:
            self._apply_range(plot, "y", layout.y)

    @staticmethod
    def _apply_range(plot: pg.PlotItem, axis: str, axis_layout: AxisLayout) -> None:
        if axis_layout.range is None:
            plot.enableAutoRange(axis=axis)
            return
        lo, hi = axis_layout.range
        if axis == "x":
            plot.setXRange(lo, hi, padding=0.0)
        else:
            plot.setYRange(lo, hi, padding=0.0)

    def set_visible(self, panel_id: str, visible: bool) -> None:
        self._slots[panel_id].widget.setVisible(bool(visible))

    def resize(self, panel_id: str) -> None:
        self._slots[panel_id].widget.updateGeometry()

    def destroy_panel(self, panel_id: str) -> None:
        self._clear(self._slots[panel_id])

    def _clear(self, slot: _PlotSlot) -> None:
        slot.widget.getPlotItem().clear()
        slot.kind = None
        slot.layout = None
        slot.curve = None
        slot.image = None
        slot.lines = []

    def _draw_heatmap(self, slot: _PlotSlot, times: np.ndarray, freqs: np.ndarray, matrix: np.ndarray) -> None:
        layout = slot.layout
        if matrix.ndim != 2 or matrix.shape[1] == 0 or freqs.size < 2:
            return
        if layout is not None and layout.y.log:
            rows, matrix = log_resample_columns(freqs, matrix, LOG_HEATMAP_ROWS)
            if rows.size < 2:
                return
            y0, y1 = float(rows[0]), float(rows[-1])
        else:
            y0, y1 = float(freqs[0]), float(freqs[-1])

        slot.image.setImage(matrix, autoLevels=False)
        if layout is not None and layout.color_range is not None:
            slot.image.setLevels(layout.color_range)
        else:
            finite = matrix[np.isfinite(matrix)]
            if finite.size:
                slot.image.setLevels((float(finite.min()), float(finite.max()) + 1e-6))

        t0 = float(times[0])
        width = float(times[-1]) - t0 if times.size > 1 else 1e-3
        slot.image.setRect(QtCore.QRectF(t0, y0, max(width, 1e-3), y1 - y0))
        if layout is not None and layout.x.range is None:
            slot.widget.getPlotItem().setXRange(t0, t0 + max(width, 1e-3), padding=0.0)

    def _draw_history(self, slot: _PlotSlot, traces: Sequence[Trace]) -> None:
        plot = slot.widget.getPlotItem()
        for line in slot.lines:
            plot.removeItem(line)
        slot.lines = []
        if not traces:
            return

        layout = slot.layout
        amp_range = layout.z.range if layout is not None and layout.z is not None else None
        if amp_range is None:
            values = np.concatenate([np.asarray(trace.z, dtype=np.float64) for trace in traces])
            values = values[np.isfinite(values)]
            amp_range = (float(values.min()), float(values.max())) if values.size else (0.0, 1.0)
        step = max(amp_range[1] - amp_range[0], 1e-6) * HISTORY_3D_DEPTH_STEP
        lut = colormap_table(layout.colormap if layout is not None else "Standard")

        count = len(traces)
        # Oldest lines sit lowest; the newest line keeps its true amplitude.
        for index, trace in enumerate(traces):
            depth = count - 1 - index
            color = lut[int(255 * index / max(count - 1, 1))]
            pen = pg.mkPen(tuple(int(c) for c in color[:3]), width=1)
            line = plot.plot(
                np.asarray(trace.x),
                np.asarray(trace.z, dtype=np.float64) - depth * step,
                pen=pen,
            )
            slot.lines.append(line)
