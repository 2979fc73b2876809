"""Chart backend interface consumed by the panel renderer.

Backends receive semantic panel data (traces and layouts from protocol.py)
and own all drawing. Implementations live in ui/plots.py (pyqtgraph) and
server/ws.py (streamed to browser clients).
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Sequence

from audio_spectrum_analyzer.protocol import PanelLayout, Trace

# (panel_id, axis name "x"/"y"/"z", low, high) in axis units.
AxisChangeCallback = Callable[[str, str, float, float], None]


class ChartBackend:
    """Base class; every drawing operation must be overridden."""

    def __init__(self) -> None:
        self._axis_listener: Optional[AxisChangeCallback] = None

    def set_axis_listener(self, callback: Optional[AxisChangeCallback]) -> None:
        self._axis_listener = callback

    def notify_axis_changed(self, panel_id: str, axis: str, low: float, high: float) -> None:
        if self._axis_listener is not None:
            self._axis_listener(panel_id, axis, float(low), float(high))

    def create_panel(self, panel_id: str, traces: Sequence[Trace], layout: PanelLayout) -> None:
        raise NotImplementedError

    def update_panel_data(self, panel_id: str, data: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def replace_panel_traces(self, panel_id: str, traces: Sequence[Trace], layout: PanelLayout) -> None:
        raise NotImplementedError

    def relayout(self, panel_id: str, layout: PanelLayout) -> None:
        raise NotImplementedError

    def set_visible(self, panel_id: str, visible: bool) -> None:
        raise NotImplementedError

    def resize(self, panel_id: str) -> None:
        raise NotImplementedError

    def destroy_panel(self, panel_id: str) -> None:
        raise NotImplementedError
