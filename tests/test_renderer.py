import numpy as np
import pytest

from audio_spectrum_analyzer.config import ConfigStore, ConfigurationError, PanelType
from audio_spectrum_analyzer.controller import AcquisitionController
from audio_spectrum_analyzer.dsp.analyzer import SpectrumAnalyzer
from audio_spectrum_analyzer.protocol import TraceKind, make_derived_frame
from audio_spectrum_analyzer.renderer import PanelHistory, PanelRenderer

from fakes import DeviceRecorder, RecordingBackend


class EchoingBackend(RecordingBackend):
    """Reports every pushed range back as if the widget moved on its own."""

    def relayout(self, panel_id, layout) -> None:
        super().relayout(panel_id, layout)
        self.notify_axis_changed(panel_id, "x", 3.0, 3.5)
        self.notify_axis_changed(panel_id, "y", -50.0, 10.0)


def _build(raw=None, backend=None, errors=None):
    store = ConfigStore()
    store.apply(raw or {})
    analyzer = SpectrumAnalyzer(DeviceRecorder(), fft_size=store.current.fft_size)
    controller = AcquisitionController(analyzer, store)
    backend = backend or RecordingBackend()
    renderer = PanelRenderer(
        backend,
        controller,
        store,
        on_error=errors.append if errors is not None else None,
    )
    renderer.apply_config(store.current)
    return renderer, backend, store


def _frame(seq: int, elapsed_s: float, bins: int = 1024, level: float = 40.0):
    return make_derived_frame(seq, elapsed_s, np.full(bins, level), np.zeros(bins * 2), "db")


def test_history_evicts_entries_older_than_duration() -> None:
    history = PanelHistory(10.0, count_cap=200)
    for t in (0.0, 3.0, 6.0, 9.0, 12.0):
        history.append(t, np.zeros(4))
    assert history.times().tolist() == [3.0, 6.0, 9.0, 12.0]


def test_history_requires_strictly_increasing_times() -> None:
    history = PanelHistory(10.0, count_cap=200)
    assert history.append(1.0, np.zeros(4))
    assert not history.append(1.0, np.ones(4))
    assert not history.append(0.5, np.ones(4))
    assert len(history) == 1


def test_history_falls_back_to_count_cap_without_duration() -> None:
    history = PanelHistory(0.0, count_cap=3)
    for t in range(6):
        history.append(float(t), np.zeros(2))
    assert history.times().tolist() == [3.0, 4.0, 5.0]


def test_history_matrix_is_frequency_by_time() -> None:
    history = PanelHistory(60.0, count_cap=10)
    history.append(0.0, np.array([1.0, 2.0, 3.0]))
    history.append(1.0, np.array([4.0, 5.0, 6.0]))
    assert history.matrix().shape == (3, 2)
    assert history.matrix()[:, 1].tolist() == [4.0, 5.0, 6.0]
    history.append(2.0, np.zeros(5))
    assert len(history) == 1


def test_apply_config_builds_both_panels() -> None:
    renderer, backend, _ = _build({"graph_pair": "fftColor"})
    assert renderer.panel_types == (PanelType.FREQUENCY, PanelType.HEATMAP)
    traces, layout = backend.last("create_panel", "graph2")
    assert traces[0].kind == TraceKind.HEATMAP
    assert layout.title == "Spectrogram"
    assert backend.last("set_visible", "graph2") is True


def test_unknown_graph_pair_leaves_panels_unchanged() -> None:
    errors = []
    renderer, backend, store = _build(errors=errors)
    before = renderer.panel_types
    backend.clear()
    assert not renderer.apply_config(store.apply({"graph_pair": "tripleDecker"}))
    assert renderer.panel_types == before
    assert backend.calls == []
    assert len(errors) == 1
    assert isinstance(errors[0], ConfigurationError)


def test_single_panel_layout_hides_and_skips_the_empty_slot() -> None:
    renderer, backend, _ = _build({"graph_pair": "fftOnly"})
    assert renderer.panel_types == (PanelType.FREQUENCY, PanelType.NONE)
    assert backend.last("set_visible", "graph2") is False
    assert backend.count("create_panel", "graph2") == 0
    renderer.start()
    backend.clear()
    assert renderer.render(_frame(1, 0.1))
    assert backend.names("graph2") == []
    assert backend.count("update_panel_data", "graph1") == 1


def test_log_frequency_line_drops_dc_bin() -> None:
    renderer, backend, store = _build({"graph_pair": "fftOnly"})
    renderer.start()
    renderer.render(_frame(1, 0.1))
    data = backend.last("update_panel_data", "graph1")
    assert data["x"][0] > 0.0
    assert data["x"].size == 1023

    renderer.apply_config(store.apply({"graph_pair": "fftOnly", "frequency_scale": "linear"}))
    renderer.render(_frame(2, 0.2))
    assert backend.last("update_panel_data", "graph1")["x"].size == 1024


def test_waveform_x_is_seconds() -> None:
    renderer, backend, _ = _build({"graph_pair": "waveOnly"})
    renderer.start()
    renderer.render(_frame(1, 0.1))
    data = backend.last("update_panel_data", "graph1")
    assert data["x"][1] == pytest.approx(1.0 / 44100)
    assert data["y"].size == 2048


def test_heatmap_update_carries_history_matrix() -> None:
    renderer, backend, _ = _build({"graph_pair": "colorOnly"})
    renderer.start()
    renderer.render(_frame(1, 0.1))
    renderer.render(_frame(2, 0.2))
    data = backend.last("update_panel_data", "graph1")
    assert data["x"].tolist() == [0.1, 0.2]
    assert data["z"].shape == (1024, 2)
    assert data["y"].size == 1024


def test_history_3d_redraws_every_third_frame() -> None:
    renderer, backend, _ = _build()
    renderer.start()
    backend.clear()
    for seq in range(1, 7):
        renderer.render(_frame(seq, seq * 0.1))
    assert backend.count("replace_panel_traces", "graph2") == 2
    traces, layout = backend.last("replace_panel_traces", "graph2")
    assert len(traces) == 6
    assert all(trace.kind == TraceKind.LINE_3D for trace in traces)
    assert layout.z is not None
    assert traces[-1].y[0] == pytest.approx(0.6)


def test_stale_and_repeated_frames_are_ignored() -> None:
    renderer, backend, _ = _build()
    assert not renderer.render(_frame(1, 0.1))
    renderer.start()
    assert renderer.render(_frame(2, 0.2))
    assert not renderer.render(_frame(2, 0.2))
    assert not renderer.render(_frame(1, 0.1))
    assert not renderer.render(None)
    renderer.stop()
    assert not renderer.render(_frame(3, 0.3))


def test_frequency_drag_is_written_back_in_hz() -> None:
    renderer, backend, store = _build()
    backend.clear()
    backend.notify_axis_changed("graph1", "x", 2.0, 3.0)
    assert store.current.freq_min_hz == pytest.approx(100.0)
    assert store.current.freq_max_hz == pytest.approx(1000.0)
    assert backend.count("relayout") == 2


def test_amplitude_drag_is_written_back() -> None:
    renderer, backend, store = _build()
    backend.notify_axis_changed("graph1", "y", 10.0, 50.0)
    assert (store.current.min_amplitude, store.current.max_amplitude) == (10.0, 50.0)
    backend.notify_axis_changed("graph1", "y", 50.0, 10.0)
    assert (store.current.min_amplitude, store.current.max_amplitude) == (10.0, 50.0)


def test_drags_are_ignored_with_auto_scale() -> None:
    renderer, backend, store = _build({"auto_scale": True})
    before = store.current
    backend.notify_axis_changed("graph1", "y", 10.0, 50.0)
    assert store.current is before


def test_programmatic_range_pushes_are_not_written_back() -> None:
    renderer, backend, store = _build(backend=EchoingBackend())
    before = store.current
    renderer.push_scales()
    renderer.reset_axes()
    assert store.current is before


def _latest_layout(backend, panel_id):
    for name, pid, payload in reversed(backend.calls):
        if pid != panel_id:
            continue
        if name == "relayout":
            return payload
        if name in ("create_panel", "replace_panel_traces"):
            return payload[1]
    raise AssertionError(f"no layout for {panel_id}")


@pytest.mark.parametrize(
    "graph_pair, panel_id, axis",
    [
        ("fftOnly", "graph1", "x"),
        ("colorOnly", "graph1", "y"),
        ("waterfallOnly", "graph1", "x"),
    ],
)
def test_auto_scale_leaves_frequency_axes_unbounded(graph_pair, panel_id, axis) -> None:
    renderer, backend, _ = _build({"graph_pair": graph_pair, "auto_scale": True})
    renderer.reset_axes()
    layout = _latest_layout(backend, panel_id)
    assert getattr(layout, axis).range is None
    assert layout.color_range is None


def test_stored_frequency_bounds_match_the_displayed_range() -> None:
    renderer, backend, store = _build(
        {"graph_pair": "fftOnly", "sample_rate_hz": 8000, "frequency_scale": "linear"}
    )
    shown = _latest_layout(backend, "graph1").x.range
    assert shown == pytest.approx((0.0, 1023 * 8000 / 2048))
    assert (store.current.freq_min_hz, store.current.freq_max_hz) == pytest.approx(shown)

    settled = store.current
    renderer.apply_config(settled)
    renderer.reset_axes()
    assert store.current == settled
