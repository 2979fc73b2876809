import json

import pytest

from audio_spectrum_analyzer.config import PanelType
from audio_spectrum_analyzer.controller import AcquisitionError, AcquisitionState
from audio_spectrum_analyzer.protocol import EngineErrorFrame, EngineStatusFrame
from audio_spectrum_analyzer.system import SpectrumSystem

from fakes import DeviceRecorder, FakeClock, ManualTimer, RecordingBackend


def _build(tmp_path, recorder=None, timer_cls=ManualTimer, path=None):
    clock = FakeClock()
    recorder = recorder or DeviceRecorder(clock=clock)
    timers = []

    def timer_factory(callback):
        timers.append(timer_cls(callback))
        return timers[-1]

    system = SpectrumSystem.build(
        RecordingBackend(),
        timer_factory,
        device_factory=recorder,
        path=path or str(tmp_path / "config.json"),
        clock=clock,
    )
    return system, timers[0], recorder, clock


def test_build_lays_out_panels_without_touching_the_device(tmp_path) -> None:
    system, timer, recorder, _ = _build(tmp_path)
    assert system.renderer.panel_types == (PanelType.FREQUENCY, PanelType.HISTORY_3D)
    assert system.settings.state.value == "running"
    assert recorder.devices == []
    assert timer.events == []
    assert not system.running


def test_start_measurement_runs_and_renders(tmp_path) -> None:
    system, timer, recorder, _ = _build(tmp_path)
    frames = []
    system.subscribe(frames.append)

    assert system.start_measurement()
    assert system.controller.state == AcquisitionState.RUNNING
    assert timer.events == ["start"]
    assert len(recorder.open_devices) == 1
    assert (tmp_path / "config.json").exists()
    assert isinstance(frames[-1], EngineStatusFrame)
    assert frames[-1].state == "running"

    system.backend.clear()
    timer.fire()
    assert system.backend.count("update_panel_data", "graph1") == 1
    assert system.controller.frames_emitted == 1

    assert not system.start_measurement()
    assert len(recorder.devices) == 1


def test_stop_halts_timer_before_releasing_device(tmp_path) -> None:
    recorder = DeviceRecorder()
    seen_open = []

    class CheckingTimer(ManualTimer):
        def stop(self) -> None:
            seen_open.append(len(recorder.open_devices))
            super().stop()

    system, timer, _, _ = _build(tmp_path, recorder=recorder, timer_cls=CheckingTimer)
    system.start_measurement()
    system.stop_measurement()
    assert seen_open == [1]
    assert recorder.open_devices == []
    assert system.controller.state == AcquisitionState.IDLE
    assert not system.renderer.running
    timer.fire()
    assert system.controller.frames_emitted == 0


def test_failed_input_reports_error_and_stays_idle(tmp_path) -> None:
    system, timer, _, _ = _build(tmp_path, recorder=DeviceRecorder(fail_with=OSError("no input device")))
    frames = []
    system.subscribe(frames.append)
    with pytest.raises(AcquisitionError):
        system.start_measurement()
    assert system.controller.state == AcquisitionState.IDLE
    assert timer.events == []
    assert system.last_error.error_code == "audio_input_failed"
    assert system.last_error.recoverable
    assert isinstance(frames[0], EngineErrorFrame)
    assert isinstance(frames[1], EngineStatusFrame)


def test_existing_config_is_not_overwritten_on_start(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"graph_pair": "waveOnly", "fft_size": 1024}), encoding="utf-8")
    system, _, _, _ = _build(tmp_path)
    assert system.renderer.panel_types == (PanelType.TIME, PanelType.NONE)
    system.start_measurement()
    assert json.loads(path.read_text(encoding="utf-8")) == {"graph_pair": "waveOnly", "fft_size": 1024}


def test_unwritable_config_path_is_reported_not_raised(tmp_path) -> None:
    system, _, _, _ = _build(tmp_path, path=str(tmp_path / "missing" / "config.json"))
    assert system.start_measurement()
    assert system.last_error.error_code == "config_save_failed"


def test_settings_apply_resyncs_panels_and_persists(tmp_path) -> None:
    system, _, recorder, _ = _build(tmp_path)
    system.start_measurement()
    system.settings.open_settings()
    system.settings.edit("graph_pair", "waveColor")
    system.settings.edit("fft_size", 4096)
    system.settings.apply_settings()

    assert system.renderer.panel_types == (PanelType.TIME, PanelType.HEATMAP)
    assert system.controller.fft_size == 4096
    assert len(recorder.open_devices) == 1
    saved = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
    assert saved["graph_pair"] == "waveColor"
    assert saved["fft_size"] == 4096


def test_settings_apply_that_loses_the_input_stops_measurement(tmp_path) -> None:
    system, timer, recorder, _ = _build(tmp_path)
    system.start_measurement()
    recorder.fail_with = OSError("device unplugged")
    system.settings.open_settings()
    system.settings.edit("sample_rate_hz", 48000)
    with pytest.raises(AcquisitionError):
        system.settings.apply_settings()

    assert system.last_error.error_code == "audio_input_failed"
    assert system.controller.state == AcquisitionState.IDLE
    assert system.settings.state.value == "running"
    assert not system.running
    assert timer.events[-1] == "stop"
    assert recorder.open_devices == []
    saved = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
    assert saved["sample_rate_hz"] == 48000

    timer.fire()
    assert system.controller.frames_emitted == 0


def test_failing_refresh_stops_measurement_and_reports(tmp_path) -> None:
    system, timer, recorder, clock = _build(tmp_path)

    def broken_update(panel_id, data):
        raise RuntimeError("panel gone")

    system.start_measurement()
    system.backend.update_panel_data = broken_update
    clock.advance(1.0)
    system.scheduler_tick()

    assert system.last_error.error_code == "refresh_failed"
    assert system.controller.state == AcquisitionState.IDLE
    assert not system.running
    assert recorder.open_devices == []


def test_rejected_graph_pair_keeps_panels_and_reports(tmp_path) -> None:
    system, _, _, _ = _build(tmp_path)
    before = system.renderer.panel_types
    assert not system.apply_config_to_system(system.store.apply({"graph_pair": "tripleDecker"}))
    assert system.renderer.panel_types == before
    assert system.last_error.error_code == "configuration_error"


def test_failing_subscriber_does_not_break_others(tmp_path) -> None:
    system, _, _, _ = _build(tmp_path)
    received = []

    def broken(frame):
        raise RuntimeError("boom")

    system.subscribe(broken)
    system.subscribe(received.append)
    system.start_measurement()
    assert received
    system.unsubscribe(received.append)
    count = len(received)
    system.stop_measurement()
    assert len(received) == count
