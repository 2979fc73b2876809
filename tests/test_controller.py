import numpy as np
import pytest

from audio_spectrum_analyzer.config import AmplitudeMode, ConfigStore
from audio_spectrum_analyzer.controller import (
    AcquisitionController,
    AcquisitionError,
    AcquisitionState,
    apply_amplitude_correction,
)
from audio_spectrum_analyzer.dsp.analyzer import SpectrumAnalyzer

from fakes import DeviceRecorder, FakeClock


def _controller(raw=None, recorder=None, clock=None):
    clock = clock or FakeClock()
    recorder = recorder or DeviceRecorder(clock=clock)
    store = ConfigStore()
    store.apply(raw or {})
    analyzer = SpectrumAnalyzer(recorder, fft_size=store.current.fft_size)
    return AcquisitionController(analyzer, store, clock=clock), recorder, store, clock


def test_start_stop_cycles_hold_one_device() -> None:
    controller, recorder, _, _ = _controller()
    assert controller.state == AcquisitionState.IDLE
    assert controller.start()
    assert not controller.start()
    assert controller.state == AcquisitionState.RUNNING
    assert len(recorder.open_devices) == 1

    controller.stop()
    assert controller.state == AcquisitionState.IDLE
    assert recorder.open_devices == []
    assert controller.latest_frame is None

    assert controller.start()
    assert len(recorder.open_devices) == 1
    assert len(recorder.devices) == 2


def test_stop_when_idle_is_a_no_op() -> None:
    controller, recorder, _, _ = _controller()
    controller.stop()
    assert controller.state == AcquisitionState.IDLE
    assert recorder.devices == []


def test_failed_device_open_leaves_controller_idle() -> None:
    controller, _, _, _ = _controller(recorder=DeviceRecorder(fail_with=OSError("no input")))
    with pytest.raises(AcquisitionError, match="no input"):
        controller.start()
    assert controller.state == AcquisitionState.IDLE
    assert not controller.has_device
    assert not controller.tick()


def test_tick_is_gated_by_hop_time() -> None:
    controller, _, store, clock = _controller()
    controller.start()
    hop = store.current.hop_time_s
    assert controller.hop_time_s == pytest.approx(hop)

    assert controller.tick(clock())
    first = controller.latest_frame
    assert first.seq == 1

    assert not controller.tick(clock.advance(hop / 4))
    assert controller.latest_frame is first

    assert controller.tick(clock.advance(hop))
    second = controller.latest_frame
    assert second.seq == 2
    assert second.elapsed_s > first.elapsed_s
    assert controller.frames_emitted == 2


def test_tick_uses_controller_clock_when_no_time_given() -> None:
    controller, _, store, clock = _controller()
    controller.start()
    assert controller.tick()
    assert not controller.tick()
    clock.advance(store.current.hop_time_s)
    assert controller.tick()


def test_tick_does_nothing_when_idle() -> None:
    controller, _, _, clock = _controller()
    assert not controller.tick(clock())
    assert controller.latest_frame is None


def test_frames_are_read_only_and_sized_from_fft() -> None:
    controller, _, _, clock = _controller({"fft_size": 1024})
    controller.start()
    controller.tick(clock())
    frame = controller.latest_frame
    assert frame.spectrum.shape == (512,)
    assert frame.waveform.shape == (1024,)
    assert frame.amplitude_mode == "db"
    with pytest.raises(ValueError):
        frame.spectrum[0] = 1.0


def test_update_config_while_running_reconfigures_and_rehops() -> None:
    controller, recorder, store, _ = _controller()
    controller.start()
    cfg = store.apply({"fft_size": 4096, "sample_rate_hz": 48000, "overlap": 0.5})
    controller.update_config(cfg)
    assert controller.fft_size == 4096
    assert controller.sample_rate == 48000.0
    assert controller.hop_time_s == pytest.approx((4096 / 48000) * 0.5)
    assert len(recorder.open_devices) == 1


def test_update_config_when_idle_is_a_no_op() -> None:
    controller, recorder, store, _ = _controller()
    controller.update_config(store.apply({"fft_size": 4096}))
    assert controller.fft_size == 2048
    assert recorder.devices == []
    assert controller.frequency_axis() is None


def test_failed_reopen_leaves_controller_idle() -> None:
    controller, recorder, store, clock = _controller()
    controller.start()
    clock.advance(1.0)
    assert controller.tick()
    recorder.fail_with = OSError("device unplugged")
    with pytest.raises(AcquisitionError):
        controller.update_config(store.apply({"sample_rate_hz": 48000}))
    assert controller.state == AcquisitionState.IDLE
    assert not controller.has_device
    assert controller.latest_frame is None
    assert recorder.open_devices == []
    clock.advance(1.0)
    assert not controller.tick()

    recorder.fail_with = None
    assert controller.start()
    assert controller.sample_rate == 48000.0


def test_db_correction_clamps_silent_bins_to_floor() -> None:
    corrected = apply_amplitude_correction(
        np.array([-np.inf, -20.0, np.nan]), AmplitudeMode.DB, 100.0, -120.0
    )
    assert corrected.tolist() == [-20.0, 80.0, -20.0]


def test_linear_correction_scales_by_gain() -> None:
    corrected = apply_amplitude_correction(
        np.array([np.nan, 0.5]), AmplitudeMode.LINEAR, 20.0, -120.0
    )
    assert corrected[0] == pytest.approx(1e-6 * 10.0)
    assert corrected[1] == pytest.approx(5.0)
