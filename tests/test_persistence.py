import json

import jsonschema
import pytest

from audio_spectrum_analyzer.config import ConfigStore, GraphPair, SpectrumConfig
from audio_spectrum_analyzer.persistence import (
    CONFIG_ENV_VAR,
    config_path,
    config_record_schema,
    has_saved_config,
    load_config,
    save_config,
)


def test_missing_file_yields_defaults(tmp_path) -> None:
    path = tmp_path / "absent.json"
    assert load_config(str(path)) == SpectrumConfig()
    assert not has_saved_config(str(path))


def test_save_then_load_restores_fields(tmp_path) -> None:
    path = str(tmp_path / "config.json")
    cfg = ConfigStore().apply({"graph_pair": "waveColor", "fft_size": 4096, "overlap": 0.5})
    save_config(cfg, path)
    assert has_saved_config(path)
    loaded = ConfigStore().apply(load_config(path))
    assert loaded == cfg


def test_saved_record_is_flat_plain_json(tmp_path) -> None:
    path = tmp_path / "config.json"
    save_config(SpectrumConfig(), str(path))
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["graph_pair"] == "fftWaterfall"
    assert "bin_width_hz" not in data
    jsonschema.validate(data, config_record_schema())


def test_missing_field_takes_its_default(tmp_path) -> None:
    path = tmp_path / "partial.json"
    path.write_text(json.dumps({"graph_pair": "colorOnly"}), encoding="utf-8")
    cfg = load_config(str(path))
    assert cfg.graph_pair == GraphPair.COLOR_ONLY
    assert cfg.fft_size == 2048


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[1, 2, 3]",
        json.dumps({"fft_size": -5}),
        json.dumps({"graph_pair": "tripleDecker"}),
        json.dumps({"overlap": 1.0}),
    ],
)
def test_unusable_records_fall_back_to_defaults(tmp_path, content) -> None:
    path = tmp_path / "bad.json"
    path.write_text(content, encoding="utf-8")
    assert load_config(str(path)) == SpectrumConfig()


def test_unknown_keys_are_tolerated(tmp_path) -> None:
    path = tmp_path / "newer.json"
    path.write_text(json.dumps({"fft_size": 512, "future_option": True}), encoding="utf-8")
    assert load_config(str(path)).fft_size == 512


def test_config_path_honors_environment(tmp_path, monkeypatch) -> None:
    target = str(tmp_path / "env.json")
    monkeypatch.setenv(CONFIG_ENV_VAR, target)
    assert config_path() == target
    save_config(SpectrumConfig(fft_size=1024))
    assert load_config().fft_size == 1024
