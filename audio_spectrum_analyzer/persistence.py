"""Persistence helpers for the analyzer configuration.

Stores and retrieves the flat JSON configuration record. This module must not
import UI or audio classes; it only handles filesystem I/O and validation.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import jsonschema

from audio_spectrum_analyzer.config import (
    AmplitudeMode,
    ColorScale,
    FrequencyScale,
    GraphPair,
    SpectrumConfig,
    WindowFunction,
)

logger = logging.getLogger(__name__)

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
CONFIG_ENV_VAR = "AUDIO_SPECTRUM_CONFIG"
DEFAULT_CONFIG_PATH = os.path.join(ROOT_DIR, "audio-spectrum-config.json")


def config_path() -> str:
    return os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH


def config_record_schema() -> Dict[str, Any]:
    """JSON schema for the persisted record; every key is optional."""

    number = {"type": "number"}
    positive_int = {"type": "integer", "exclusiveMinimum": 0}
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": "Audio Spectrum Config",
        "type": "object",
        "properties": {
            "graph_pair": {"enum": [item.value for item in GraphPair]},
            "auto_scale": {"type": "boolean"},
            "amplitude_mode": {"enum": [item.value for item in AmplitudeMode]},
            "frequency_scale": {"enum": [item.value for item in FrequencyScale]},
            "min_amplitude": number,
            "max_amplitude": number,
            "freq_min_hz": number,
            "freq_max_hz": number,
            "history_duration_s": number,
            "color_scale": {"enum": [item.value for item in ColorScale]},
            "sample_rate_hz": positive_int,
            "window": {"enum": [item.value for item in WindowFunction]},
            "fft_size": positive_int,
            "overlap": {"type": "number", "minimum": 0, "exclusiveMaximum": 1},
            "db_correction_gain": number,
            "min_db_floor": number,
        },
        # Records from newer versions may carry keys we do not know yet.
        "additionalProperties": True,
    }


def load_config(path: Optional[str] = None) -> SpectrumConfig:
    """Load the persisted config; absent or malformed records yield defaults."""

    path = path or config_path()
    if not os.path.exists(path):
        return SpectrumConfig()
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        jsonschema.validate(data, config_record_schema())
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("ignoring unreadable config %s: %s", path, exc)
        return SpectrumConfig()
    except jsonschema.ValidationError as exc:
        logger.warning("ignoring invalid config %s: %s", path, exc.message)
        return SpectrumConfig()
    return SpectrumConfig.from_record(data)


def save_config(cfg: SpectrumConfig, path: Optional[str] = None) -> None:
    path = path or config_path()
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(cfg.to_record(), handle, indent=2)


def has_saved_config(path: Optional[str] = None) -> bool:
    return os.path.exists(path or config_path())
