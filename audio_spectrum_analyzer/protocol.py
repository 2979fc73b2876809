"""Frame schemas and chart wire-format helpers.

Engine frames (DerivedFrame, status and error frames) are internal and not
wire format. Chart messages are dict objects built via helpers and validated
against the Chart Stream v1.0 JSON schema; they carry the chart backend
operations to remote (browser) panels.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import uuid
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

PROTO_VERSION = "1.0"
MESSAGE_TYPES = {
    "create_panel",
    "update_panel",
    "replace_traces",
    "relayout",
    "visibility",
    "destroy_panel",
    "status",
    "error",
}


class TraceKind(str, Enum):
    LINE = "line"
    HEATMAP = "heatmap"
    LINE_3D = "line3d"


@dataclass(frozen=True)
class DerivedFrame:
    """One emission of the acquisition controller."""

    seq: int
    elapsed_s: float
    spectrum: np.ndarray
    waveform: np.ndarray
    amplitude_mode: str


def make_derived_frame(
    seq: int,
    elapsed_s: float,
    spectrum: np.ndarray,
    waveform: np.ndarray,
    amplitude_mode: str,
) -> DerivedFrame:
    # Read-only copies so no panel can observe a half-updated frame.
    values = np.array(spectrum, dtype=np.float32, copy=True)
    wave = np.array(waveform, dtype=np.float32, copy=True)
    values.setflags(write=False)
    wave.setflags(write=False)
    return DerivedFrame(
        seq=int(seq),
        elapsed_s=float(elapsed_s),
        spectrum=values,
        waveform=wave,
        amplitude_mode=str(amplitude_mode),
    )


@dataclass(frozen=True)
class AxisLayout:
    """One axis; range None means autorange. Log axes take log10 ranges."""

    title: str
    log: bool = False
    range: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class PanelLayout:
    title: str
    x: AxisLayout
    y: AxisLayout
    z: Optional[AxisLayout] = None
    color_range: Optional[Tuple[float, float]] = None
    colormap: str = "Standard"


@dataclass(frozen=True)
class Trace:
    kind: TraceKind
    x: np.ndarray
    y: np.ndarray
    z: Optional[np.ndarray] = None


@dataclass(frozen=True)
class EngineStatusFrame:
    """Acquisition and display status for status bars and HTTP clients."""

    ts_monotonic_ns: int
    state: str
    app_state: str
    sample_rate_hz: float
    fft_size: int
    bin_width_hz: float
    hop_time_s: float
    frames_emitted: int
    graph_pair: str
    panel_types: Tuple[str, ...]
    message: Optional[str] = None


@dataclass(frozen=True)
class EngineErrorFrame:
    """Internal error notifications."""

    ts_monotonic_ns: int
    error_code: str
    message: str
    details: Optional[Mapping[str, Any]] = None
    recoverable: bool = False


EngineFrame = Union[DerivedFrame, EngineStatusFrame, EngineErrorFrame]


def protocol_json_schema() -> dict[str, Any]:
    """Return the Chart Stream v1.0 JSON schema for wire messages."""

    base_fields = {
        "proto_version": {"const": PROTO_VERSION},
        "type": {"enum": sorted(MESSAGE_TYPES)},
        "seq": {"type": "integer", "minimum": 0},
        "session_id": {"type": "string", "format": "uuid"},
    }
    base_required = ["proto_version", "type", "seq", "session_id"]
    number_array = {"type": "array", "items": {"type": ["number", "null"]}}
    range_pair = {
        "type": ["array", "null"],
        "items": {"type": "number"},
        "minItems": 2,
        "maxItems": 2,
    }
    axis = {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "log": {"type": "boolean"},
            "range": range_pair,
        },
        "required": ["title", "log", "range"],
        "additionalProperties": False,
    }
    layout = {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "x": axis,
            "y": axis,
            "z": {"oneOf": [axis, {"type": "null"}]},
            "color_range": range_pair,
            "colormap": {"type": "string"},
        },
        "required": ["title", "x", "y", "z", "color_range", "colormap"],
        "additionalProperties": False,
    }
    trace = {
        "type": "object",
        "properties": {
            "kind": {"enum": [kind.value for kind in TraceKind]},
            "x": number_array,
            "y": number_array,
            "z": {
                "anyOf": [
                    number_array,
                    {"type": "array", "items": number_array},
                    {"type": "null"},
                ]
            },
        },
        "required": ["kind", "x", "y", "z"],
        "additionalProperties": False,
    }

    def _panel_message(type_name: str, extra: dict[str, Any], required: list[str]) -> dict[str, Any]:
        return {
            "title": type_name,
            "type": "object",
            "properties": {
                **base_fields,
                "type": {"const": type_name},
                "panel_id": {"type": "string"},
                **extra,
            },
            "required": base_required + ["panel_id"] + required,
            "additionalProperties": False,
        }

    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": "Chart Stream v1.0 Messages",
        "type": "object",
        "oneOf": [
            _panel_message(
                "create_panel",
                {"traces": {"type": "array", "items": trace}, "layout": layout},
                ["traces", "layout"],
            ),
            _panel_message(
                "update_panel",
                {
                    "data": {
                        "type": "object",
                        "properties": {
                            "x": number_array,
                            "y": number_array,
                            "z": {"anyOf": [number_array, {"type": "array", "items": number_array}]},
                        },
                        "additionalProperties": False,
                    }
                },
                ["data"],
            ),
            _panel_message(
                "replace_traces",
                {"traces": {"type": "array", "items": trace}, "layout": layout},
                ["traces", "layout"],
            ),
            _panel_message("relayout", {"layout": layout}, ["layout"]),
            _panel_message("visibility", {"visible": {"type": "boolean"}}, ["visible"]),
            _panel_message("destroy_panel", {}, []),
            {
                "title": "status",
                "type": "object",
                "properties": {
                    **base_fields,
                    "type": {"const": "status"},
                    "state": {"enum": ["idle", "initializing", "running"]},
                    "app_state": {"enum": ["init", "running", "settings_open"]},
                    "sample_rate_hz": {"type": "number"},
                    "fft_size": {"type": "integer", "minimum": 1},
                    "bin_width_hz": {"type": "number"},
                    "hop_time_s": {"type": "number"},
                    "frames_emitted": {"type": "integer", "minimum": 0},
                    "graph_pair": {"type": "string"},
                    "panel_types": {"type": "array", "items": {"type": "string"}},
                    "message": {"type": ["string", "null"]},
                },
                "required": base_required
                + [
                    "state",
                    "app_state",
                    "sample_rate_hz",
                    "fft_size",
                    "bin_width_hz",
                    "hop_time_s",
                    "frames_emitted",
                    "graph_pair",
                    "panel_types",
                ],
                "additionalProperties": False,
            },
            {
                "title": "error",
                "type": "object",
                "properties": {
                    **base_fields,
                    "type": {"const": "error"},
                    "error_code": {"type": "string"},
                    "message": {"type": "string"},
                    "details": {"type": ["object", "null"]},
                    "recoverable": {"type": "boolean"},
                },
                "required": base_required + ["error_code", "message", "recoverable"],
                "additionalProperties": False,
            },
        ],
    }


def _to_list(values: Optional[Any]) -> Optional[list]:
    if values is None:
        return None
    arr = np.asarray(values, dtype=np.float64)
    # JSON has no Infinity/NaN; they travel as null.
    out = arr.astype(object)
    out[~np.isfinite(arr)] = None
    return out.tolist()


def _range_to_wire(value: Optional[Tuple[float, float]]) -> Optional[list[float]]:
    if value is None:
        return None
    return [float(value[0]), float(value[1])]


def axis_to_wire(axis: AxisLayout) -> dict[str, Any]:
    return {"title": axis.title, "log": bool(axis.log), "range": _range_to_wire(axis.range)}


def layout_to_wire(layout: PanelLayout) -> dict[str, Any]:
    return {
        "title": layout.title,
        "x": axis_to_wire(layout.x),
        "y": axis_to_wire(layout.y),
        "z": axis_to_wire(layout.z) if layout.z is not None else None,
        "color_range": _range_to_wire(layout.color_range),
        "colormap": str(layout.colormap),
    }


def trace_to_wire(trace: Trace) -> dict[str, Any]:
    return {
        "kind": trace.kind.value,
        "x": _to_list(trace.x),
        "y": _to_list(trace.y),
        "z": _to_list(trace.z),
    }


def make_message_base(*, message_type: str, seq: int, session_id: uuid.UUID) -> dict[str, Any]:
    """Build shared fields for chart stream messages."""

    if message_type not in MESSAGE_TYPES:
        raise ValueError(f"Unsupported message type: {message_type}")
    return {
        "proto_version": PROTO_VERSION,
        "type": message_type,
        "seq": int(seq),
        "session_id": str(session_id),
    }


def make_panel_message(
    *,
    message_type: str,
    seq: int,
    session_id: uuid.UUID,
    panel_id: str,
    traces: Optional[Sequence[Trace]] = None,
    layout: Optional[PanelLayout] = None,
    data: Optional[Mapping[str, Any]] = None,
    visible: Optional[bool] = None,
) -> dict[str, Any]:
    message = make_message_base(message_type=message_type, seq=seq, session_id=session_id)
    message["panel_id"] = str(panel_id)
    if traces is not None:
        message["traces"] = [trace_to_wire(trace) for trace in traces]
    if layout is not None:
        message["layout"] = layout_to_wire(layout)
    if data is not None:
        message["data"] = {key: _to_list(value) for key, value in data.items()}
    if visible is not None:
        message["visible"] = bool(visible)
    return message


def engine_status_to_wire(
    frame: EngineStatusFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_message_base(message_type="status", seq=seq, session_id=session_id)
    base.update(
        {
            "state": frame.state,
            "app_state": frame.app_state,
            "sample_rate_hz": float(frame.sample_rate_hz),
            "fft_size": int(frame.fft_size),
            "bin_width_hz": float(frame.bin_width_hz),
            "hop_time_s": float(frame.hop_time_s),
            "frames_emitted": int(frame.frames_emitted),
            "graph_pair": frame.graph_pair,
            "panel_types": list(frame.panel_types),
            "message": frame.message,
        }
    )
    return base


def engine_error_to_wire(
    frame: EngineErrorFrame,
    *,
    seq: int,
    session_id: uuid.UUID,
) -> dict[str, Any]:
    base = make_message_base(message_type="error", seq=seq, session_id=session_id)
    base.update(
        {
            "error_code": frame.error_code,
            "message": frame.message,
            "details": dict(frame.details) if frame.details is not None else None,
            "recoverable": frame.recoverable,
        }
    )
    return base
