"""REST endpoints for the spectrum analyzer server.

Handlers are async so they run on the event loop, the same thread as the
refresh ticker; the core stays single-threaded.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request
import jsonschema

from audio_spectrum_analyzer.audio.input import list_input_devices
from audio_spectrum_analyzer.controller import AcquisitionError
from audio_spectrum_analyzer.persistence import config_record_schema
from audio_spectrum_analyzer.protocol import EngineErrorFrame
from audio_spectrum_analyzer.settings import AppState
from audio_spectrum_analyzer.system import SpectrumSystem


router = APIRouter()


def _system(request: Request) -> SpectrumSystem:
    return request.app.state.system


def _serialize_error(error: EngineErrorFrame | None) -> dict[str, Any] | None:
    if error is None:
        return None
    return asdict(error)


def _serialize_status(system: SpectrumSystem) -> dict[str, Any]:
    return asdict(system.status())


def _serialize_config(system: SpectrumSystem) -> dict[str, Any]:
    cfg = system.store.current
    return {
        "config": cfg.to_record(),
        "derived": {"bin_width_hz": cfg.bin_width_hz, "hop_time_s": cfg.hop_time_s},
    }


@router.get("/api/status")
async def get_status(request: Request) -> dict[str, Any]:
    system = _system(request)
    return {
        "status": _serialize_status(system),
        "error": _serialize_error(system.last_error),
    }


@router.get("/api/config")
async def get_config(request: Request) -> dict[str, Any]:
    return _serialize_config(_system(request))


@router.post("/api/config")
async def update_config(request: Request, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Config payload must be a JSON object")
    system = _system(request)
    known = set(system.store.current.to_record())
    unknown = sorted(set(payload) - known)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown config keys: {', '.join(unknown)}")
    try:
        jsonschema.validate(payload, config_record_schema())
    except jsonschema.ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc

    settings = system.settings
    if settings.state != AppState.RUNNING:
        raise HTTPException(status_code=409, detail="Settings are being edited")
    # Same edit session as the desktop dialog, so bounds normalize identically.
    settings.open_settings()
    for key, value in payload.items():
        settings.edit(key, value)
    try:
        settings.apply_settings()
    except AcquisitionError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return _serialize_config(system)


@router.post("/api/measurement/start")
async def start_measurement(request: Request) -> dict[str, Any]:
    system = _system(request)
    try:
        started = system.start_measurement()
    except AcquisitionError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"ok": True, "started": started, "status": _serialize_status(system)}


@router.post("/api/measurement/stop")
async def stop_measurement(request: Request) -> dict[str, Any]:
    system = _system(request)
    system.stop_measurement()
    return {"ok": True, "status": _serialize_status(system)}


@router.get("/api/devices")
async def list_devices() -> dict[str, Any]:
    try:
        devices = list_input_devices()
    except OSError as exc:
        # PortAudio missing or not initializable on this host.
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"devices": devices}
