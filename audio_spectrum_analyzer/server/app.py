"""FastAPI application factory for the spectrum analyzer server.

Run with ``uvicorn --factory audio_spectrum_analyzer.server.app:create_app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from audio_spectrum_analyzer.scheduler import REFRESH_INTERVAL_MS
from audio_spectrum_analyzer.server.routes import router
from audio_spectrum_analyzer.server.ws import AsyncioTicker, StreamChartBackend
from audio_spectrum_analyzer.server.ws import router as ws_router
from audio_spectrum_analyzer.system import SpectrumSystem


def build_server_system() -> SpectrumSystem:
    return SpectrumSystem.build(
        StreamChartBackend(),
        lambda callback: AsyncioTicker(callback, REFRESH_INTERVAL_MS / 1000.0),
    )


def create_app(system: SpectrumSystem | None = None) -> FastAPI:
    system = system or build_server_system()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        system.shutdown()

    app = FastAPI(title="Audio Spectrum Analyzer", lifespan=lifespan)
    app.state.system = system
    app.include_router(router)
    app.include_router(ws_router)
    return app
