"""Single periodic refresh task: hop gate first, then render."""

from __future__ import annotations

import logging

from audio_spectrum_analyzer.controller import AcquisitionController
from audio_spectrum_analyzer.renderer import PanelRenderer

logger = logging.getLogger(__name__)

# Display refresh period; the hop gate decides whether a tick yields a frame.
REFRESH_INTERVAL_MS = 16


class RefreshScheduler:
    """
    Drives the controller and renderer from one timer.

    ``timer`` is any object with start()/stop(): a QtCore.QTimer on the
    desktop, an AsyncioTicker in the server. Its timeout must call tick().
    """

    def __init__(self, controller: AcquisitionController, renderer: PanelRenderer, timer):
        self._controller = controller
        self._renderer = renderer
        self._timer = timer
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def tick(self) -> bool:
        if not self._controller.tick():
            return False
        return self._renderer.render(self._controller.latest_frame)

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._timer.start()
        logger.debug("refresh timer started")

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        self._timer.stop()
        logger.debug("refresh timer stopped")
