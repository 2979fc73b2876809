"""Application entrypoint wiring for the spectrum analyzer.

Creates the Qt application, logging, and main window. This module must not
contain UI or audio logic beyond orchestration.
"""

import logging
import os
import sys

from pyqtgraph.Qt import QtWidgets

from audio_spectrum_analyzer.ui.main_window import SpectrumWindow

LOG_LEVEL_ENV_VAR = "AUDIO_SPECTRUM_LOG_LEVEL"


def configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV_VAR, "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    configure_logging()
    app = QtWidgets.QApplication(sys.argv)
    window = SpectrumWindow()
    window.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
