"""Entry point for the swipelink demo window."""

from __future__ import annotations

import sys

from PyQt6.QtWidgets import QApplication

from .logging import install_exception_hook, setup_logging
from .services.local_engine import LocalConversationEngine
from .services.sync_settings import SyncSettings
from .ui import MainWindow


def main() -> None:
    """Start the PyQt6 application."""
    logger = setup_logging()
    install_exception_hook(logger)
    logger.debug("Starting QApplication")

    app = QApplication(sys.argv)
    app.setApplicationName("swipelink")

    logger.info("Initialising services")
    settings = SyncSettings()
    engine = LocalConversationEngine()

    window = MainWindow(engine=engine, settings=settings)
    window.show()
    logger.info("Main window shown")

    try:
        exit_code = app.exec()
        logger.info("Application event loop exited", extra={"exit_code": exit_code})
    finally:
        window.synchronizer.stop()
        logger.info("Shutdown complete")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
