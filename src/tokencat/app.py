"""Main application coordinator — wires the engine to the tray icon."""

import logging

from .auth import CredentialProvider
from .tray_icon import TrayIcon
from .usage_engine import UsageEngine

log = logging.getLogger(__name__)


class App:
    """Top-level coordinator for Token Cat."""

    def __init__(self) -> None:
        self._engine = UsageEngine(CredentialProvider())
        self._tray = TrayIcon(self._engine, on_exit=self._shutdown)

    def run(self) -> None:
        """Start the engine and block in the tray's event loop."""
        log.info("Starting Token Cat")
        self._engine.start()
        try:
            self._tray.run()
        finally:
            self._engine.close()
        log.info("Shutdown complete")

    def _shutdown(self) -> None:
        log.info("Shutting down...")
        self._tray.stop()
