"""Persisted synchronizer preferences."""

from __future__ import annotations

import logging

from PyQt6.QtCore import QObject, pyqtSignal

from ..config import ConfigManager
from ..logging import log_call, set_debug_logging


logger = logging.getLogger(__name__)

SETTINGS_SECTION = "swipe_linked_user_edit"


def _coerce_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


class SyncSettings(QObject):
    """Expose the debug-logging toggle and keep it on disk."""

    debug_changed = pyqtSignal(bool)

    @log_call(logger=logger)
    def __init__(self, config_manager: ConfigManager | None = None) -> None:
        super().__init__()
        self._config = config_manager or ConfigManager()
        self._debug = False
        self.reload()

    @log_call(logger=logger)
    def reload(self) -> None:
        data = self._config.load()
        if not isinstance(data, dict):
            data = {}
        section = data.get(SETTINGS_SECTION, {})
        if not isinstance(section, dict):
            section = {}
        self._debug = _coerce_bool(section.get("debug", False))
        set_debug_logging(self._debug)

    @log_call(logger=logger)
    def save(self) -> None:
        self._config.update_section(SETTINGS_SECTION, {"debug": self._debug})

    # ------------------------------------------------------------------
    @property
    def debug(self) -> bool:
        return self._debug

    def set_debug(self, enabled: bool) -> None:
        value = bool(enabled)
        if value == self._debug:
            return
        self._debug = value
        set_debug_logging(value)
        logger.info("Debug logging toggled", extra={"enabled": value})
        self.save()
        self.debug_changed.emit(value)


__all__ = ["SETTINGS_SECTION", "SyncSettings"]
