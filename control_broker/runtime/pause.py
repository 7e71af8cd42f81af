"""Process-wide pause switch read by every dispatch."""

from __future__ import annotations

import logging
import threading


logger = logging.getLogger(__name__)


class PauseState:
    def __init__(self, paused: bool = False) -> None:
        self._lock = threading.Lock()
        self._paused = paused

    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    def set_paused(self, paused: bool) -> None:
        with self._lock:
            self._paused = paused
        logger.info("Pause state set to %s", paused)

    def toggle(self) -> bool:
        with self._lock:
            self._paused = not self._paused
            paused = self._paused
        logger.info("Pause state toggled to %s", paused)
        return paused
