from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class ShutdownToken:
    """One-shot cancellation flag shared between the accept loop and its watcher."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def request(self) -> None:
        self._event.set()

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


class ShutdownWatcher:
    """Runs ``on_shutdown`` on a background thread once the token is set."""

    def __init__(self, token: ShutdownToken, on_shutdown: Callable[[], None]):
        self.token = token
        self.on_shutdown = on_shutdown
        self._thread = threading.Thread(target=self._watch, name="fxfer-shutdown", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def _watch(self) -> None:
        self.token.wait()
        logger.debug("shutdown requested")
        self.on_shutdown()
