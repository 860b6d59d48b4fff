"""Background interval timer shared by the session tick and the dashboard poll."""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable

__all__ = ["RepeatingTimer"]

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """Call ``function`` every ``interval`` seconds on a daemon thread.

    ``run_immediately`` fires the first call as soon as the thread starts
    instead of after the first interval. Exceptions raised by ``function``
    are logged and the timer keeps running.
    """

    def __init__(
        self,
        interval: float,
        function: Callable[[], None],
        *,
        name: str = "repeating-timer",
        run_immediately: bool = False,
    ):
        self.interval = interval
        self.function = function
        self.name = name
        self.run_immediately = run_immediately
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped.is_set()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"Timer {self.name} already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stopped.set()

    def _run(self) -> None:
        if self.run_immediately and not self._stopped.is_set():
            self._fire()
        while not self._stopped.wait(self.interval):
            self._fire()

    def _fire(self) -> None:
        try:
            self.function()
        except Exception:  # noqa: BLE001
            logger.exception("Timer %s callback failed", self.name)
