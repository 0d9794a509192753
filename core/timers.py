"""Cancellable background timers used by the session engine."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """
    Calls a function every `interval` seconds on a daemon thread.

    The first call happens after `first_delay` (defaults to `interval`).
    Each timer owns its cancellation token; once cancel() returns no new
    call is started. A call already in progress finishes, so callbacks
    must re-check their own preconditions.
    """

    def __init__(
        self,
        interval: float,
        function: Callable[[], None],
        first_delay: Optional[float] = None,
        name: str = "timer",
    ):
        self.interval = interval
        self.first_delay = interval if first_delay is None else first_delay
        self.function = function
        self.name = name
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "RepeatingTimer":
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _run(self) -> None:
        if self._cancelled.wait(self.first_delay):
            return
        while True:
            try:
                self.function()
            except Exception as e:
                # A failing callback must not kill the schedule
                logger.error(f"Timer '{self.name}' callback failed: {e}", exc_info=True)
            if self._cancelled.wait(self.interval):
                return

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)
