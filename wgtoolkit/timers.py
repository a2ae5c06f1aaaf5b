"""Restartable one-shot timers with a pending flag and synchronous deletion."""

from __future__ import annotations

import threading
from typing import Callable, Optional


class Timer:
    """Runs ``function`` once after a delay set by :meth:`mod`.

    The timer can be re-armed any number of times. :meth:`delete` disarms it,
    and :meth:`delete_sync` also waits for a callback that is already running.
    """

    def __init__(self, function: Callable[[], None]) -> None:
        self._function = function
        self._modifying = threading.Lock()
        self._running = threading.Lock()
        self._pending = False
        self._timer: Optional[threading.Timer] = None

    def _fire(self) -> None:
        with self._running:
            with self._modifying:
                if not self._pending:
                    return
                self._pending = False
            self._function()

    def _stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def mod(self, delay: float) -> None:
        """Arm the timer to fire ``delay`` seconds from now, replacing any earlier arming."""
        with self._modifying:
            self._pending = True
            self._stop()
            timer = threading.Timer(max(delay, 0.0), self._fire)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def delete(self) -> None:
        """Disarm the timer without waiting for a running callback."""
        with self._modifying:
            self._pending = False
            self._stop()

    def delete_sync(self) -> None:
        """Disarm the timer and wait until any running callback has finished."""
        self.delete()
        with self._running:
            self.delete()

    def is_pending(self) -> bool:
        """Return True if the timer is armed and has not fired yet."""
        with self._modifying:
            return self._pending