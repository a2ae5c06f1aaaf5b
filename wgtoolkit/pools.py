"""Object pool that can cap the number of outstanding items."""

from __future__ import annotations

import threading
from typing import Any, Callable


class WaitPool:
    """Recycles objects made by ``factory``.

    With ``max_outstanding`` above zero, :meth:`get` blocks while that many
    items are checked out. Zero means no limit.
    """

    def __init__(self, max_outstanding: int, factory: Callable[[], Any]) -> None:
        if max_outstanding < 0:
            raise ValueError("max_outstanding must not be negative")
        self._max = max_outstanding
        self._factory = factory
        self._free: list[Any] = []
        self._free_lock = threading.Lock()
        self._cond = threading.Condition()
        self._count = 0

    @property
    def max_outstanding(self) -> int:
        return self._max

    @property
    def count(self) -> int:
        """Number of items currently checked out (always 0 when unlimited)."""
        return self._count

    def get(self) -> Any:
        """Take an item, waiting if the limit is reached."""
        if self._max:
            with self._cond:
                self._cond.wait_for(lambda: self._count < self._max)
                self._count += 1
        with self._free_lock:
            if self._free:
                return self._free.pop()
        return self._factory()

    def put(self, item: Any) -> None:
        """Return an item to the pool and wake one waiter."""
        with self._free_lock:
            self._free.append(item)
        if not self._max:
            return
        with self._cond:
            self._count -= 1
            self._cond.notify()