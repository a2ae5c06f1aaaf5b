"""Sliding-window anti-replay filter as described in RFC 6479."""

from __future__ import annotations

_BLOCK_BIT_LOG = 6
_BLOCK_BITS = 1 << _BLOCK_BIT_LOG
_RING_BLOCKS = 1 << 7
_BLOCK_MASK = _RING_BLOCKS - 1
_BIT_MASK = _BLOCK_BITS - 1

WINDOW_SIZE = (_RING_BLOCKS - 1) * _BLOCK_BITS
"""Number of counters behind the newest one that are still tracked."""


class Filter:
    """Rejects message counters that were already seen or fell out of the window.

    A new filter is empty and ready to use. Filters are not thread safe.
    """

    __slots__ = ("_last", "_ring")

    def __init__(self) -> None:
        self._last = 0
        self._ring = [0] * _RING_BLOCKS

    def reset(self) -> None:
        """Return the filter to its empty state."""
        self._last = 0
        self._ring[0] = 0

    def validate_counter(self, counter: int, limit: int) -> bool:
        """Return True if ``counter`` should be accepted, recording it as seen.

        Counters at or above ``limit`` are always rejected.
        """
        if counter < 0:
            raise ValueError("counter must not be negative")
        if counter >= limit:
            return False

        index_block = counter >> _BLOCK_BIT_LOG
        if counter > self._last:
            current = self._last >> _BLOCK_BIT_LOG
            diff = min(index_block - current, _RING_BLOCKS)
            for block in range(current + 1, current + diff + 1):
                self._ring[block & _BLOCK_MASK] = 0
            self._last = counter
        elif self._last - counter > WINDOW_SIZE:
            return False

        index_block &= _BLOCK_MASK
        bit = 1 << (counter & _BIT_MASK)
        old = self._ring[index_block]
        if old & bit:
            return False
        self._ring[index_block] = old | bit
        return True