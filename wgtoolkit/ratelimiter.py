"""Per-address token-bucket rate limiter with background garbage collection."""

from __future__ import annotations

import ipaddress
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

PACKETS_PER_SECOND = 20
PACKETS_BURSTABLE = 5
GARBAGE_COLLECT_TIME = 1_000_000_000  # nanoseconds
PACKET_COST = 1_000_000_000 // PACKETS_PER_SECOND
MAX_TOKENS = PACKET_COST * PACKETS_BURSTABLE

_GC_INTERVAL = 1.0

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass
class _Entry:
    last_time: int
    tokens: int
    lock: threading.Lock = field(default_factory=threading.Lock)


class _Collector:
    """Background thread that prunes stale entries while the table is non-empty."""

    def __init__(self, limiter: "Ratelimiter") -> None:
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(limiter,), name="ratelimiter-gc", daemon=True
        )
        self._thread.start()

    def wake(self) -> None:
        self._wake.set()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()

    def _run(self, limiter: "Ratelimiter") -> None:
        while True:
            self._wake.wait()
            if self._stop.is_set():
                return
            self._wake.clear()
            while not self._stop.wait(_GC_INTERVAL):
                if limiter.cleanup():
                    break


class Ratelimiter:
    """Allows a small burst of packets per source address, then a steady rate.

    ``clock`` returns the current time in nanoseconds; it defaults to a
    monotonic clock. Call :meth:`init` before use, or use the limiter as a
    context manager.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self._clock = clock or time.monotonic_ns
        self._lock = threading.Lock()
        self._table: Optional[dict[Address, _Entry]] = None
        self._collector: Optional[_Collector] = None

    def __enter__(self) -> "Ratelimiter":
        self.init()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def init(self) -> None:
        """Clear the table and (re)start the garbage collection thread."""
        with self._lock:
            if self._collector is not None:
                self._collector.stop()
            self._table = {}
            self._collector = _Collector(self)

    def close(self) -> None:
        """Stop the garbage collection thread."""
        with self._lock:
            if self._collector is not None:
                self._collector.stop()

    def cleanup(self) -> bool:
        """Drop entries idle for longer than the collection time; return True if empty."""
        with self._lock:
            table = self._require_table()
            for key, entry in list(table.items()):
                with entry.lock:
                    if self._clock() - entry.last_time > GARBAGE_COLLECT_TIME:
                        del table[key]
            return not table

    def allow(self, ip: Union[str, bytes, int, Address]) -> bool:
        """Return True if a packet from ``ip`` may be processed now."""
        addr = _normalise(ip)
        with self._lock:
            table = self._require_table()
            entry = table.get(addr)

        if entry is None:
            entry = _Entry(last_time=self._clock(), tokens=MAX_TOKENS - PACKET_COST)
            with self._lock:
                table[addr] = entry
                if len(table) == 1 and self._collector is not None:
                    self._collector.wake()
            return True

        with entry.lock:
            current = self._clock()
            entry.tokens = min(entry.tokens + current - entry.last_time, MAX_TOKENS)
            entry.last_time = current
            if entry.tokens > PACKET_COST:
                entry.tokens -= PACKET_COST
                return True
            return False

    def _require_table(self) -> dict:
        if self._table is None:
            raise RuntimeError("ratelimiter used before init()")
        return self._table


def _normalise(ip: Union[str, bytes, int, Address]) -> Address:
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return ip
    return ipaddress.ip_address(ip)