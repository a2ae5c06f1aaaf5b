"""TAI64N timestamps with whitened sub-second precision."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

TIMESTAMP_SIZE = 12
_BASE = 0x400000000000000A
_WHITENER_MASK = 0x1000000 - 1
_NS_PER_SECOND = 1_000_000_000
_U64 = 1 << 64
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Timestamp(bytes):
    """A 12-byte TAI64N label: 8 bytes of seconds, 4 bytes of nanoseconds."""

    def __new__(cls, data: bytes = bytes(TIMESTAMP_SIZE)) -> "Timestamp":
        obj = super().__new__(cls, data)
        if len(obj) != TIMESTAMP_SIZE:
            raise ValueError(f"timestamp must be {TIMESTAMP_SIZE} bytes, got {len(obj)}")
        return obj

    @property
    def seconds(self) -> int:
        """Seconds since the Unix epoch."""
        raw = int.from_bytes(self[:8], "big")
        return ((raw - _BASE + (1 << 63)) % _U64) - (1 << 63)

    @property
    def nanoseconds(self) -> int:
        """The nanosecond field as stored."""
        return int.from_bytes(self[8:], "big")

    def after(self, other: "Timestamp") -> bool:
        """Return True if this timestamp is strictly later than ``other``."""
        return bytes(self) > bytes(other)

    def __str__(self) -> str:
        secs, nanos = divmod(self.seconds * _NS_PER_SECOND + self.nanoseconds, _NS_PER_SECOND)
        moment = _EPOCH + timedelta(seconds=secs)
        text = moment.strftime("%Y-%m-%d %H:%M:%S")
        if nanos:
            text += "." + f"{nanos:09d}".rstrip("0")
        return text + " +0000 UTC"

    def __repr__(self) -> str:
        return f"Timestamp({bytes(self)!r})"


def stamp(t: int) -> Timestamp:
    """Build a timestamp from ``t`` nanoseconds since the Unix epoch."""
    secs, nanos = divmod(t, _NS_PER_SECOND)
    secs_field = (_BASE + secs) % _U64
    nanos &= ~_WHITENER_MASK
    return Timestamp(secs_field.to_bytes(8, "big") + nanos.to_bytes(4, "big"))


def now() -> Timestamp:
    """Return the timestamp for the current wall-clock time."""
    return stamp(time.time_ns())