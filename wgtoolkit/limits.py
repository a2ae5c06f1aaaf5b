"""Queue sizes, segment limits and transport padding."""

from __future__ import annotations

IDEAL_BATCH_SIZE = 128
"""Number of packets handled together in one batch."""

QUEUE_STAGED_SIZE = IDEAL_BATCH_SIZE
QUEUE_OUTBOUND_SIZE = 1024
QUEUE_INBOUND_SIZE = 1024
QUEUE_HANDSHAKE_SIZE = 1024
MAX_SEGMENT_SIZE = (1 << 16) - 1
"""Largest possible UDP datagram."""

PREALLOCATED_BUFFERS_PER_POOL = 0
"""Zero disables the pool cap and allows unbounded growth."""

PADDING_MULTIPLE = 16
"""Transport plaintext is padded to a multiple of this many bytes."""


def calculate_padding_size(packet_size: int, mtu: int) -> int:
    """Return how many zero bytes to append to a plaintext of ``packet_size``.

    The padded length is rounded up to a multiple of :data:`PADDING_MULTIPLE`
    but never beyond ``mtu``. An ``mtu`` of zero means no upper bound. Packets
    larger than ``mtu`` are padded according to their final segment.
    """
    if packet_size < 0:
        raise ValueError("packet_size must not be negative")
    if mtu < 0:
        raise ValueError("mtu must not be negative")

    last_unit = packet_size
    if mtu == 0:
        return _round_up(last_unit) - last_unit
    if last_unit > mtu:
        last_unit %= mtu
    padded_size = min(_round_up(last_unit), mtu)
    return padded_size - last_unit


def _round_up(size: int) -> int:
    return (size + PADDING_MULTIPLE - 1) & ~(PADDING_MULTIPLE - 1)