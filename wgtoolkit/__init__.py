"""Building blocks for a userspace WireGuard-style daemon: replay filter, TAI64N stamps,
rate limiter, pools, timers, cancelable I/O, control socket and configuration protocol."""

__version__ = "0.1.0"