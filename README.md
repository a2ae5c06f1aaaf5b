# wgtoolkit

Pure-Python building blocks for a userspace WireGuard-style daemon. The
package depends on nothing outside the standard library.

## Modules

- `wgtoolkit.replay`: `Filter` is a sliding-window anti-replay filter
  (RFC 6479). `Filter.validate_counter(counter, limit)` returns `True` the
  first time a counter inside the window is seen. It returns `False` for a
  replayed counter, for a counter that has fallen behind the window
  (`WINDOW_SIZE`) and for a counter at or above `limit`. It raises
  `ValueError` for a negative counter. `Filter.reset()` empties the filter.
- `wgtoolkit.tai64n`: `Timestamp` is a 12-byte TAI64N label, with 8 bytes of
  seconds and 4 bytes of nanoseconds. The low 24 bits of the nanosecond field
  are cleared, so the stamp only advances in steps of about 16 ms.
  `stamp(t)` builds a stamp from `t` nanoseconds since the Unix epoch, and
  `now()` builds one from the current time. Use `Timestamp.after(other)` to
  compare two stamps. `str()` renders the stamp as a UTC date and time.
- `wgtoolkit.ratelimiter`: `Ratelimiter` is a per-address token bucket that
  allows 20 packets per second with bursts of 5.
  - Call `init()` first, or use the limiter as a context manager.
  - `allow(ip)` takes a string, bytes, an integer or an `ipaddress` address.
  - `cleanup()` drops entries that have been idle for more than a second and
    returns `True` when the table is empty.
  - `close()` stops the background collector thread.
  - An optional `clock` argument supplies the time in nanoseconds.
- `wgtoolkit.pools`: `WaitPool(max_outstanding, factory)` recycles the
  objects that `factory` makes. When `max_outstanding` is above zero, `get()`
  blocks while that many objects are checked out, until `put()` returns one.
  Zero means no limit.
- `wgtoolkit.limits`: the queue-size constants and
  `calculate_padding_size(packet_size, mtu)`. That function returns how many
  zero bytes to append so the plaintext length becomes a multiple of 16
  without going past `mtu`. An `mtu` of 0 means no upper bound.
- `wgtoolkit.timers`: `Timer(function)` is a restartable one-shot timer with
  these methods:
  - `mod(delay)` arms it for `delay` seconds from now.
  - `delete()` disarms it.
  - `delete_sync()` disarms it and also waits for a callback that is already
    running.
  - `is_pending()` reports whether it is armed.
- `wgtoolkit.rwcancel`: `RWCancel(fd)` switches a descriptor to non-blocking
  mode and offers blocking `read(size)` and `write(data)` that another thread
  can abort with `cancel()`. An aborted call raises `RWCancelledError`.
  - `ready_read()` and `ready_write()` wait for readiness and return `False`
    once cancelled.
  - `close()` releases the internal pipe, not `fd`.
  - `retry_after_error(err)` tells whether an `OSError` was EAGAIN or EINTR.
- `wgtoolkit.ipc`: the UNIX-socket side of the control interface.
  - `sock_path(iface, socket_directory)` gives `<dir>/<iface>.sock`. The
    default directory is `/var/run/wireguard`.
  - `uapi_open(name, socket_directory)` creates the listening socket. It
    replaces a stale socket file, and raises `SocketInUseError` if another
    process still answers on the socket.
  - `uapi_listen(name, sock, socket_directory)` wraps the socket in a
    `UAPIListener`. Its `accept()` returns connections until the listener is
    closed or the socket file is removed. `close()` also deletes the socket
    file, and `addr()` returns the path.
  - The `IPC_ERROR_*` constants hold the errno values the protocol reports.
- `wgtoolkit.uapi`: the text configuration protocol.
  - `Configuration` holds the private key, listen port, fwmark and the peers
    (`PeerConfig`).
  - `ipc_set(text)` and `ipc_set_operation(reader)` apply `key=value` lines.
  - `ipc_get()` and `ipc_get_operation(writer)` render the configuration.
  - `ipc_handle(stream)` serves `get=1` and `set=1` requests from a file-like
    stream, such as `socket.makefile("rwb")`. It answers each request with
    `errno=N` and closes the stream when the input ends.
  - Invalid input raises `IPCError`, whose `code` is the errno-style value.

## Example

```python
from wgtoolkit.replay import Filter

limit = 2**64 - 2**13 - 1
f = Filter()
assert f.validate_counter(0, limit)
assert not f.validate_counter(0, limit)
```

```python
from wgtoolkit.uapi import Configuration, IPCError

conf = Configuration()
conf.ipc_set("listen_port=51820\n")
print(conf.ipc_get())          # listen_port=51820

try:
    conf.ipc_set("bogus=1\n")
except IPCError as err:
    print(err.code)            # -22 (EINVAL)
```

## What this package does not do

The package has no tunnel device and no packet encryption or handshake.
It has no daemon command either. `Configuration` only stores settings and
counters: changing the listen port or fwmark does not bind any socket, and
peers are never contacted. Every task around the tunnel itself is left to the
program that uses these pieces.

## Tests

```
pip install -e ".[test]"
pytest
```