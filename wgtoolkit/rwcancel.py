"""Cancelable reads and writes on a non-blocking file descriptor."""

from __future__ import annotations

import errno
import os
import select


class RWCancelledError(OSError):
    """Raised when an operation is abandoned because the RWCancel was cancelled."""

    def __init__(self) -> None:
        super().__init__(errno.EBADF, "file already closed")


def retry_after_error(err: BaseException) -> bool:
    """Return True if ``err`` means the operation should simply be tried again."""
    return isinstance(err, OSError) and err.errno in (errno.EAGAIN, errno.EWOULDBLOCK, errno.EINTR)


class RWCancel:
    """Wraps ``fd`` so that blocking reads and writes can be interrupted by :meth:`cancel`.

    The descriptor is switched to non-blocking mode. It is not closed by
    :meth:`close`; only the internal cancellation pipe is.
    """

    def __init__(self, fd: int) -> None:
        os.set_blocking(fd, False)
        self._fd = fd
        self._closing_reader, self._closing_writer = os.pipe()

    def __enter__(self) -> "RWCancel":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def fd(self) -> int:
        return self._fd

    def _ready(self, events: int) -> bool:
        poller = select.poll()
        poller.register(self._fd, events)
        poller.register(self._closing_reader, select.POLLIN)
        while True:
            try:
                results = dict(poller.poll())
                break
            except OSError as err:
                if not retry_after_error(err):
                    return False
        if results.get(self._closing_reader, 0):
            return False
        return bool(results.get(self._fd, 0))

    def ready_read(self) -> bool:
        """Wait until the descriptor is readable; False if cancelled or on error."""
        return self._ready(select.POLLIN)

    def ready_write(self) -> bool:
        """Wait until the descriptor is writable; False if cancelled or on error."""
        return self._ready(select.POLLOUT)

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes, waiting for data unless cancelled."""
        while True:
            try:
                return os.read(self._fd, size)
            except OSError as err:
                if not retry_after_error(err):
                    raise
            if not self.ready_read():
                raise RWCancelledError()

    def write(self, data: bytes) -> int:
        """Write ``data``, waiting for room unless cancelled; return bytes written."""
        while True:
            try:
                return os.write(self._fd, data)
            except OSError as err:
                if not retry_after_error(err):
                    raise
            if not self.ready_write():
                raise RWCancelledError()

    def cancel(self) -> None:
        """Wake and abort all current and future waits."""
        os.write(self._closing_writer, b"\0")

    def close(self) -> None:
        """Release the cancellation pipe."""
        for fd in (self._closing_reader, self._closing_writer):
            try:
                os.close(fd)
            except OSError:
                pass