"""Unix-socket control endpoint: creating, listening and watching for removal."""

from __future__ import annotations

import errno
import os
import queue
import socket
import threading
from typing import Optional

IPC_ERROR_IO = -errno.EIO
IPC_ERROR_PROTOCOL = -errno.EPROTO
IPC_ERROR_INVALID = -errno.EINVAL
IPC_ERROR_PORT_IN_USE = -errno.EADDRINUSE
IPC_ERROR_UNKNOWN = -55  # ENOANO

SOCKET_DIRECTORY = "/var/run/wireguard"

_POLL_INTERVAL = 0.1


class SocketInUseError(OSError):
    """Raised when another process is already serving the control socket."""

    def __init__(self, path: str) -> None:
        super().__init__(errno.EADDRINUSE, "unix socket in use", path)


class ListenerClosedError(OSError):
    """Raised by :meth:`UAPIListener.accept` once the listener has been closed."""

    def __init__(self) -> None:
        super().__init__(errno.EBADF, "use of closed network connection")


def sock_path(iface: str, socket_directory: str = SOCKET_DIRECTORY) -> str:
    """Return the control socket path for interface ``iface``."""
    return f"{socket_directory}/{iface}.sock"


def _bind_listen(path: str) -> socket.socket:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.bind(path)
        sock.listen()
    except OSError:
        sock.close()
        raise
    return sock


def uapi_open(name: str, socket_directory: str = SOCKET_DIRECTORY) -> socket.socket:
    """Create and return a listening control socket for ``name``.

    A stale socket file left behind by a dead process is replaced; a socket
    that still accepts connections raises :class:`SocketInUseError`.
    """
    os.makedirs(socket_directory, mode=0o755, exist_ok=True)
    path = sock_path(name, socket_directory)

    old_umask = os.umask(0o077)
    try:
        try:
            return _bind_listen(path)
        except OSError:
            pass

        probe = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            probe.connect(path)
        except OSError:
            pass
        else:
            raise SocketInUseError(path)
        finally:
            probe.close()

        os.remove(path)
        return _bind_listen(path)
    finally:
        os.umask(old_umask)


class UAPIListener:
    """Accepts connections on a control socket until it is closed or its file vanishes."""

    def __init__(self, sock: socket.socket, socket_path: str) -> None:
        self._sock = sock
        self._path = socket_path
        self._events: "queue.Queue[tuple[Optional[socket.socket], Optional[BaseException]]]" = (
            queue.Queue()
        )
        self._closed = threading.Event()
        sock.settimeout(_POLL_INTERVAL)
        self._acceptor = threading.Thread(target=self._accept_loop, name="uapi-accept", daemon=True)
        self._watcher = threading.Thread(target=self._watch_loop, name="uapi-watch", daemon=True)
        self._watcher.start()
        self._acceptor.start()

    def __enter__(self) -> "UAPIListener":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _accept_loop(self) -> None:
        while True:
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                if self._closed.is_set():
                    self._events.put((None, ListenerClosedError()))
                    return
                continue
            except OSError as err:
                failure = ListenerClosedError() if self._closed.is_set() else err
                self._events.put((None, failure))
                return
            conn.setblocking(True)
            self._events.put((conn, None))

    def _watch_loop(self) -> None:
        while True:
            if not os.path.lexists(self._path):
                if not self._closed.is_set():
                    self._events.put(
                        (None, FileNotFoundError(errno.ENOENT, "socket removed", self._path))
                    )
                return
            if self._closed.wait(_POLL_INTERVAL):
                return

    def accept(self) -> socket.socket:
        """Wait for and return the next connection, or raise the error that ended listening."""
        if self._closed.is_set() and self._events.empty():
            raise ListenerClosedError()
        conn, err = self._events.get()
        if err is not None:
            raise err
        assert conn is not None
        return conn

    def close(self) -> None:
        """Stop listening and remove the socket file."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._sock.close()
        try:
            os.remove(self._path)
        except FileNotFoundError:
            pass

    def addr(self) -> str:
        """Return the path the listener is bound to."""
        return self._path


def uapi_listen(
    name: str, sock: socket.socket, socket_directory: str = SOCKET_DIRECTORY
) -> UAPIListener:
    """Wrap the listening socket ``sock`` for interface ``name`` in a :class:`UAPIListener`."""
    return UAPIListener(sock, sock_path(name, socket_directory))