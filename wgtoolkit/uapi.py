"""Text configuration protocol: the "get" and "set" operations on a device configuration."""

from __future__ import annotations

import io
import ipaddress
import json
import logging
import string
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from wgtoolkit.ipc import (
    IPC_ERROR_INVALID,
    IPC_ERROR_IO,
    IPC_ERROR_PROTOCOL,
    IPC_ERROR_UNKNOWN,
)

KEY_SIZE = 32
_ZERO_KEY = bytes(KEY_SIZE)
_NS_PER_SECOND = 1_000_000_000

_log = logging.getLogger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class IPCError(Exception):
    """A configuration protocol failure carrying the errno reported to the client."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"IPC error {self.code}: {self.message}"


@dataclass
class PeerConfig:
    """Configuration and counters of one peer."""

    public_key: bytes
    preshared_key: bytes = _ZERO_KEY
    endpoint: Optional[str] = None
    persistent_keepalive_interval: int = 0
    allowed_ips: list[Network] = field(default_factory=list)
    last_handshake_nanos: int = 0
    tx_bytes: int = 0
    rx_bytes: int = 0
    disable_roaming: bool = False


@dataclass
class _PeerSession:
    """State of a "set" operation on the peer currently being configured."""

    peer: Optional[PeerConfig] = None
    dummy: bool = False
    created: bool = False
    keepalive_turned_on: bool = False


# --- X25519 (RFC 7748) for deriving the device public key ---------------------

_P = 2**255 - 19
_A24 = 121665


def _x25519(scalar: bytes, u_point: bytes) -> bytes:
    k = bytearray(scalar)
    k[0] &= 248
    k[31] &= 127
    k[31] |= 64
    n = int.from_bytes(k, "little")
    x1 = int.from_bytes(u_point, "little") & ((1 << 255) - 1)
    x2, z2, x3, z3 = 1, 0, x1, 1
    swap = 0
    for t in reversed(range(255)):
        bit = (n >> t) & 1
        swap ^= bit
        if swap:
            x2, x3 = x3, x2
            z2, z3 = z3, z2
        swap = bit
        a = x2 + z2
        aa = a * a
        b = x2 - z2
        bb = b * b
        e = aa - bb
        c = x3 + z3
        d = x3 - z3
        da = d * a
        cb = c * b
        x3 = (da + cb) ** 2 % _P
        z3 = x1 * (da - cb) ** 2 % _P
        x2 = aa * bb % _P
        z2 = e * (aa + _A24 * e) % _P
    if swap:
        x2, x3 = x3, x2
        z2, z3 = z3, z2
    return (x2 * pow(z2, _P - 2, _P) % _P).to_bytes(KEY_SIZE, "little")


_BASE_POINT = (9).to_bytes(KEY_SIZE, "little")


# --- parsing helpers -----------------------------------------------------------


def _parse_key(value: str) -> bytes:
    if len(value) != 2 * KEY_SIZE or any(c not in string.hexdigits for c in value):
        raise ValueError("invalid hex key")
    return bytes.fromhex(value)


def _parse_uint(value: str, bits: int) -> int:
    if not value or any(c not in string.digits for c in value):
        raise ValueError(f"parsing {json.dumps(value)}: invalid syntax")
    number = int(value)
    if number >= 1 << bits:
        raise ValueError(f"parsing {json.dumps(value)}: value out of range")
    return number


def _parse_endpoint(value: str) -> str:
    host, sep, port_text = value.rpartition(":")
    if not sep:
        raise ValueError(f"invalid endpoint {json.dumps(value)}: missing port")
    port = _parse_uint(port_text, 16)
    if host.startswith("[") and host.endswith("]"):
        address = ipaddress.ip_address(host[1:-1])
        if address.version != 6:
            raise ValueError(f"invalid endpoint {json.dumps(value)}: brackets around IPv4")
        return f"[{address}]:{port}"
    address = ipaddress.ip_address(host)
    if address.version != 4:
        raise ValueError(f"invalid endpoint {json.dumps(value)}: IPv6 without brackets")
    return f"{address}:{port}"


def _parse_prefix(value: str) -> Network:
    if "/" not in value:
        raise ValueError(f"netip.ParsePrefix({json.dumps(value)}): no '/'")
    return ipaddress.ip_network(value, strict=False)


def _to_str(data: Any) -> str:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data).decode("utf-8", errors="replace")
    return data


def _write(writer: Any, text: str) -> None:
    if isinstance(writer, io.TextIOBase):
        writer.write(text)
    else:
        writer.write(text.encode())


# --- configuration -------------------------------------------------------------


class Configuration:
    """Device configuration that is read and changed through the text protocol."""

    def __init__(self, *, broken_roaming: bool = False) -> None:
        self._lock = threading.RLock()
        self.private_key: bytes = _ZERO_KEY
        self.listen_port = 0
        self.fwmark = 0
        self.broken_roaming = broken_roaming
        self.peers: dict[bytes, PeerConfig] = {}

    @property
    def public_key(self) -> Optional[bytes]:
        """The public key matching the private key, or None if no key is set."""
        if self.private_key == _ZERO_KEY:
            return None
        return _x25519(self.private_key, _BASE_POINT)

    # get

    def _render(self) -> str:
        lines: list[str] = []
        if self.private_key != _ZERO_KEY:
            lines.append(f"private_key={self.private_key.hex()}")
        if self.listen_port:
            lines.append(f"listen_port={self.listen_port}")
        if self.fwmark:
            lines.append(f"fwmark={self.fwmark}")
        for peer in self.peers.values():
            lines.append(f"public_key={peer.public_key.hex()}")
            lines.append(f"preshared_key={peer.preshared_key.hex()}")
            lines.append("protocol_version=1")
            if peer.endpoint is not None:
                lines.append(f"endpoint={peer.endpoint}")
            secs, nanos = divmod(peer.last_handshake_nanos, _NS_PER_SECOND)
            lines.append(f"last_handshake_time_sec={secs}")
            lines.append(f"last_handshake_time_nsec={nanos}")
            lines.append(f"tx_bytes={peer.tx_bytes}")
            lines.append(f"rx_bytes={peer.rx_bytes}")
            lines.append(f"persistent_keepalive_interval={peer.persistent_keepalive_interval}")
            lines.extend(f"allowed_ip={prefix}" for prefix in peer.allowed_ips)
        return "".join(line + "\n" for line in lines)

    def ipc_get_operation(self, writer: Any) -> None:
        """Write the configuration to ``writer`` in protocol form."""
        with self._lock:
            text = self._render()
        try:
            _write(writer, text)
        except OSError as err:
            raise IPCError(IPC_ERROR_IO, f"failed to write output: {err}") from err

    def ipc_get(self) -> str:
        """Return the configuration in protocol form."""
        buffer = io.StringIO()
        self.ipc_get_operation(buffer)
        return buffer.getvalue()

    # set

    def ipc_set_operation(self, reader: Any) -> None:
        """Apply "key=value" lines from ``reader`` up to a blank line or the end."""
        with self._lock:
            try:
                self._apply(reader)
            except IPCError as err:
                _log.error("%s", err)
                raise

    def ipc_set(self, text: str) -> None:
        """Apply a configuration given as protocol text."""
        self.ipc_set_operation(io.StringIO(text))

    def _apply(self, reader: Any) -> None:
        session = _PeerSession()
        device_config = True
        while True:
            try:
                raw = _to_str(reader.readline())
            except OSError as err:
                raise IPCError(IPC_ERROR_IO, f"failed to read input: {err}") from err
            if not raw:
                break
            line = raw[:-1] if raw.endswith("\n") else raw
            if line.endswith("\r"):
                line = line[:-1]
            if line == "":
                self._post_config(session)
                return
            key, sep, value = line.partition("=")
            if not sep:
                raise IPCError(IPC_ERROR_PROTOCOL, f"failed to parse line {json.dumps(line)}")
            if key == "public_key":
                device_config = False
                self._post_config(session)
                session = self._select_peer(value)
                continue
            if device_config:
                self._device_line(key, value)
            else:
                self._peer_line(session, key, value)
        self._post_config(session)

    def _post_config(self, session: _PeerSession) -> None:
        if session.peer is None or session.dummy:
            return
        if session.created:
            session.peer.disable_roaming = (
                self.broken_roaming and session.peer.endpoint is not None
            )

    def _device_line(self, key: str, value: str) -> None:
        if key == "private_key":
            try:
                private_key = _parse_key(value)
            except ValueError as err:
                raise IPCError(IPC_ERROR_INVALID, f"failed to set private_key: {err}") from err
            _log.debug("UAPI: Updating private key")
            self.private_key = private_key
        elif key == "listen_port":
            try:
                port = _parse_uint(value, 16)
            except ValueError as err:
                raise IPCError(IPC_ERROR_INVALID, f"failed to parse listen_port: {err}") from err
            _log.debug("UAPI: Updating listen port")
            self.listen_port = port
        elif key == "fwmark":
            try:
                mark = _parse_uint(value, 32)
            except ValueError as err:
                raise IPCError(IPC_ERROR_INVALID, f"invalid fwmark: {err}") from err
            _log.debug("UAPI: Updating fwmark")
            self.fwmark = mark
        elif key == "replace_peers":
            if value != "true":
                raise IPCError(
                    IPC_ERROR_INVALID, f"failed to set replace_peers, invalid value: {value}"
                )
            _log.debug("UAPI: Removing all peers")
            self.peers.clear()
        else:
            raise IPCError(IPC_ERROR_INVALID, f"invalid UAPI device key: {key}")

    def _select_peer(self, value: str) -> _PeerSession:
        try:
            public_key = _parse_key(value)
        except ValueError as err:
            raise IPCError(
                IPC_ERROR_INVALID, f"failed to get peer by public key: {err}"
            ) from err
        if public_key == self.public_key:
            return _PeerSession(peer=PeerConfig(public_key), dummy=True)
        peer = self.peers.get(public_key)
        created = peer is None
        if peer is None:
            peer = PeerConfig(public_key)
            self.peers[public_key] = peer
            _log.debug("peer %s - UAPI: Created", public_key.hex())
        return _PeerSession(peer=peer, created=created)

    def _make_dummy(self, session: _PeerSession) -> None:
        assert session.peer is not None
        session.peer = PeerConfig(session.peer.public_key)
        session.dummy = True

    def _peer_line(self, session: _PeerSession, key: str, value: str) -> None:
        peer = session.peer
        assert peer is not None
        if key == "update_only":
            if value != "true":
                raise IPCError(
                    IPC_ERROR_INVALID, f"failed to set update only, invalid value: {value}"
                )
            if session.created and not session.dummy:
                self.peers.pop(peer.public_key, None)
                self._make_dummy(session)
        elif key == "remove":
            if value != "true":
                raise IPCError(IPC_ERROR_INVALID, f"failed to set remove, invalid value: {value}")
            if not session.dummy:
                _log.debug("peer %s - UAPI: Removing", peer.public_key.hex())
                self.peers.pop(peer.public_key, None)
            self._make_dummy(session)
        elif key == "preshared_key":
            try:
                peer.preshared_key = _parse_key(value)
            except ValueError as err:
                raise IPCError(IPC_ERROR_INVALID, f"failed to set preshared key: {err}") from err
        elif key == "endpoint":
            try:
                peer.endpoint = _parse_endpoint(value)
            except ValueError as err:
                raise IPCError(
                    IPC_ERROR_INVALID, f"failed to set endpoint {value}: {err}"
                ) from err
        elif key == "persistent_keepalive_interval":
            try:
                secs = _parse_uint(value, 16)
            except ValueError as err:
                raise IPCError(
                    IPC_ERROR_INVALID, f"failed to set persistent keepalive interval: {err}"
                ) from err
            old = peer.persistent_keepalive_interval
            peer.persistent_keepalive_interval = secs
            session.keepalive_turned_on = old == 0 and secs != 0
        elif key == "replace_allowed_ips":
            if value != "true":
                raise IPCError(
                    IPC_ERROR_INVALID, f"failed to replace allowedips, invalid value: {value}"
                )
            if not session.dummy:
                peer.allowed_ips.clear()
        elif key == "allowed_ip":
            try:
                prefix = _parse_prefix(value)
            except ValueError as err:
                raise IPCError(IPC_ERROR_INVALID, f"failed to set allowed ip: {err}") from err
            if not session.dummy:
                self._insert_allowed_ip(prefix, peer)
        elif key == "protocol_version":
            if value != "1":
                raise IPCError(IPC_ERROR_INVALID, f"invalid protocol version: {value}")
        else:
            raise IPCError(IPC_ERROR_INVALID, f"invalid UAPI peer key: {key}")

    def _insert_allowed_ip(self, prefix: Network, owner: PeerConfig) -> None:
        for other in self.peers.values():
            if other is not owner and prefix in other.allowed_ips:
                other.allowed_ips.remove(prefix)
        if prefix not in owner.allowed_ips:
            owner.allowed_ips.append(prefix)

    # connection handling

    def ipc_handle(self, stream: Any) -> None:
        """Serve "get=1" and "set=1" requests from ``stream`` until it ends, then close it."""
        try:
            while True:
                op = _to_str(stream.readline())
                if not op.endswith("\n"):
                    return
                err: Optional[BaseException] = None
                if op == "set=1\n":
                    err = self._capture(lambda: self.ipc_set_operation(stream))
                elif op == "get=1\n":
                    next_char = _to_str(stream.read(1))
                    if not next_char:
                        return
                    if next_char != "\n":
                        err = IPCError(
                            IPC_ERROR_INVALID,
                            f"trailing character in UAPI get: {next_char!r}",
                        )
                    else:
                        err = self._capture(lambda: self.ipc_get_operation(stream))
                else:
                    _log.error("invalid UAPI operation: %s", op)
                    return

                if err is None:
                    code = 0
                else:
                    status = (
                        err
                        if isinstance(err, IPCError)
                        else IPCError(IPC_ERROR_UNKNOWN, f"other UAPI error: {err}")
                    )
                    _log.error("%s", status)
                    code = status.code
                _write(stream, f"errno={code}\n\n")
                stream.flush()
        except OSError:
            return
        finally:
            stream.close()

    @staticmethod
    def _capture(action: Callable[[], None]) -> Optional[BaseException]:
        try:
            action()
        except Exception as err:  # reported to the client as an errno
            return err
        return None