import io
import ipaddress

import pytest

from wgtoolkit.ipc import IPC_ERROR_INVALID, IPC_ERROR_PROTOCOL
from wgtoolkit.uapi import Configuration, IPCError, PeerConfig

PEER_A = "01" * 32
PEER_B = "02" * 32
PSK = "03" * 32
ZERO = "00" * 32

RFC_PRIVATE = "77076d0a7318a57d3c16c17251b26645df4c2f87ebc0992ab177fba51db92c2a"
RFC_PUBLIC = "8520f0098930a754748b7ddcb43ef75a0dbf3a0d26381af4eba4a98eaa9b4e6a"


class _Duplex:
    def __init__(self, data: bytes) -> None:
        self._in = io.BytesIO(data)
        self.out = io.BytesIO()
        self.closed = False

    def readline(self):
        return self._in.readline()

    def read(self, size):
        return self._in.read(size)

    def write(self, data):
        return self.out.write(data)

    def flush(self):
        pass

    def close(self):
        self.closed = True


def test_round_trip_full_configuration():
    config = Configuration()
    config.ipc_set(
        f"private_key={RFC_PRIVATE}\n"
        "listen_port=51820\n"
        "fwmark=7\n"
        f"public_key={PEER_A}\n"
        f"preshared_key={PSK}\n"
        "endpoint=192.0.2.1:51820\n"
        "persistent_keepalive_interval=25\n"
        "allowed_ip=10.0.0.0/24\n"
        "allowed_ip=fd00::/64\n"
    )
    expected = (
        f"private_key={RFC_PRIVATE}\n"
        "listen_port=51820\n"
        "fwmark=7\n"
        f"public_key={PEER_A}\n"
        f"preshared_key={PSK}\n"
        "protocol_version=1\n"
        "endpoint=192.0.2.1:51820\n"
        "last_handshake_time_sec=0\n"
        "last_handshake_time_nsec=0\n"
        "tx_bytes=0\n"
        "rx_bytes=0\n"
        "persistent_keepalive_interval=25\n"
        "allowed_ip=10.0.0.0/24\n"
        "allowed_ip=fd00::/64\n"
    )
    assert config.ipc_get() == expected


def test_empty_configuration_renders_nothing():
    assert Configuration().ipc_get() == ""


def test_public_key_derived_from_private_key():
    config = Configuration()
    config.ipc_set(f"private_key={RFC_PRIVATE}\n")
    assert config.public_key == bytes.fromhex(RFC_PUBLIC)


def test_peer_with_own_public_key_is_ignored():
    config = Configuration()
    config.ipc_set(
        f"private_key={RFC_PRIVATE}\npublic_key={RFC_PUBLIC}\nallowed_ip=10.0.0.0/8\n"
    )
    assert config.peers == {}


def test_blank_line_ends_operation():
    config = Configuration()
    config.ipc_set(f"public_key={PEER_A}\n\npublic_key={PEER_B}\n")
    assert list(config.peers) == [bytes.fromhex(PEER_A)]


def test_line_without_equals_is_protocol_error():
    with pytest.raises(IPCError) as info:
        Configuration().ipc_set("garbage\n")
    assert info.value.code == IPC_ERROR_PROTOCOL


@pytest.mark.parametrize(
    "text",
    [
        "bogus=1\n",
        "listen_port=65536\n",
        "listen_port=+5\n",
        "fwmark=-1\n",
        "replace_peers=false\n",
        "private_key=abcd\n",
        "public_key=zz\n",
        f"public_key={PEER_A}\nprotocol_version=2\n",
        f"public_key={PEER_A}\nallowed_ip=10.0.0.1\n",
        f"public_key={PEER_A}\nendpoint=::1:51820\n",
        f"public_key={PEER_A}\nremove=yes\n",
        f"public_key={PEER_A}\nunknown=1\n",
    ],
)
def test_invalid_values_raise_invalid(text):
    with pytest.raises(IPCError) as info:
        Configuration().ipc_set(text)
    assert info.value.code == IPC_ERROR_INVALID


def test_error_message_format():
    err = IPCError(-22, "bad thing")
    assert str(err) == "IPC error -22: bad thing"


def test_replace_peers_removes_everything():
    config = Configuration()
    config.ipc_set(f"public_key={PEER_A}\npublic_key={PEER_B}\n")
    assert len(config.peers) == 2
    config.ipc_set("replace_peers=true\n")
    assert config.peers == {}


def test_remove_peer():
    config = Configuration()
    config.ipc_set(f"public_key={PEER_A}\npublic_key={PEER_B}\n")
    config.ipc_set(f"public_key={PEER_A}\nremove=true\nallowed_ip=10.0.0.0/8\n")
    assert list(config.peers) == [bytes.fromhex(PEER_B)]


def test_update_only_does_not_create():
    config = Configuration()
    config.ipc_set(f"public_key={PEER_A}\nupdate_only=true\nallowed_ip=10.0.0.0/8\n")
    assert config.peers == {}


def test_update_only_keeps_existing_peer():
    config = Configuration()
    config.ipc_set(f"public_key={PEER_A}\n")
    config.ipc_set(f"public_key={PEER_A}\nupdate_only=true\npersistent_keepalive_interval=5\n")
    assert config.peers[bytes.fromhex(PEER_A)].persistent_keepalive_interval == 5


def test_allowed_ip_moves_between_peers():
    config = Configuration()
    config.ipc_set(f"public_key={PEER_A}\nallowed_ip=10.0.0.0/24\n")
    config.ipc_set(f"public_key={PEER_B}\nallowed_ip=10.0.0.0/24\n")
    net = ipaddress.ip_network("10.0.0.0/24")
    assert config.peers[bytes.fromhex(PEER_A)].allowed_ips == []
    assert config.peers[bytes.fromhex(PEER_B)].allowed_ips == [net]


def test_replace_allowed_ips():
    config = Configuration()
    config.ipc_set(f"public_key={PEER_A}\nallowed_ip=10.0.0.0/24\n")
    config.ipc_set(f"public_key={PEER_A}\nreplace_allowed_ips=true\nallowed_ip=fd00::/64\n")
    assert config.peers[bytes.fromhex(PEER_A)].allowed_ips == [ipaddress.ip_network("fd00::/64")]


def test_ipv6_endpoint_is_bracketed():
    config = Configuration()
    config.ipc_set(f"public_key={PEER_A}\nendpoint=[2001:db8::1]:51820\n")
    assert config.peers[bytes.fromhex(PEER_A)].endpoint == "[2001:db8::1]:51820"


def test_broken_roaming_disables_roaming_for_new_peer_with_endpoint():
    config = Configuration(broken_roaming=True)
    config.ipc_set(f"public_key={PEER_A}\nendpoint=192.0.2.1:1\n")
    assert config.peers[bytes.fromhex(PEER_A)].disable_roaming is True


def test_last_handshake_split_into_seconds_and_nanoseconds():
    config = Configuration()
    config.peers[bytes.fromhex(PEER_A)] = PeerConfig(
        bytes.fromhex(PEER_A), last_handshake_nanos=3_000_000_005
    )
    text = config.ipc_get()
    assert "last_handshake_time_sec=3\n" in text
    assert "last_handshake_time_nsec=5\n" in text
    assert f"preshared_key={ZERO}\n" in text


def test_get_operation_writes_bytes_to_binary_writer():
    config = Configuration()
    config.ipc_set("listen_port=51820\n")
    buffer = io.BytesIO()
    config.ipc_get_operation(buffer)
    assert buffer.getvalue() == b"listen_port=51820\n"


def test_handle_get_request():
    config = Configuration()
    config.ipc_set("fwmark=7\n")
    stream = _Duplex(b"get=1\n\n")
    config.ipc_handle(stream)
    assert stream.out.getvalue() == b"fwmark=7\nerrno=0\n\n"
    assert stream.closed


def test_handle_set_request_then_get():
    config = Configuration()
    stream = _Duplex(b"set=1\nlisten_port=51820\n\nget=1\n\n")
    config.ipc_handle(stream)
    assert stream.out.getvalue() == b"errno=0\n\nlisten_port=51820\nerrno=0\n\n"
    assert config.listen_port == 51820


def test_handle_set_error_reports_errno():
    config = Configuration()
    stream = _Duplex(b"set=1\nlisten_port=x\n\n")
    config.ipc_handle(stream)
    assert stream.out.getvalue().startswith(f"errno={IPC_ERROR_INVALID}\n\n".encode())


def test_handle_get_with_trailing_character():
    stream = _Duplex(b"get=1\nx")
    Configuration().ipc_handle(stream)
    assert stream.out.getvalue() == f"errno={IPC_ERROR_INVALID}\n\n".encode()


def test_handle_unknown_operation_writes_nothing():
    stream = _Duplex(b"hello\n")
    Configuration().ipc_handle(stream)
    assert stream.out.getvalue() == b""
    assert stream.closed