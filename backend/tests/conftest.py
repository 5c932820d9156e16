"""
Shared test fixtures.

Nothing here touches the network beyond 127.0.0.1: DNS, ssh-keyscan and
paramiko are replaced with mocks where a test needs them, and the probe's
socket path is driven by a loopback fake SSH server.
"""

import base64
import socket
import threading

import pytest

from sshscan.scanner import wire
from sshscan.scanner.base import NegotiationRecord

MODERN_KEX = ["curve25519-sha256", "diffie-hellman-group14-sha256"]
MODERN_HOST_KEY = ["ssh-ed25519", "rsa-sha2-512"]
MODERN_CIPHERS = ["chacha20-poly1305@openssh.com", "aes256-gcm@openssh.com"]
MODERN_MACS = ["hmac-sha2-512-etm@openssh.com", "hmac-sha2-256-etm@openssh.com"]


def key_blob(algorithm: str, body: bytes = b"\x01" * 32) -> bytes:
    """A syntactically valid public key blob: string(algorithm) + string(body)."""
    return wire.encode_string(algorithm.encode("ascii")) + wire.encode_string(body)


def keyscan_line(host: str, algorithm: str, body: bytes = b"\x01" * 32) -> str:
    material = base64.b64encode(key_blob(algorithm, body)).decode("ascii")
    return f"{host} {algorithm} {material}"


def server_kexinit(
    kex=None,
    host_key=None,
    ciphers=None,
    macs=None,
    compression=None,
    first_kex_follows=False,
) -> bytes:
    """KEXINIT payload as a server would send it, with a fixed cookie."""
    ciphers = ciphers or MODERN_CIPHERS
    macs = macs or MODERN_MACS
    compression = compression or ["none", "zlib@openssh.com"]
    return b"".join([
        bytes([wire.MSG_KEXINIT]),
        bytes(range(16)),
        wire.encode_name_list(kex or MODERN_KEX),
        wire.encode_name_list(host_key or MODERN_HOST_KEY),
        wire.encode_name_list(ciphers),
        wire.encode_name_list(ciphers),
        wire.encode_name_list(macs),
        wire.encode_name_list(macs),
        wire.encode_name_list(compression),
        wire.encode_name_list(compression),
        wire.encode_name_list([]),
        wire.encode_name_list([]),
        b"\x01" if first_kex_follows else b"\x00",
        wire.encode_uint32(0),
    ])


def disconnect_payload(code: int, description: str) -> bytes:
    return (
        bytes([wire.MSG_DISCONNECT])
        + wire.encode_uint32(code)
        + wire.encode_string(description.encode("utf-8"))
        + wire.encode_string(b"")
    )


def make_record(**overrides) -> NegotiationRecord:
    """A complete NegotiationRecord for a modern OpenSSH server."""
    fields = dict(
        key_exchange=list(MODERN_KEX),
        host_key=list(MODERN_HOST_KEY),
        encryption_c2s=list(MODERN_CIPHERS),
        encryption_s2c=list(MODERN_CIPHERS),
        mac_c2s=list(MODERN_MACS),
        mac_s2c=list(MODERN_MACS),
        compression_c2s=["none"],
        compression_s2c=["none"],
        allowed_auth_methods={"publickey"},
        server_banner="SSH-2.0-OpenSSH_9.6p1 Ubuntu-3ubuntu13",
        ssh_version="2.0",
        server_software="OpenSSH_9.6p1",
    )
    fields.update(overrides)
    return NegotiationRecord(**fields)


@pytest.fixture
def record():
    return make_record()


@pytest.fixture
def modern_policy_doc():
    return {
        "name": "modern",
        "categories": {
            "keyExchange": {
                "acceptable": ["curve25519-sha256", "diffie-hellman-group14-sha256"],
                "required": ["curve25519-sha256"],
            },
            "hostKey": {"acceptable": ["ssh-ed25519", "rsa-sha2-512", "rsa-sha2-256"]},
            "encryption": {"acceptable": list(MODERN_CIPHERS) + ["aes128-gcm@openssh.com"]},
            "mac": {"acceptable": list(MODERN_MACS)},
            "compression": {"acceptable": ["none", "zlib@openssh.com"]},
            "auth": {"acceptable": ["publickey"]},
        },
    }


class FakeSSHServer:
    """
    Loopback TCP server. Every accepted connection is handed to `handler(conn)`
    on the server thread; the connection is closed when the handler returns.
    """

    def __init__(self, handler):
        self.handler = handler
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(8)
        self._listener.settimeout(0.2)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self.connections = 0

    @property
    def address(self):
        return self._listener.getsockname()

    def start(self):
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()
        self._thread.join(timeout=5)
        self._listener.close()

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            self.connections += 1
            conn.settimeout(2)
            try:
                self.handler(conn)
            except OSError:
                pass
            finally:
                conn.close()


def drain(conn):
    """Read until the client closes, so closing our end never resets unread data."""
    try:
        while conn.recv(4096):
            pass
    except OSError:
        pass


@pytest.fixture
def fake_ssh_server():
    servers = []

    def start(handler):
        server = FakeSSHServer(handler).start()
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.stop()


@pytest.fixture
def openssh_handler():
    """Handler that behaves like OpenSSH up to (and including) its KEXINIT."""

    def handler(conn):
        conn.sendall(b"SSH-2.0-OpenSSH_9.6p1 Ubuntu-3ubuntu13\r\n")
        conn.sendall(wire.build_packet(server_kexinit()))
        drain(conn)

    return handler


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def app():
    from sshscan import create_app
    from sshscan.config import ScanConfig

    app = create_app(
        {"TESTING": True},
        scan_config=ScanConfig(fingerprint_db="sqlite:///:memory:"),
    )
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()
