# sshscan/scanner/engines/ssh_engine.py
"""
SSH handshake probe engine.

Performs only the unauthenticated prefix of the SSH transport handshake:

    1. connect               TCP connection with a per-connection timeout
    2. exchange_versions     read the server banner, send ours
    3. negotiate_algorithms  send a client KEXINIT, read the server KEXINIT and
                             record every offered list verbatim
    4. probe_auth_methods    separate paramiko session, "none" userauth request
                             with a throwaway username; the rejection lists the
                             methods the server accepts
    5. close                 always, however the steps above ended

The probe records what the server OFFERS. It never selects algorithms itself,
since selection would hide weaker options the server is still willing to use.
It never sends key-exchange material, credentials, or channel requests.

What this engine does NOT do:
    - Judge the offered algorithms (that's the compliance analyzer's job)
    - Collect host public keys (that's the host key engine's job)

Output (returned by SSHEngine.run):
    NegotiationRecord with the eight algorithm categories, languages,
    banners, and allowed_auth_methods.

Errors:
    ConnectTimeout, ConnectionRefused, Disconnected, NegotiationFailed,
    BannerError  → per-host, recorded by the orchestrator
    ProtocolError → malformed packets or unexpected paramiko failures, propagates
"""

from __future__ import annotations

import contextlib
import logging
import socket
from typing import Iterator, Optional

import paramiko
from paramiko.ssh_exception import IncompatiblePeer

from sshscan.config import DEFAULT_AUTH_USERNAME, DEFAULT_CLIENT_BANNER, DEFAULT_TIMEOUT
from sshscan.scanner import wire
from sshscan.scanner.base import BaseEngine, NegotiationRecord
from sshscan.scanner.errors import (
    BannerError,
    ConnectionRefused,
    ConnectTimeout,
    Disconnected,
    NegotiationFailed,
    ProtocolError,
)

logger = logging.getLogger(__name__)


# RFC 4253 §4.2: servers may send other lines before the version line.
MAX_PRE_BANNER_LINES = 20
MAX_BANNER_LENGTH = 1024
SUPPORTED_SSH_VERSIONS = ("2.0", "1.99")

# Packets we are willing to skip while waiting for the server KEXINIT.
MAX_PACKETS_BEFORE_KEXINIT = 16

# Broad client offer. The server's KEXINIT does not depend on it, but some
# servers hold theirs back until they have seen the peer's.
CLIENT_KEX = [
    "curve25519-sha256", "curve25519-sha256@libssh.org",
    "sntrup761x25519-sha512@openssh.com", "mlkem768x25519-sha256",
    "ecdh-sha2-nistp256", "ecdh-sha2-nistp384", "ecdh-sha2-nistp521",
    "diffie-hellman-group-exchange-sha256", "diffie-hellman-group16-sha512",
    "diffie-hellman-group18-sha512", "diffie-hellman-group14-sha256",
    "diffie-hellman-group14-sha1", "diffie-hellman-group-exchange-sha1",
    "diffie-hellman-group1-sha1",
]
CLIENT_HOST_KEY = [
    "ssh-ed25519", "ecdsa-sha2-nistp256", "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521", "rsa-sha2-512", "rsa-sha2-256", "ssh-rsa", "ssh-dss",
]
CLIENT_CIPHERS = [
    "chacha20-poly1305@openssh.com", "aes256-gcm@openssh.com",
    "aes128-gcm@openssh.com", "aes256-ctr", "aes192-ctr", "aes128-ctr",
    "aes256-cbc", "aes192-cbc", "aes128-cbc", "3des-cbc",
    "blowfish-cbc", "cast128-cbc", "arcfour256", "arcfour128", "arcfour",
]
CLIENT_MACS = [
    "hmac-sha2-512-etm@openssh.com", "hmac-sha2-256-etm@openssh.com",
    "umac-128-etm@openssh.com", "hmac-sha2-512", "hmac-sha2-256",
    "umac-128@openssh.com", "umac-64@openssh.com", "hmac-sha1",
    "hmac-sha1-96", "hmac-md5", "hmac-md5-96",
]
CLIENT_COMPRESSION = ["none", "zlib@openssh.com", "zlib"]

# paramiko reports these remote conditions as plain SSHException.
_DISCONNECT_MESSAGES = (
    "Error reading SSH protocol banner",
    "No existing session",
    "Server connection dropped",
)
_TIMEOUT_MESSAGES = (
    "Negotiation timed out",
    "Authentication timeout",
)


def parse_banner(banner: str) -> tuple[str, str]:
    """
    Split "SSH-protoversion-softwareversion [comments]".
    Returns (protoversion, softwareversion).
    """
    parts = banner.split("-", 2)
    if len(parts) < 3 or parts[0] != "SSH" or not parts[1] or not parts[2]:
        raise BannerError("malformed SSH version banner", banner=banner)
    software = parts[2].split(" ", 1)[0]
    return parts[1], software


class SSHProbe:
    """
    One probe of one (address, port). Use as a context manager so close()
    runs however the handshake ends:

        with SSHProbe("192.0.2.10", 22, timeout=3) as probe:
            probe.connect()
            probe.exchange_versions()
            probe.negotiate_algorithms()
            probe.probe_auth_methods()
        record = probe.record
    """

    def __init__(
        self,
        address: str,
        port: int,
        timeout: float = DEFAULT_TIMEOUT,
        client_banner: str = DEFAULT_CLIENT_BANNER,
        auth_username: str = DEFAULT_AUTH_USERNAME,
    ):
        self.address = address
        self.port = port
        self.timeout = timeout
        self.client_banner = client_banner
        self.auth_username = auth_username
        self.record = NegotiationRecord()
        self._sock: Optional[socket.socket] = None
        self._rfile = None

    @property
    def endpoint(self) -> str:
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"

    def __enter__(self) -> "SSHProbe":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------

    def connect(self) -> None:
        with self._socket_errors("connect"):
            self._sock = socket.create_connection(
                (self.address, self.port), timeout=self.timeout
            )
            self._sock.settimeout(self.timeout)
            self._rfile = self._sock.makefile("rb")

    def exchange_versions(self) -> None:
        with self._socket_errors("version exchange"):
            banner = self._read_banner()
            self.record.server_banner = banner
            version, software = parse_banner(banner)
            self.record.ssh_version = version
            self.record.server_software = software
            if version not in SUPPORTED_SSH_VERSIONS:
                raise BannerError(
                    f"SSH protocol version {version} is not supported",
                    self.endpoint,
                    banner=banner,
                )
            self._sock.sendall(self.client_banner.encode("ascii") + b"\r\n")
            self.record.client_banner = self.client_banner

    def negotiate_algorithms(self) -> None:
        kexinit = wire.build_kexinit(
            CLIENT_KEX, CLIENT_HOST_KEY, CLIENT_CIPHERS, CLIENT_MACS, CLIENT_COMPRESSION
        )
        with self._socket_errors("algorithm negotiation"):
            self._sock.sendall(wire.build_packet(kexinit))

            for _ in range(MAX_PACKETS_BEFORE_KEXINIT):
                payload = self._read_packet()
                msg_type = payload[0]

                if msg_type == wire.MSG_KEXINIT:
                    wire.parse_kexinit(payload, self.record)
                    return
                if msg_type in (wire.MSG_IGNORE, wire.MSG_DEBUG):
                    continue
                if msg_type == wire.MSG_DISCONNECT:
                    code, description = wire.parse_disconnect(payload)
                    if code == wire.DISCONNECT_KEY_EXCHANGE_FAILED:
                        raise NegotiationFailed(
                            f"server disconnected during key exchange: {description}",
                            self.endpoint,
                        )
                    raise Disconnected(
                        f"server disconnected (reason {code}): {description}",
                        self.endpoint,
                    )
                raise ProtocolError(
                    f"unexpected message type {msg_type} before KEXINIT", self.endpoint
                )

        raise ProtocolError(
            f"no KEXINIT within {MAX_PACKETS_BEFORE_KEXINIT} packets", self.endpoint
        )

    def probe_auth_methods(self) -> None:
        """
        Ask for "none" authentication on a fresh paramiko session and keep the
        method list from the server's rejection. No credentials are ever sent.
        """
        sock = None
        transport = None
        try:
            with self._socket_errors("auth method query"):
                sock = socket.create_connection(
                    (self.address, self.port), timeout=self.timeout
                )
                transport = paramiko.Transport(sock)
                transport.local_version = self.client_banner
                transport.banner_timeout = self.timeout
                transport.handshake_timeout = self.timeout
                transport.auth_timeout = self.timeout
                self.record.allowed_auth_methods = self._auth_none(transport)
        finally:
            if transport is not None:
                transport.close()
            elif sock is not None:
                sock.close()

    def close(self) -> None:
        if self._rfile is not None:
            self._rfile.close()
            self._rfile = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _auth_none(self, transport: paramiko.Transport) -> set:
        try:
            transport.start_client(timeout=self.timeout)
            # start_client can return before the transport thread records a
            # failed algorithm match.
            self._raise_negotiation_failure(transport)
            remaining = transport.auth_none(self.auth_username)
            logger.info("%s accepted 'none' authentication", self.endpoint)
            return {"none", *(remaining or [])}
        except paramiko.BadAuthenticationType as e:
            return set(e.allowed_types)
        except paramiko.AuthenticationException as e:
            logger.debug("%s rejected 'none' without a method list: %s", self.endpoint, e)
            return set()
        except IncompatiblePeer as e:
            raise NegotiationFailed(
                f"could not settle on an algorithm: {e}", self.endpoint
            ) from e
        except paramiko.SSHException as e:
            self._raise_negotiation_failure(transport)
            message = str(e)
            if message.startswith(_TIMEOUT_MESSAGES):
                raise ConnectTimeout(message, self.endpoint) from e
            if message.startswith(_DISCONNECT_MESSAGES):
                raise Disconnected(message, self.endpoint) from e
            raise ProtocolError(f"unexpected SSH failure: {message}", self.endpoint) from e

    def _raise_negotiation_failure(self, transport: paramiko.Transport) -> None:
        """Raise NegotiationFailed if the transport died on an algorithm mismatch."""
        if transport.is_active():
            return
        failure = transport.get_exception()
        if isinstance(failure, IncompatiblePeer):
            raise NegotiationFailed(
                f"could not settle on an algorithm: {failure}", self.endpoint
            ) from failure

    def _read_banner(self) -> str:
        first_line: Optional[str] = None
        for _ in range(MAX_PRE_BANNER_LINES):
            try:
                line = self._rfile.readline(MAX_BANNER_LENGTH)
            except socket.timeout:
                # A service that spoke and then went quiet is not SSH.
                if first_line is None:
                    raise
                line = b""
            if not line:
                if first_line is not None:
                    raise BannerError(
                        "no SSH version banner before the peer stopped talking",
                        self.endpoint,
                        banner=first_line,
                    )
                raise Disconnected("connection closed before version banner", self.endpoint)
            text = line.decode("utf-8", errors="replace").rstrip("\r\n")
            if text.startswith("SSH-"):
                return text
            if first_line is None:
                first_line = text
            logger.debug("%s pre-banner line: %r", self.endpoint, text)
        raise BannerError("no SSH version banner", self.endpoint, banner=first_line)

    def _read_exact(self, n: int) -> bytes:
        data = self._rfile.read(n)
        if data is None or len(data) < n:
            raise Disconnected("connection closed by remote host", self.endpoint)
        return data

    def _read_packet(self) -> bytes:
        header = self._read_exact(4)
        packet_length = int.from_bytes(header, "big")
        wire.check_packet_length(packet_length)
        return wire.split_packet(packet_length, self._read_exact(packet_length))

    @contextlib.contextmanager
    def _socket_errors(self, step: str) -> Iterator[None]:
        """Translate socket-level failures into the per-host error taxonomy."""
        try:
            yield
        except socket.timeout as e:
            raise ConnectTimeout(f"timed out during {step}", self.endpoint) from e
        except ConnectionRefusedError as e:
            raise ConnectionRefused(f"connection refused during {step}", self.endpoint) from e
        except (ConnectionResetError, BrokenPipeError, EOFError) as e:
            raise Disconnected(f"connection reset during {step}", self.endpoint) from e
        except OSError as e:
            raise Disconnected(f"{step} failed: {e}", self.endpoint) from e


class SSHEngine(BaseEngine):
    """
    Runs a full SSHProbe against one address.

    Config:
        timeout:        per-connection timeout in seconds (default 3)
        client_banner:  identification string we send
        auth_username:  throwaway username for the "none" request
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        client_banner: str = DEFAULT_CLIENT_BANNER,
        auth_username: str = DEFAULT_AUTH_USERNAME,
    ):
        self.timeout = timeout
        self.client_banner = client_banner
        self.auth_username = auth_username

    @property
    def name(self) -> str:
        return "ssh"

    def execute(self, address: str, port: int) -> NegotiationRecord:
        probe = SSHProbe(
            address,
            port,
            timeout=self.timeout,
            client_banner=self.client_banner,
            auth_username=self.auth_username,
        )
        with probe:
            probe.connect()
            probe.exchange_versions()
            probe.negotiate_algorithms()
            probe.probe_auth_methods()

        logger.info(
            "Probed %s: %s, %d kex, %d host key, auth=%s",
            probe.endpoint,
            probe.record.server_software,
            len(probe.record.key_exchange),
            len(probe.record.host_key),
            ",".join(sorted(probe.record.allowed_auth_methods)) or "-",
        )
        return probe.record
