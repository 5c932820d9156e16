# sshscan/scanner/wire.py
"""
SSH transport wire helpers (RFC 4251 data types, RFC 4253 binary packets).

Only what the handshake prefix needs: unencrypted binary packets, KEXINIT,
DISCONNECT, and the string/name-list primitives host key blobs are built of.
Structural problems raise ProtocolError; a short read on the socket is the
caller's business.
"""

from __future__ import annotations

import secrets
import struct
from typing import List, Tuple

from sshscan.scanner.base import NegotiationRecord
from sshscan.scanner.errors import ProtocolError

MSG_DISCONNECT = 1
MSG_IGNORE = 2
MSG_UNIMPLEMENTED = 3
MSG_DEBUG = 4
MSG_KEXINIT = 20

DISCONNECT_KEY_EXCHANGE_FAILED = 3

COOKIE_LENGTH = 16
MIN_PACKET_LENGTH = 5
MAX_PACKET_LENGTH = 35000
BLOCK_SIZE = 8
MIN_PADDING = 4


class Reader:
    """Cursor over an SSH payload."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read_bytes(self, n: int) -> bytes:
        if n < 0 or self.offset + n > len(self.data):
            raise ProtocolError(
                f"truncated field: wanted {n} bytes at offset {self.offset}, "
                f"{self.remaining} left"
            )
        chunk = self.data[self.offset:self.offset + n]
        self.offset += n
        return chunk

    def read_byte(self) -> int:
        return self.read_bytes(1)[0]

    def read_bool(self) -> bool:
        return self.read_byte() != 0

    def read_uint32(self) -> int:
        return struct.unpack(">I", self.read_bytes(4))[0]

    def read_string(self) -> bytes:
        return self.read_bytes(self.read_uint32())

    def read_name_list(self) -> List[str]:
        raw = self.read_string()
        if not raw:
            return []
        try:
            text = raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"non-ASCII name-list at offset {self.offset}") from e
        return text.split(",")


def encode_uint32(value: int) -> bytes:
    return struct.pack(">I", value)


def encode_string(value: bytes) -> bytes:
    return encode_uint32(len(value)) + value


def encode_name_list(names: List[str]) -> bytes:
    return encode_string(",".join(names).encode("ascii"))


def build_packet(payload: bytes) -> bytes:
    """Wrap a payload in an unencrypted binary packet with random padding."""
    padding = BLOCK_SIZE - (5 + len(payload)) % BLOCK_SIZE
    if padding < MIN_PADDING:
        padding += BLOCK_SIZE
    packet_length = 1 + len(payload) + padding
    return (
        encode_uint32(packet_length)
        + bytes([padding])
        + payload
        + secrets.token_bytes(padding)
    )


def split_packet(packet_length: int, body: bytes) -> bytes:
    """Return the payload of a packet body (everything after the length field)."""
    if len(body) != packet_length:
        raise ProtocolError(f"packet body is {len(body)} bytes, header says {packet_length}")
    padding = body[0]
    payload_length = packet_length - padding - 1
    if padding < MIN_PADDING or payload_length < 1:
        raise ProtocolError(
            f"invalid padding length {padding} for packet of {packet_length} bytes"
        )
    return body[1:1 + payload_length]


def check_packet_length(packet_length: int) -> None:
    if not MIN_PACKET_LENGTH <= packet_length <= MAX_PACKET_LENGTH:
        raise ProtocolError(f"implausible packet length {packet_length}")


def build_kexinit(
    kex: List[str],
    host_key: List[str],
    ciphers: List[str],
    macs: List[str],
    compression: List[str],
) -> bytes:
    """Client KEXINIT payload offering the same lists in both directions."""
    return b"".join([
        bytes([MSG_KEXINIT]),
        secrets.token_bytes(COOKIE_LENGTH),
        encode_name_list(kex),
        encode_name_list(host_key),
        encode_name_list(ciphers),
        encode_name_list(ciphers),
        encode_name_list(macs),
        encode_name_list(macs),
        encode_name_list(compression),
        encode_name_list(compression),
        encode_name_list([]),
        encode_name_list([]),
        b"\x00",
        encode_uint32(0),
    ])


def parse_kexinit(payload: bytes, record: NegotiationRecord) -> NegotiationRecord:
    """Copy the server's offered lists, verbatim and in order, onto `record`."""
    reader = Reader(payload)
    msg_type = reader.read_byte()
    if msg_type != MSG_KEXINIT:
        raise ProtocolError(f"expected KEXINIT (20), got message type {msg_type}")

    record.cookie = reader.read_bytes(COOKIE_LENGTH).hex()
    record.key_exchange = reader.read_name_list()
    record.host_key = reader.read_name_list()
    record.encryption_c2s = reader.read_name_list()
    record.encryption_s2c = reader.read_name_list()
    record.mac_c2s = reader.read_name_list()
    record.mac_s2c = reader.read_name_list()
    record.compression_c2s = reader.read_name_list()
    record.compression_s2c = reader.read_name_list()
    record.languages_c2s = reader.read_name_list()
    record.languages_s2c = reader.read_name_list()
    record.first_kex_packet_follows = reader.read_bool()
    reader.read_uint32()  # reserved
    return record


def parse_disconnect(payload: bytes) -> Tuple[int, str]:
    reader = Reader(payload)
    reader.read_byte()
    code = reader.read_uint32()
    description = reader.read_string().decode("utf-8", errors="replace")
    return code, description
