# sshscan/scanner/engines/hostkey_engine.py
"""
Host key collection engine.

Collects the host's public keys independently of the handshake probe (some
servers only reveal certain key types to a key scan), by running the external
`ssh-keyscan` utility and parsing its output.

Requirements:
    - ssh-keyscan binary (OpenSSH client tools) on PATH, or SSHSCAN_KEYSCAN_BIN

Contract with ssh-keyscan:
    Invoked with host, port and the key types rsa,dsa,ecdsa,ed25519. Output is
    whitespace-delimited text in which a recognized algorithm token is followed
    by its base64 key material. Missing binary, timeout, empty or garbled
    output all yield an empty key map, never an error.

Output (returned by HostKeyEngine.run):
    {
        "ssh-ed25519": PublicKeyRecord(
            algorithm="ssh-ed25519",
            key_material=b"\\x00\\x00\\x00\\x0bssh-ed25519...",
            fingerprints={
                "md5": "MD5:3c:81:...",
                "sha1": "SHA1:k0p1...",
                "sha256": "SHA256:Xq8m...",
            },
            bits=256,
        ),
        ...
    }

Keys are merged by algorithm token; a later key for the same token replaces
an earlier one (one key per algorithm is expected per host).
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import struct
import subprocess
from typing import Callable, Dict, Optional

import paramiko
from paramiko.pkey import UnknownKeyType

from sshscan.config import DEFAULT_KEYSCAN_BIN, DEFAULT_KEYSCAN_TIMEOUT
from sshscan.scanner.base import BaseEngine, PublicKeyRecord

logger = logging.getLogger(__name__)

RECOGNIZED_ALGORITHMS = (
    "ssh-dss",
    "ssh-rsa",
    "ecdsa-sha2-nistp256",
    "ssh-ed25519",
)
KEYSCAN_TYPES = "rsa,dsa,ecdsa,ed25519"


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------

def _b64_nopad(digest: bytes) -> str:
    return base64.b64encode(digest).decode("ascii").rstrip("=")


def compute_fingerprints(key_material: bytes) -> Dict[str, str]:
    """Legacy MD5 plus SHA-1/SHA-256 in OpenSSH display format."""
    md5 = hashlib.md5(key_material).hexdigest()
    return {
        "md5": "MD5:" + ":".join(md5[i:i + 2] for i in range(0, len(md5), 2)),
        "sha1": "SHA1:" + _b64_nopad(hashlib.sha1(key_material).digest()),
        "sha256": "SHA256:" + _b64_nopad(hashlib.sha256(key_material).digest()),
    }


def _embedded_algorithm(blob: bytes) -> Optional[str]:
    """The algorithm name every SSH public key blob starts with."""
    if len(blob) < 4:
        return None
    (length,) = struct.unpack(">I", blob[:4])
    if length > len(blob) - 4:
        return None
    try:
        return blob[4:4 + length].decode("ascii")
    except UnicodeDecodeError:
        return None


def _key_bits(algorithm: str, blob: bytes) -> Optional[int]:
    """Key size via paramiko; None when paramiko cannot load this key type."""
    try:
        return paramiko.PKey.from_type_string(algorithm, blob).get_bits()
    except UnknownKeyType:
        return None
    except Exception as e:
        logger.debug("Could not load %s key for size: %s", algorithm, e)
        return None


def build_key_record(algorithm: str, material: str) -> Optional[PublicKeyRecord]:
    """Decode one `algorithm base64` pair. Returns None if it doesn't hold up."""
    try:
        blob = base64.b64decode(material, validate=True)
    except (binascii.Error, ValueError):
        logger.debug("Skipping %s key with undecodable material", algorithm)
        return None

    embedded = _embedded_algorithm(blob)
    if embedded != algorithm:
        logger.debug("Skipping %s key: blob claims %r", algorithm, embedded)
        return None

    return PublicKeyRecord(
        algorithm=algorithm,
        key_material=blob,
        fingerprints=compute_fingerprints(blob),
        bits=_key_bits(algorithm, blob),
    )


def parse_keyscan_output(output: str) -> Dict[str, PublicKeyRecord]:
    """
    Pick `algorithm base64` pairs for the recognized algorithms out of
    ssh-keyscan output. Host names, comments, and unknown tokens are ignored.
    """
    keys: Dict[str, PublicKeyRecord] = {}
    tokens = (output or "").split()
    for i, token in enumerate(tokens[:-1]):
        if token not in RECOGNIZED_ALGORITHMS:
            continue
        record = build_key_record(token, tokens[i + 1])
        if record is not None:
            keys[token] = record
    return keys


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class HostKeyEngine(BaseEngine):
    """
    Runs ssh-keyscan against one address and parses the keys it returns.

    Config:
        keyscan_bin: path or name of the ssh-keyscan binary
        timeout:     seconds ssh-keyscan may spend on the host (default 10)
        runner:      subprocess.run-compatible callable (tests substitute it)
    """

    def __init__(
        self,
        keyscan_bin: str = DEFAULT_KEYSCAN_BIN,
        timeout: int = DEFAULT_KEYSCAN_TIMEOUT,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.keyscan_bin = keyscan_bin
        self.timeout = timeout
        self._runner = runner

    @property
    def name(self) -> str:
        return "hostkey"

    def command(self, address: str, port: int) -> list:
        return [
            self.keyscan_bin,
            "-T", str(self.timeout),
            "-t", KEYSCAN_TYPES,
            "-p", str(port),
            address,
        ]

    def execute(self, address: str, port: int) -> Dict[str, PublicKeyRecord]:
        cmd = self.command(address, port)
        try:
            proc = self._runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout + 5,
                check=False,
            )
        except FileNotFoundError:
            logger.warning("%s not found, no host keys collected", self.keyscan_bin)
            return {}
        except subprocess.TimeoutExpired as e:
            logger.warning("ssh-keyscan timed out for %s:%s", address, port)
            partial = e.stdout or ""
            if isinstance(partial, bytes):
                partial = partial.decode("utf-8", errors="replace")
            return parse_keyscan_output(partial)
        except OSError as e:
            logger.warning("ssh-keyscan could not run for %s:%s: %s", address, port, e)
            return {}

        keys = parse_keyscan_output(proc.stdout)
        logger.debug(
            "ssh-keyscan %s:%s → %s", address, port, ", ".join(sorted(keys)) or "no keys"
        )
        return keys
