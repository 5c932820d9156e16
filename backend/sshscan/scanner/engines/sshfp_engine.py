# sshscan/scanner/engines/sshfp_engine.py
"""
SSHFP DNS engine.

Looks up the SSHFP records (RFC 4255 / 6594 / 7479) published for a host name
with dnspython, and cross-checks them against the host keys the key scan
collected.

Output (returned by SSHFPEngine.run):
    [
        {"algorithm": 4, "fptype": 2, "fingerprint": "9d1f...", "matched": True},
        ...
    ]

No records, NXDOMAIN, timeouts and the like yield an empty list.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, List, Mapping, Optional

import dns.exception
import dns.resolver

from sshscan.scanner.base import BaseEngine, PublicKeyRecord

logger = logging.getLogger(__name__)

DEFAULT_DNS_TIMEOUT = 5

# SSHFP algorithm numbers for the key types the collector recognizes.
SSHFP_ALGORITHMS = {
    "ssh-rsa": 1,
    "ssh-dss": 2,
    "ecdsa-sha2-nistp256": 3,
    "ssh-ed25519": 4,
}
SSHFP_HASHES = {
    1: hashlib.sha1,
    2: hashlib.sha256,
}


def expected_sshfp(keys: Mapping[str, PublicKeyRecord]) -> Dict[tuple, str]:
    """(algorithm number, fptype) → hex digest for every collected key."""
    expected: Dict[tuple, str] = {}
    for algorithm, key in keys.items():
        number = SSHFP_ALGORITHMS.get(algorithm)
        if number is None:
            continue
        for fptype, hasher in SSHFP_HASHES.items():
            expected[(number, fptype)] = hasher(key.key_material).hexdigest()
    return expected


def cross_check(
    records: List[Dict[str, Any]], keys: Mapping[str, PublicKeyRecord]
) -> List[Dict[str, Any]]:
    """Mark each SSHFP record that equals the digest of a collected key."""
    expected = expected_sshfp(keys)
    checked = []
    for rec in records:
        digest = expected.get((rec["algorithm"], rec["fptype"]))
        checked.append({**rec, "matched": digest is not None and digest == rec["fingerprint"]})
    return checked


class SSHFPEngine(BaseEngine):
    """
    Queries SSHFP records for a host name.

    Pass `resolver` to substitute another object with dnspython's
    `resolve(name, rdtype)` signature.
    """

    def __init__(self, timeout: float = DEFAULT_DNS_TIMEOUT, resolver=None):
        if resolver is None:
            resolver = dns.resolver.Resolver()
            resolver.timeout = timeout
            resolver.lifetime = timeout * 2
        self._resolver = resolver

    @property
    def name(self) -> str:
        return "sshfp"

    def execute(
        self,
        hostname: str,
        keys: Optional[Mapping[str, PublicKeyRecord]] = None,
    ) -> List[Dict[str, Any]]:
        try:
            answers = self._resolver.resolve(hostname, "SSHFP")
        except dns.exception.DNSException as e:
            logger.debug("No SSHFP records for %s: %s", hostname, e)
            return []

        records = [
            {
                "algorithm": int(rdata.algorithm),
                "fptype": int(rdata.fp_type),
                "fingerprint": rdata.fingerprint.hex(),
            }
            for rdata in answers
        ]
        records.sort(key=lambda r: (r["algorithm"], r["fptype"], r["fingerprint"]))
        return cross_check(records, keys or {})
