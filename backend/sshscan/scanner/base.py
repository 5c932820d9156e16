# sshscan/scanner/base.py
"""
Base classes and data structures for the SSH scan pipeline.

Architecture:
    ScanResult flows through:  Resolver → Engines → (post-pass) Correlator → Analyzers

BaseEngine:   Collects raw facts about one endpoint (handshake offer, host keys,
              SSHFP records). Engines NEVER judge what they collect.

BaseAnalyzer: Interprets collected facts against a policy (compliance, grade).
              Analyzers NEVER touch the network.

A ScanResult is owned by exactly one thread of control at a time: its worker
during the parallel phase, then the orchestrator's sequential post-pass.
"""

from __future__ import annotations

import base64
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from sshscan.scanner.errors import ProbeError

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Data structures that flow through the whole scan
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class Target:
    """
    A host (name or literal address) plus TCP port.

    Parsed from "host", "host:port", "[v6addr]" or "[v6addr]:port".
    A bare IPv6 literal without brackets is accepted and gets the default port.
    """
    host: str
    port: int = DEFAULT_SSH_PORT

    @classmethod
    def parse(cls, value: str, default_port: int = DEFAULT_SSH_PORT) -> "Target":
        s = (value or "").strip()
        if not s:
            raise ValueError("empty target specifier")

        port_str: Optional[str] = None
        if s.startswith("["):
            host, sep, rest = s[1:].partition("]")
            if not sep:
                raise ValueError(f"unterminated IPv6 literal in {value!r}")
            if rest:
                if not rest.startswith(":"):
                    raise ValueError(f"unexpected text after IPv6 literal in {value!r}")
                port_str = rest[1:]
        elif s.count(":") == 1:
            host, port_str = s.split(":")
        else:
            host = s

        host = host.strip()
        if not host:
            raise ValueError(f"missing host in {value!r}")

        port = default_port
        if port_str is not None:
            if not port_str.isdigit():
                raise ValueError(f"invalid port in {value!r}")
            port = int(port_str)
        if not 0 < port < 65536:
            raise ValueError(f"port out of range in {value!r}")

        return cls(host=host, port=port)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class ScanState(Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    PROBING = "probing"
    ENRICHING = "enriching"
    FAILED = "failed"
    DONE = "done"


# Negotiated categories in wire order, mapped to their report names.
CATEGORIES = (
    ("key_exchange", "keyExchange"),
    ("host_key", "hostKey"),
    ("encryption_c2s", "encryptionC2S"),
    ("encryption_s2c", "encryptionS2C"),
    ("mac_c2s", "macC2S"),
    ("mac_s2c", "macS2C"),
    ("compression_c2s", "compressionC2S"),
    ("compression_s2c", "compressionS2C"),
)
AUTH_CATEGORY = "auth"
CATEGORY_NAMES = tuple(name for _, name in CATEGORIES) + (AUTH_CATEGORY,)


@dataclass
class NegotiationRecord:
    """
    What the server offered during the unauthenticated handshake prefix.

    Lists keep the server's preference order verbatim. The probe fills this
    in as it goes (banner, then KEXINIT, then auth methods); nothing writes
    to it once the probe has returned it.
    """
    key_exchange: List[str] = field(default_factory=list)
    host_key: List[str] = field(default_factory=list)
    encryption_c2s: List[str] = field(default_factory=list)
    encryption_s2c: List[str] = field(default_factory=list)
    mac_c2s: List[str] = field(default_factory=list)
    mac_s2c: List[str] = field(default_factory=list)
    compression_c2s: List[str] = field(default_factory=list)
    compression_s2c: List[str] = field(default_factory=list)
    languages_c2s: List[str] = field(default_factory=list)
    languages_s2c: List[str] = field(default_factory=list)
    first_kex_packet_follows: bool = False
    cookie: Optional[str] = None                # hex

    allowed_auth_methods: Set[str] = field(default_factory=set)

    server_banner: Optional[str] = None
    client_banner: Optional[str] = None
    ssh_version: Optional[str] = None           # e.g. "2.0", "1.99"
    server_software: Optional[str] = None       # e.g. "OpenSSH_9.6p1"

    def offered(self, category: str) -> Set[str]:
        """Offered set for a category report name ("keyExchange", ..., "auth")."""
        if category == AUTH_CATEGORY:
            return set(self.allowed_auth_methods)
        for attr, name in CATEGORIES:
            if name == category:
                return set(getattr(self, attr))
        raise KeyError(category)

    def is_complete(self) -> bool:
        """True when every negotiated category and the auth methods are non-empty."""
        return all(getattr(self, attr) for attr, _ in CATEGORIES) and bool(
            self.allowed_auth_methods
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "serverBanner": self.server_banner,
            "clientBanner": self.client_banner,
            "sshVersion": self.ssh_version,
            "serverSoftware": self.server_software,
            "cookie": self.cookie,
        }
        for attr, name in CATEGORIES:
            data[name] = list(getattr(self, attr))
        data["languagesC2S"] = list(self.languages_c2s)
        data["languagesS2C"] = list(self.languages_s2c)
        data["firstKexPacketFollows"] = self.first_kex_packet_follows
        data["allowedAuthMethods"] = sorted(self.allowed_auth_methods)
        return data


@dataclass
class PublicKeyRecord:
    """One host public key. Fingerprints are derived from key_material only."""
    algorithm: str
    key_material: bytes
    fingerprints: Dict[str, str] = field(default_factory=dict)   # hash algo → fingerprint
    bits: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "raw": base64.b64encode(self.key_material).decode("ascii"),
            "length": self.bits,
            "fingerprints": dict(self.fingerprints),
        }


@dataclass
class ScanResult:
    """
    The unit of work output, one per input target.

    Either `error` or `negotiation` is set once probing is over, never both.
    Enrichment fields (keys, dns_keys, duplicates, verdict, grade) are only
    filled for results without an error.
    """
    target: Target
    address: Optional[str] = None               # the address actually probed
    hostname: Optional[str] = None
    state: ScanState = ScanState.PENDING

    negotiation: Optional[NegotiationRecord] = None
    keys: Dict[str, PublicKeyRecord] = field(default_factory=dict)
    auth_methods: Set[str] = field(default_factory=set)
    dns_keys: Optional[List[Dict[str, Any]]] = None
    duplicate_host_key_addresses: List[Target] = field(default_factory=list)

    compliance_verdict: Optional[Any] = None    # analyzers.compliance.ComplianceVerdict
    compliance_policy: Optional[str] = None
    grade: Optional[Any] = None                 # utils.scoring.Grade

    error: Optional[ProbeError] = None

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def endpoint(self) -> Target:
        """Identity used for host-key correlation: probed address and port."""
        return Target(host=self.address or self.target.host, port=self.target.port)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.negotiation is not None

    def start(self) -> None:
        self.started_at = now_utc()

    def finish(self) -> None:
        self.finished_at = now_utc()
        self.state = ScanState.DONE

    def set_negotiation(self, record: NegotiationRecord) -> None:
        self.negotiation = record
        self.auth_methods = set(record.allowed_auth_methods)
        self.error = None

    def fail(self, error: ProbeError) -> None:
        self.error = error
        self.negotiation = None
        self.auth_methods = set()
        self.state = ScanState.FAILED

    def clear_error(self) -> None:
        self.error = None
        self.state = ScanState.PROBING

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "target": str(self.target),
            "ip": self.address,
            "port": self.target.port,
            "hostname": self.hostname,
            "state": self.state.value,
            "startTime": self.started_at.isoformat() if self.started_at else None,
            "endTime": self.finished_at.isoformat() if self.finished_at else None,
            "scanDurationSeconds": (
                round((self.finished_at - self.started_at).total_seconds(), 3)
                if self.started_at and self.finished_at else None
            ),
            "error": self.error.to_dict() if self.error else None,
        }
        if self.negotiation is not None:
            data.update(self.negotiation.to_dict())
        data["authMethods"] = sorted(self.auth_methods)
        data["keys"] = {alg: key.to_dict() for alg, key in self.keys.items()}
        data["dnsKeys"] = self.dns_keys
        data["duplicateHostKeyIps"] = [str(t) for t in self.duplicate_host_key_addresses]
        data["compliance"] = (
            self.compliance_verdict.to_dict() if self.compliance_verdict is not None else None
        )
        data["compliancePolicy"] = self.compliance_policy
        data["grade"] = self.grade.value if self.grade is not None else None
        return data


# ---------------------------------------------------------------------------
# Abstract base classes
# ---------------------------------------------------------------------------

class BaseEngine(ABC):
    """
    Abstract base for fact-collecting engines.

    To create a new engine:
        1. Subclass BaseEngine
        2. Set the `name` property (e.g., "ssh", "hostkey", "sshfp")
        3. Implement `execute(...)`

    `run()` adds timing and debug logging. Unlike analyzers, engines do not
    swallow errors: what an engine raises is part of its contract.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    def run(self, *args: Any, **kwargs: Any) -> Any:
        """DO NOT OVERRIDE THIS METHOD. Override `execute()` instead."""
        start = time.monotonic()
        try:
            return self.execute(*args, **kwargs)
        finally:
            logger.debug(
                "Engine '%s' finished in %.2fs", self.name, time.monotonic() - start
            )

    @abstractmethod
    def execute(self, *args: Any, **kwargs: Any) -> Any:
        ...


class BaseAnalyzer(ABC):
    """
    Abstract base for analyzers run during the sequential post-pass.

    To create a new analyzer:
        1. Subclass BaseAnalyzer
        2. Set the `name` property
        3. Override `can_run(result)` if the analyzer needs more than a
           successful probe
        4. Implement `analyze(result)`, writing onto the result
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    def can_run(self, result: ScanResult) -> bool:
        return result.succeeded

    def run(self, result: ScanResult) -> bool:
        """
        DO NOT OVERRIDE THIS METHOD. Override `analyze()` instead.

        Returns True if the analyzer ran, False if it was skipped.
        """
        if not self.can_run(result):
            logger.debug("Analyzer '%s' skipped for %s", self.name, result.target)
            return False
        self.analyze(result)
        return True

    @abstractmethod
    def analyze(self, result: ScanResult) -> None:
        ...
