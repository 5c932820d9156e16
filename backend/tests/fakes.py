"""
In-process fakes for the orchestrator's collaborators.
"""

import threading
from unittest.mock import MagicMock

from sshscan.config import ScanConfig
from sshscan.scanner import ScanOrchestrator
from sshscan.scanner.base import PublicKeyRecord
from sshscan.scanner.errors import ResolutionError
from sshscan.scanner.resolver import Candidate, Resolution, is_ip_address

from conftest import make_record


class FakeResolver:
    """Names from a table; literals resolve to themselves."""

    def __init__(self, names=None, ptr=None):
        self.names = names or {}
        self.ptr = ptr or {}

    def resolve(self, target):
        if is_ip_address(target.host):
            family = "ipv6" if ":" in target.host else "ipv4"
            return Resolution(target, True, candidates=[Candidate(family, target.host)])
        if target.host not in self.names:
            raise ResolutionError(f"{target.host} does not resolve", str(target))
        return Resolution(target, False, hostname=target.host, candidates=list(self.names[target.host]))

    def reverse(self, address):
        return self.ptr.get(address)


class FakeSSHEngine:
    """Outcome per address: a NegotiationRecord, or an exception to raise."""

    def __init__(self, outcomes=None, default=None, timeout=3.0):
        self.outcomes = outcomes or {}
        self.default = default
        self.timeout = timeout
        self.calls = []
        self._lock = threading.Lock()

    def run(self, address, port):
        with self._lock:
            self.calls.append((address, port))
        outcome = self.outcomes.get(address, self.default)
        if outcome is None:
            outcome = make_record()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeHostKeyEngine:

    def __init__(self, fingerprints=None):
        self.fingerprints = fingerprints or {}
        self.calls = []

    def run(self, address, port):
        self.calls.append((address, port))
        fp = self.fingerprints.get(address, f"SHA256:{address}")
        return {
            "ssh-ed25519": PublicKeyRecord(
                algorithm="ssh-ed25519", key_material=fp.encode(), fingerprints={"sha256": fp},
            )
        }


def orchestrator(resolver=None, ssh=None, hostkey=None, sshfp=None, config=None, store=None):
    if sshfp is None:
        sshfp = MagicMock()
        sshfp.run.return_value = []
    return ScanOrchestrator(
        config=config or ScanConfig(),
        resolver=resolver or FakeResolver(),
        ssh_engine=ssh or FakeSSHEngine(),
        hostkey_engine=hostkey or FakeHostKeyEngine(),
        sshfp_engine=sshfp,
        store=store,
    )


