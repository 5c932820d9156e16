# sshscan/scanner/resolver.py
"""
Target resolver.

Turns a Target into the ordered list of addresses the orchestrator should
probe:

    literal address  → [that address], no resolution. A PTR lookup supplies
                       a hostname for reporting afterwards (best effort).
    host name        → [first IPv6] + [first IPv4] from the system resolver,
                       so /etc/hosts and nsswitch apply. IPv6 goes first; the
                       IPv4 candidate is the one-shot fallback if the IPv6
                       probe errors. A name with neither is a ResolutionError.

Reverse (PTR) lookups go through dnspython.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from dataclasses import dataclass, field
from typing import List, Optional

import dns.exception
import dns.resolver
import dns.reversename

from sshscan.scanner.base import Target
from sshscan.scanner.errors import ResolutionError

logger = logging.getLogger(__name__)

DEFAULT_DNS_TIMEOUT = 5


@dataclass(frozen=True)
class Candidate:
    family: str                 # "ipv6" / "ipv4"
    address: str


@dataclass
class Resolution:
    target: Target
    is_literal: bool
    hostname: Optional[str] = None
    candidates: List[Candidate] = field(default_factory=list)

    @property
    def primary(self) -> Candidate:
        return self.candidates[0]

    def fallback_for(self, candidate: Candidate) -> Optional[Candidate]:
        """The IPv4 candidate to retry with after `candidate` failed over IPv6."""
        if candidate.family != "ipv6":
            return None
        for c in self.candidates:
            if c.family == "ipv4":
                return c
        return None


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def _family_of(address: str) -> str:
    return "ipv6" if ipaddress.ip_address(address).version == 6 else "ipv4"


class TargetResolver:
    """
    Forward lookups use socket.getaddrinfo per address family. PTR lookups
    use a dns.resolver.Resolver created once per TargetResolver and shared by
    the pool workers; dnspython resolvers are safe to query concurrently.
    Pass `resolver` to substitute another object with the same `resolve()`
    signature.
    """

    def __init__(self, timeout: float = DEFAULT_DNS_TIMEOUT, resolver=None):
        if resolver is None:
            resolver = dns.resolver.Resolver()
            resolver.timeout = timeout
            resolver.lifetime = timeout * 2
        self._resolver = resolver

    def resolve(self, target: Target) -> Resolution:
        host = target.host.strip().rstrip(".")

        if is_ip_address(host):
            return Resolution(
                target=target,
                is_literal=True,
                candidates=[Candidate(_family_of(host), host)],
            )

        resolution = Resolution(target=target, is_literal=False, hostname=host)
        ipv6 = self._first_address(host, target.port, socket.AF_INET6)
        if ipv6:
            resolution.candidates.append(Candidate("ipv6", ipv6))
        ipv4 = self._first_address(host, target.port, socket.AF_INET)
        if ipv4:
            resolution.candidates.append(Candidate("ipv4", ipv4))

        if not resolution.candidates:
            raise ResolutionError(
                f"{host} does not resolve to an IPv6 or IPv4 address", str(target)
            )

        logger.debug(
            "Resolved %s → %s", host, ", ".join(c.address for c in resolution.candidates)
        )
        return resolution

    def reverse(self, address: str) -> Optional[str]:
        """PTR lookup. Returns None when there is no usable record."""
        try:
            answers = self._resolver.resolve(dns.reversename.from_address(address), "PTR")
        except dns.exception.DNSException as e:
            logger.debug("PTR lookup failed for %s: %s", address, e)
            return None
        for rdata in answers:
            name = str(rdata).rstrip(".")
            if name:
                return name
        return None

    def _first_address(self, host: str, port: int, family: socket.AddressFamily) -> Optional[str]:
        try:
            results = socket.getaddrinfo(host, port, family, socket.SOCK_STREAM)
        except (socket.gaierror, socket.herror, OSError) as e:
            logger.debug("%s lookup failed for %s: %s", family.name, host, e)
            return None
        for _family, _type, _proto, _canonname, sockaddr in results:
            return sockaddr[0]
        return None
