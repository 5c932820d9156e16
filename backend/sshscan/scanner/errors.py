# sshscan/scanner/errors.py
"""
Error taxonomy for the SSH scan pipeline.

Two families with deliberately different handling:

    ProbeError      Per-host, recoverable. Recorded on ScanResult.error,
                    enrichment for that host is skipped, the batch continues.
                    ResolutionError, ConnectTimeout, ConnectionRefused,
                    Disconnected, NegotiationFailed, BannerError.

    ProtocolError   Not recoverable. A malformed packet or an unexpected
                    paramiko failure most likely means a parser bug, so it
                    propagates out of the worker and the whole scan.

PolicyError is raised while loading a policy document. It aborts compliance
evaluation for the batch, never the raw scan.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ScanError(Exception):
    """Root of every error raised by the scanner."""

    def __init__(self, message: str, target: Optional[str] = None) -> None:
        self.message = message
        self.target = target
        super().__init__(message)

    def __str__(self) -> str:
        if self.target:
            return f"{self.message} ({self.target})"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {"type": type(self).__name__, "message": self.message}


class ProbeError(ScanError):
    """A remote condition that only affects one host."""


class ResolutionError(ProbeError):
    """The host name resolves in neither address family."""


class ConnectTimeout(ProbeError):
    """No connection (or no answer) within the per-connection timeout."""


class ConnectionRefused(ProbeError):
    """The remote end refused the TCP connection."""


class Disconnected(ProbeError):
    """The connection was reset or closed before the handshake prefix finished."""


class NegotiationFailed(ProbeError):
    """Client and server could not settle on an algorithm in some category."""


class BannerError(ProbeError):
    """The peer did not identify itself with a usable SSH-2 version banner."""

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        banner: Optional[str] = None,
    ) -> None:
        super().__init__(message, target)
        self.banner = banner

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["banner"] = self.banner
        return data


class ProtocolError(ScanError):
    """Malformed packet or unexpected protocol failure. Never recovered locally."""


class PolicyError(ScanError):
    """Malformed policy document."""
