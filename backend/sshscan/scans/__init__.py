# sshscan/scans/__init__.py
"""
Scan endpoint.

Runs synchronously and returns the batch when every target is done.
Nothing is persisted except fingerprint rows when a fingerprint database
is configured.

Endpoints:
    POST /scans
"""

from sshscan.scans.routes import scans_bp

__all__ = ["scans_bp"]
