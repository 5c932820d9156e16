# sshscan/scanner/engines/__init__.py
"""
Data collection engines.
Each engine collects raw facts from a single source.
Engines do NOT judge what they collect.
"""
from sshscan.scanner.engines.ssh_engine import SSHEngine, SSHProbe
from sshscan.scanner.engines.hostkey_engine import HostKeyEngine
from sshscan.scanner.engines.sshfp_engine import SSHFPEngine

__all__ = ["SSHEngine", "SSHProbe", "HostKeyEngine", "SSHFPEngine"]
