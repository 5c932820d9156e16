# sshscan/scanner/__init__.py
"""
SSH configuration scanner.

Usage:
    from sshscan.scanner import ScanOrchestrator, ScanRequest

    orchestrator = ScanOrchestrator()
    batch = orchestrator.scan(ScanRequest(targets=["example.com:22"]))

Architecture:
    Orchestrator
    ├── TargetResolver          — literal vs name, IPv6 then IPv4, PTR
    ├── Engines (collect raw data, parallel phase)
    │   ├── SSHEngine           — banner, KEXINIT offer, "none" auth methods
    │   ├── HostKeyEngine       — ssh-keyscan host keys + fingerprints
    │   └── SSHFPEngine         — SSHFP records (post-pass)
    ├── correlate_host_keys     — host-key reuse across the batch (post-pass)
    └── Analyzers (interpret data, post-pass)
        ├── ComplianceAnalyzer  — per-category verdict against a Policy
        └── Grader              — verdict → letter grade
"""

from sshscan.scanner.orchestrator import ScanBatch, ScanOrchestrator, ScanRequest

__all__ = ["ScanBatch", "ScanOrchestrator", "ScanRequest"]
