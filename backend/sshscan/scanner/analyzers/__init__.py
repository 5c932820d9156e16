# sshscan/scanner/analyzers/__init__.py
"""
Post-pass analyzers.
Each analyzer reads what the engines collected and writes its judgement onto
the ScanResult. Analyzers do NOT collect data.
"""
from sshscan.scanner.analyzers.compliance import (
    CategoryVerdict,
    ComplianceAnalyzer,
    ComplianceVerdict,
    evaluate,
)
from sshscan.scanner.analyzers.grader import Grader

__all__ = [
    "CategoryVerdict", "ComplianceAnalyzer", "ComplianceVerdict",
    "Grader", "evaluate",
]
