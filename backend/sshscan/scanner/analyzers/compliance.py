# sshscan/scanner/analyzers/compliance.py
"""
Policy Compliance Analyzer.

Evaluates what a host offered against a Policy, one category rule at a time:

    offered   the category's list from the NegotiationRecord
              (the allowed auth methods for "auth")
    pass      offered ⊆ acceptable, and offered ⊇ required when required is set
    offending offered − acceptable
    missing   required − offered

Hosts are only evaluated once every negotiated category and the auth method
list are non-empty. A host whose probe produced nothing for some category is
"not checkable" rather than failing everything because of an upstream gap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Set

from sshscan.scanner.base import BaseAnalyzer, NegotiationRecord, ScanResult
from sshscan.scanner.policy import CategoryRule, Policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryVerdict:
    passed: bool
    offending: FrozenSet[str] = frozenset()
    missing: FrozenSet[str] = frozenset()

    @property
    def required_violated(self) -> bool:
        return bool(self.missing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pass": self.passed,
            "offending": sorted(self.offending),
            "missing": sorted(self.missing),
        }


@dataclass
class ComplianceVerdict:
    policy: str
    categories: Dict[str, CategoryVerdict] = field(default_factory=dict)

    @property
    def compliant(self) -> bool:
        return all(v.passed for v in self.categories.values())

    def __getitem__(self, category: str) -> CategoryVerdict:
        return self.categories[category]

    def recommendations(self) -> list:
        """Plain-language fixes, in category order."""
        out = []
        for category, verdict in self.categories.items():
            if verdict.offending:
                out.append(
                    f"Remove these {category} algorithms: {', '.join(sorted(verdict.offending))}"
                )
            if verdict.missing:
                out.append(
                    f"Add these {category} algorithms: {', '.join(sorted(verdict.missing))}"
                )
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy,
            "compliant": self.compliant,
            "categories": {c: v.to_dict() for c, v in self.categories.items()},
            "recommendations": self.recommendations(),
        }


def evaluate_rule(rule: CategoryRule, offered: Set[str]) -> CategoryVerdict:
    offending = frozenset(offered - rule.acceptable)
    missing = frozenset(rule.required - offered) if rule.required is not None else frozenset()
    return CategoryVerdict(
        passed=not offending and not missing,
        offending=offending,
        missing=missing,
    )


def evaluate(
    record: NegotiationRecord,
    policy: Policy,
    auth_methods: Optional[Set[str]] = None,
) -> ComplianceVerdict:
    """Evaluate every rule of `policy`, in policy order."""
    verdict = ComplianceVerdict(policy=policy.name)
    for rule in policy.rules:
        if rule.category == "auth" and auth_methods is not None:
            offered = set(auth_methods)
        else:
            offered = record.offered(rule.category)
        verdict.categories[rule.category] = evaluate_rule(rule, offered)
    return verdict


class ComplianceAnalyzer(BaseAnalyzer):
    """Writes result.compliance_verdict for checkable hosts."""

    def __init__(self, policy: Policy):
        self.policy = policy

    @property
    def name(self) -> str:
        return "compliance"

    def can_run(self, result: ScanResult) -> bool:
        return result.succeeded and result.negotiation.is_complete() and bool(result.auth_methods)

    def analyze(self, result: ScanResult) -> None:
        verdict = evaluate(result.negotiation, self.policy, result.auth_methods)
        result.compliance_verdict = verdict
        result.compliance_policy = self.policy.name

        failing = [c for c, v in verdict.categories.items() if not v.passed]
        if failing:
            logger.info(
                "%s out of policy '%s' in: %s",
                result.endpoint, self.policy.name, ", ".join(failing),
            )
