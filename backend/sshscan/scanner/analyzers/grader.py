# sshscan/scanner/analyzers/grader.py
"""
Grader.

Runs after the compliance analyzer. Maps a ComplianceVerdict to a Grade:

    - any category missing a REQUIRED algorithm → lowest grade (F), regardless
      of every other category
    - otherwise the policy's ranking table, keyed by how many categories fail
      on acceptable-set grounds; more failures never give a better grade

The ranking table is configuration (Policy.ranking), not a constant here.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sshscan.scanner.analyzers.compliance import ComplianceVerdict
from sshscan.scanner.base import BaseAnalyzer, ScanResult
from sshscan.utils.scoring import (
    DEFAULT_RANKING,
    LOWEST_GRADE,
    Grade,
    grade_for_failures,
    normalize_ranking,
)

logger = logging.getLogger(__name__)


class Grader(BaseAnalyzer):

    def __init__(self, ranking: Optional[List[Tuple[int, Grade]]] = None):
        self.ranking = normalize_ranking(ranking if ranking is not None else DEFAULT_RANKING)

    @property
    def name(self) -> str:
        return "grader"

    def grade(self, verdict: ComplianceVerdict) -> Grade:
        if any(v.required_violated for v in verdict.categories.values()):
            return LOWEST_GRADE
        failures = sum(1 for v in verdict.categories.values() if not v.passed)
        return grade_for_failures(failures, self.ranking)

    def can_run(self, result: ScanResult) -> bool:
        return result.compliance_verdict is not None

    def analyze(self, result: ScanResult) -> None:
        result.grade = self.grade(result.compliance_verdict)
        logger.debug("%s graded %s", result.endpoint, result.grade.value)
