# File: sshscan/utils/scoring.py
# =============================================================================
# Compliance Grade Ranking
# =============================================================================
# Single source of truth for turning a compliance failure count into a letter
# grade. Used by: scanner/analyzers/grader, scanner/policy (table validation).
#
# Scale (default table):
#   0 failing categories    = A
#   1                       = B
#   2                       = C
#   3                       = D
#   more, or any category missing a REQUIRED algorithm = F
#
# Only categories that fail on acceptable-set grounds are counted. A required
# violation is not counted; it forces F outright.
# =============================================================================

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Tuple


class Grade(str, Enum):
    """Letter grades, best first. Comparisons follow rank: A > B > ... > F."""
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"

    @property
    def rank(self) -> int:
        """0 for the best grade, growing as grades get worse."""
        return list(Grade).index(self)

    def __lt__(self, other):
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other):
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other):
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank < other.rank

    def __ge__(self, other):
        if not isinstance(other, Grade):
            return NotImplemented
        return self.rank <= other.rank


LOWEST_GRADE = Grade.F

DEFAULT_RANKING: List[Tuple[int, Grade]] = [
    (0, Grade.A),
    (1, Grade.B),
    (2, Grade.C),
    (3, Grade.D),
]


def normalize_ranking(entries: Iterable[Tuple[int, Grade]]) -> List[Tuple[int, Grade]]:
    """
    Sort a ranking table by failure threshold and check that grades never
    improve as the threshold grows. Raises ValueError otherwise.
    """
    table = sorted(entries, key=lambda e: e[0])
    if not table:
        raise ValueError("ranking table is empty")
    seen = set()
    for max_failures, _ in table:
        if max_failures < 0:
            raise ValueError(f"negative failure threshold {max_failures}")
        if max_failures in seen:
            raise ValueError(f"duplicate failure threshold {max_failures}")
        seen.add(max_failures)
    for (_, better), (threshold, worse) in zip(table, table[1:]):
        if worse > better:
            raise ValueError(
                f"grade {worse.value} at {threshold} failures is better than "
                f"{better.value} at fewer failures"
            )
    return table


def grade_for_failures(failures: int, ranking: List[Tuple[int, Grade]]) -> Grade:
    """
    First table entry whose threshold covers `failures`; past the end of the
    table the lowest grade.
    """
    for max_failures, grade in ranking:
        if failures <= max_failures:
            return grade
    return LOWEST_GRADE


def grade_description(grade: Grade) -> str:
    return {
        Grade.A: "Compliant with policy",
        Grade.B: "One policy category out of compliance",
        Grade.C: "Several policy categories out of compliance",
        Grade.D: "Most of the policy out of compliance",
        Grade.F: "Required algorithms missing or broadly non-compliant",
    }[grade]
