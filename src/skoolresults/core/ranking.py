import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from skoolresults.core.weighting import to_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StudentTotal:
    id: str
    total: float


@dataclass(frozen=True)
class RankingResult:
    positions: Dict[str, str] = field(default_factory=dict)
    ranks: Dict[str, int] = field(default_factory=dict)
    total_students: int = 0

    def position_for(self, student_id: str) -> str:
        # Students without a valid total are left out of the ranking.
        return self.positions.get(student_id, "")


def ordinal(position: int) -> str:
    """Return the ordinal form of a position (1 -> 1st, 12 -> 12th)."""
    if position <= 0:
        return ""
    if 11 <= position % 100 <= 13:
        return f"{position}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(position % 10, "th")
    return f"{position}{suffix}"


def compute_positions(students: Iterable[StudentTotal]) -> RankingResult:
    """
    Standard competition ranking: equal totals share a position and the next
    total skips ahead by the size of the tied group (90, 90, 80 -> 1st, 1st, 3rd).
    Totals of zero or less are not ranked and do not count towards total_students.
    """
    groups: Dict[float, List[str]] = {}
    for student in students:
        total = to_score(student.total)
        if total <= 0:
            continue
        groups.setdefault(total, []).append(student.id)

    ranks: Dict[str, int] = {}
    current = 1
    for total in sorted(groups, reverse=True):
        ids = groups[total]
        for student_id in ids:
            ranks[student_id] = current
        current += len(ids)

    logger.debug("Ranked %d students in %d score groups", len(ranks), len(groups))
    return RankingResult(
        positions={student_id: ordinal(rank) for student_id, rank in ranks.items()},
        ranks=ranks,
        total_students=len(ranks),
    )


def student_total(stored_total: Any, subject_totals: Iterable[Optional[float]] = ()) -> float:
    """Cached result total when present, otherwise the sum of the subject totals."""
    total = to_score(stored_total)
    if total:
        return total
    return sum(to_score(value) for value in subject_totals if value is not None)


def compute_subject_positions(marks: Mapping[str, Iterable[StudentTotal]]) -> Dict[str, RankingResult]:
    return {subject_id: compute_positions(totals) for subject_id, totals in marks.items()}
