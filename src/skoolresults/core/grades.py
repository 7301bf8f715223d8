from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from skoolresults.core.weighting import to_score


@dataclass(frozen=True)
class GradingScale:
    from_percentage: float
    to_percentage: float
    grade: str
    remark: str

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "GradingScale":
        # Stored rows use from_percentage/to_percentage, settings forms use from/to.
        low = row.get("from_percentage", row.get("from"))
        high = row.get("to_percentage", row.get("to"))
        return cls(
            from_percentage=to_score(low),
            to_percentage=to_score(high),
            grade=str(row.get("grade") or ""),
            remark=str(row.get("remark") or ""),
        )

    def contains(self, total: float) -> bool:
        return self.from_percentage <= total <= self.to_percentage


@dataclass(frozen=True)
class GradeResult:
    grade: str
    remark: str


DEFAULT_GRADE_LADDER: List[Tuple[float, str, str]] = [
    (80, "A", "Excellent"),
    (70, "B", "Very Good"),
    (60, "C", "Good"),
    (50, "D", "Satisfactory"),
    (40, "E", "Weak"),
]

LOWEST_GRADE = GradeResult("F", "Very Weak")


def default_grade(total: float) -> GradeResult:
    score = to_score(total)
    for minimum, grade, remark in DEFAULT_GRADE_LADDER:
        if score >= minimum:
            return GradeResult(grade, remark)
    return LOWEST_GRADE


def resolve_grade(total: float, scales: Sequence[GradingScale]) -> GradeResult:
    """
    First band containing the total wins; bands are used in the order given.
    Falls back to the default ladder when nothing matches or no bands are configured.
    """
    score = to_score(total)
    for scale in scales or ():
        if scale.contains(score):
            return GradeResult(scale.grade, scale.remark)
    return default_grade(score)


def validate_grading_scale(scale: GradingScale) -> List[str]:
    errors: List[str] = []
    if not scale.grade.strip():
        errors.append("Grade is required")
    if not scale.remark.strip():
        errors.append("Remark is required")
    if not 0 <= scale.from_percentage <= 100:
        errors.append("From percentage must be between 0 and 100")
    if not 0 <= scale.to_percentage <= 100:
        errors.append("To percentage must be between 0 and 100")
    if scale.from_percentage > scale.to_percentage:
        errors.append("From percentage cannot be greater than to percentage")
    return errors


def validate_grading_scales(scales: Iterable[GradingScale]) -> List[str]:
    bands = list(scales)
    errors: List[str] = []
    for scale in bands:
        errors.extend(validate_grading_scale(scale))

    ordered = sorted(bands, key=lambda s: s.from_percentage)
    for current, following in zip(ordered, ordered[1:]):
        if current.to_percentage >= following.from_percentage:
            errors.append(
                "Overlapping ranges: "
                f"{current.from_percentage:g}-{current.to_percentage:g}% and "
                f"{following.from_percentage:g}-{following.to_percentage:g}%"
            )
    return errors
