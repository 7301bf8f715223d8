import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from skoolresults.core.weighting import clamp

CORE_SUBJECTS: Tuple[str, ...] = ("mathematics", "english", "social", "science")
ELECTIVE_SUBJECTS: Tuple[str, ...] = (
    "career_technology",
    "rme",
    "ict",
    "creative_arts",
    "gh_language",
    "french",
)

WORST_GRADE_POINT = 9
WORST_AGGREGATE = WORST_GRADE_POINT * (len(CORE_SUBJECTS) + 2)
PASS_AGGREGATE = 24

GRADE_POINT_BANDS: List[Tuple[float, int]] = [
    (80, 1),
    (70, 2),
    (65, 3),
    (60, 4),
    (55, 5),
    (50, 6),
    (45, 7),
    (35, 8),
]

AGGREGATE_BANDS: Dict[str, Dict[str, Any]] = {
    "bece": {
        "pass_mark": 30,
        "bands": [(12, "A"), (18, "B"), (24, "C"), (30, "D"), (36, "E")],
    },
    "wassce": {
        "pass_mark": 36,
        "bands": [(16, "A"), (24, "B"), (32, "C"), (40, "D"), (48, "E")],
    },
}

SUBJECT_ALIASES: Dict[str, Tuple[str, ...]] = {
    "english": ("english", "english language"),
    "mathematics": ("mathematics", "maths"),
    "science": ("science",),
    "social": ("social", "social studies"),
    "career_technology": ("career technology", "career tech", "career"),
    "rme": (
        "rme",
        "religious and moral education",
        "rel. & moral edu.",
        "rel. & moral edu",
        "rel. & morla edu",
    ),
    "ict": ("ict", "computing", "information technology"),
    "creative_arts": ("creative arts", "c.arts", "creative"),
    "gh_language": ("ghanaian language", "gh", "ghanaian", "ghanaian lang"),
    "french": ("french",),
}


def _present(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def grade_point(score: float) -> int:
    """Mock exam grade point, 1 (best) to 9 (worst)."""
    value = clamp(score, 0.0, 100.0)
    for minimum, point in GRADE_POINT_BANDS:
        if value >= minimum:
            return point
    return WORST_GRADE_POINT


def aggregate(scores: Mapping[str, Optional[float]]) -> int:
    """
    Sum of the four core grade points and the two best elective grade points.
    Missing core subjects and missing elective slots count as the worst point.
    """
    total = 0
    for subject in CORE_SUBJECTS:
        score = scores.get(subject)
        total += grade_point(score) if _present(score) else WORST_GRADE_POINT

    elective_points = sorted(
        grade_point(scores[subject]) for subject in ELECTIVE_SUBJECTS if _present(scores.get(subject))
    )
    best_two = (elective_points + [WORST_GRADE_POINT, WORST_GRADE_POINT])[:2]
    return total + sum(best_two)


def _entered_scores(scores: Mapping[str, Optional[float]]) -> List[float]:
    # Zero means "not entered yet" on the score sheet.
    return [clamp(value, 0.0, 100.0) for value in scores.values() if _present(value) and value > 0]


def raw_total(scores: Mapping[str, Optional[float]]) -> float:
    return sum(_entered_scores(scores))


def raw_average(scores: Mapping[str, Optional[float]]) -> int:
    entered = _entered_scores(scores)
    if not entered:
        return 0
    return _round_half_up(sum(entered) / len(entered))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def aggregate_grade(value: int, exam_type: str = "bece") -> Tuple[str, bool]:
    """Overall letter grade for an aggregate and whether it is a pass."""
    table = AGGREGATE_BANDS.get(exam_type, AGGREGATE_BANDS["wassce"])
    grade = "F"
    for maximum, letter in table["bands"]:
        if value <= maximum:
            grade = letter
            break
    return grade, value <= table["pass_mark"]


def _normalize_name(name: str) -> str:
    return re.sub(r"\s+", "", name.lower())


_ALIAS_LOOKUP: Dict[str, str] = {
    _normalize_name(alias): key for key, aliases in SUBJECT_ALIASES.items() for alias in aliases
}


def resolve_subject_key(name: Optional[str]) -> Optional[str]:
    """Map a subject name or code from a score sheet to its mock subject key."""
    if not name or not name.strip():
        return None
    normalized = _normalize_name(name)
    if normalized in _ALIAS_LOOKUP:
        return _ALIAS_LOOKUP[normalized]
    underscored = re.sub(r"\s+", "_", name.strip().lower())
    if underscored in CORE_SUBJECTS or underscored in ELECTIVE_SUBJECTS:
        return underscored
    return None


def summarize_session(results: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    rows = list(results)
    if not rows:
        return {"students": 0, "average_score": 0, "average_aggregate": None, "pass_rate": 0}

    aggregates = [row.get("aggregate") or WORST_AGGREGATE for row in rows]
    scores = [row.get("total_score") or 0 for row in rows]
    passed = sum(1 for value in aggregates if value <= PASS_AGGREGATE)
    return {
        "students": len(rows),
        "average_score": _round_half_up(sum(scores) / len(rows)),
        "average_aggregate": round(sum(aggregates) / len(rows), 1),
        "pass_rate": _round_half_up(passed / len(rows) * 100),
    }
