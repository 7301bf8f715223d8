import math
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional

SCHEME_KEYS = ("ca", "ca1", "ca2", "ca3", "ca4", "exam")
SPLIT_CA_KEYS = ("ca1", "ca2", "ca3", "ca4")
ENTRY_KEYS = ("ca1_score", "ca2_score", "ca3_score", "ca4_score", "exam_score")


def to_score(value: Any) -> float:
    """Missing, NaN and non-numeric values count as 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if math.isnan(value):
        return 0.0
    return float(value)


def clamp(value: Any, low: float, high: float) -> float:
    return max(low, min(to_score(value), high))


@dataclass(frozen=True)
class AssessmentScheme:
    ca: Optional[float] = None
    ca1: Optional[float] = None
    ca2: Optional[float] = None
    ca3: Optional[float] = None
    ca4: Optional[float] = None
    exam: Optional[float] = None
    name: str = ""

    @classmethod
    def from_mapping(cls, configuration: Mapping[str, Any], name: str = "") -> "AssessmentScheme":
        unknown = sorted(str(key) for key in configuration if key not in SCHEME_KEYS)
        if unknown:
            raise ValueError(f"Unknown assessment scheme keys: {', '.join(unknown)}")

        values: Dict[str, Optional[float]] = {}
        for key in SCHEME_KEYS:
            raw = configuration.get(key)
            if raw is None:
                values[key] = None
                continue
            if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw):
                raise ValueError(f"Assessment scheme value for {key} must be a finite number")
            # Fractional weights such as 12.5 are kept as-is.
            values[key] = int(raw) if float(raw).is_integer() else float(raw)
        return cls(name=name, **values)

    @property
    def is_single_ca(self) -> bool:
        return self.ca is not None

    def to_mapping(self) -> Dict[str, float]:
        return {key: getattr(self, key) for key in SCHEME_KEYS if getattr(self, key) is not None}


@dataclass(frozen=True)
class SubjectScoreEntry:
    ca1_score: Optional[float] = None
    ca2_score: Optional[float] = None
    ca3_score: Optional[float] = None
    ca4_score: Optional[float] = None
    exam_score: Optional[float] = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "SubjectScoreEntry":
        # Form rows and stored marks carry extra columns (subject_id, grade, ...).
        known = {f.name for f in fields(cls)}
        return cls(**{key: row.get(key) for key in known})


def ca_percentage(scheme: AssessmentScheme) -> float:
    if scheme.is_single_ca:
        return scheme.ca
    return sum(getattr(scheme, key) or 0 for key in SPLIT_CA_KEYS)


def exam_percentage(scheme: AssessmentScheme) -> float:
    if scheme.exam is not None:
        return scheme.exam
    return 100 - ca_percentage(scheme)


def component_maxima(scheme: AssessmentScheme) -> Dict[str, float]:
    """Largest raw value each entry field can contribute before clamping."""
    if scheme.is_single_ca:
        maxima = {"ca1_score": 100.0}
    else:
        maxima = {
            f"{key}_score": float(max(getattr(scheme, key) or 0, 0))
            for key in SPLIT_CA_KEYS
        }
    maxima["exam_score"] = 100.0
    return maxima


def compute_weighted_total(entry: SubjectScoreEntry, scheme: AssessmentScheme) -> float:
    """
    Weighted subject total on a 0-100 scale.

    Single-CA schemes take ca1_score out of 100 and scale it by the CA weight.
    Split schemes cap each caN_score at its own weight and add it as-is.
    The exam is always out of 100 and scaled by the exam weight.
    """
    if scheme.is_single_ca:
        ca_part = clamp(entry.ca1_score, 0.0, 100.0) * ca_percentage(scheme) / 100
    else:
        ca_part = 0.0
        for key in SPLIT_CA_KEYS:
            max_raw = max(getattr(scheme, key) or 0, 0)
            ca_part += clamp(getattr(entry, f"{key}_score"), 0.0, max_raw)

    exam_part = clamp(entry.exam_score, 0.0, 100.0) * exam_percentage(scheme) / 100
    return round(ca_part + exam_part, 2)


def validate_scheme(scheme: AssessmentScheme) -> List[str]:
    errors: List[str] = []
    for key in SCHEME_KEYS:
        value = getattr(scheme, key)
        if value is not None and value < 0:
            errors.append(f"{key} weight cannot be negative")

    if scheme.is_single_ca and any(getattr(scheme, key) is not None for key in SPLIT_CA_KEYS):
        errors.append("Use either a single ca weight or ca1-ca4 weights, not both")

    populated = sum(value for value in scheme.to_mapping().values())
    if populated > 100:
        errors.append(f"Weights add up to {populated:g}%, which is more than 100%")
    if not scheme.to_mapping():
        errors.append("At least one weight is required")
    return errors
