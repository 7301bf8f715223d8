import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from skoolresults.config.settings import settings
from skoolresults.core.grades import GradingScale, resolve_grade, validate_grading_scales
from skoolresults.core.mock import aggregate, aggregate_grade, grade_point, raw_average, raw_total
from skoolresults.core.ranking import RankingResult, StudentTotal, compute_positions
from skoolresults.core.weighting import (
    AssessmentScheme,
    SubjectScoreEntry,
    ca_percentage,
    compute_weighted_total,
    exam_percentage,
    validate_scheme,
)
from skoolresults.services.results_service import ResultsService, ResultsServiceError

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="SkoolResults API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allowed_origins),
    allow_origin_regex=settings.cors_allow_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class EntryPayload(BaseModel):
    ca1_score: Optional[float] = None
    ca2_score: Optional[float] = None
    ca3_score: Optional[float] = None
    ca4_score: Optional[float] = None
    exam_score: Optional[float] = None


class WeightedTotalPayload(BaseModel):
    scheme: Dict[str, float]
    entry: EntryPayload


class SchemePayload(BaseModel):
    scheme: Dict[str, float]


class CATypePayload(BaseModel):
    name: str
    description: str = ""
    configuration: Dict[str, float]


class ScalePayload(BaseModel):
    from_percentage: float
    to_percentage: float
    grade: str
    remark: str = ""


class GradePayload(BaseModel):
    total: float
    scales: List[ScalePayload] = Field(default_factory=list)


class ScalesPayload(BaseModel):
    scales: List[ScalePayload] = Field(default_factory=list)


class GradingScalesPayload(BaseModel):
    department: str
    academic_year: str
    term: str
    scales: List[ScalePayload] = Field(default_factory=list)


class StudentTotalPayload(BaseModel):
    id: str
    total: float


class PositionsPayload(BaseModel):
    students: List[StudentTotalPayload]


class MockScoresPayload(BaseModel):
    scores: Dict[str, Optional[float]] = Field(default_factory=dict)
    exam_type: str = "bece"


class SaveMockScoresPayload(BaseModel):
    scores: Dict[str, Optional[float]] = Field(default_factory=dict)
    class_id: Optional[str] = None


class SubjectMarksPayload(BaseModel):
    ca_type_id: Optional[str] = None
    department: str = ""
    entry: EntryPayload


def _scales(payload: List[ScalePayload]) -> List[GradingScale]:
    return [GradingScale.from_mapping(scale.model_dump()) for scale in payload]


def _scheme(configuration: Dict[str, float]) -> AssessmentScheme:
    try:
        return AssessmentScheme.from_mapping(configuration)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _ranking_response(ranking: RankingResult) -> Dict:
    return {"positions": ranking.positions, "total_students": ranking.total_students}


def _bad_request(exc: Exception) -> HTTPException:
    logger.warning("Request failed: %s", exc)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/grading/total")
def weighted_total(payload: WeightedTotalPayload) -> Dict:
    scheme = _scheme(payload.scheme)
    entry = SubjectScoreEntry.from_mapping(payload.entry.model_dump())
    return {
        "total": compute_weighted_total(entry, scheme),
        "ca_percentage": ca_percentage(scheme),
        "exam_percentage": exam_percentage(scheme),
    }


@app.post("/grading/grade")
def grade(payload: GradePayload) -> Dict[str, str]:
    result = resolve_grade(payload.total, _scales(payload.scales))
    return {"grade": result.grade, "remark": result.remark}


@app.post("/grading/scales/validate")
def validate_scales(payload: ScalesPayload) -> Dict:
    errors = validate_grading_scales(_scales(payload.scales))
    return {"valid": not errors, "errors": errors}


@app.post("/grading/schemes/validate")
def validate_assessment_scheme(payload: SchemePayload) -> Dict:
    errors = validate_scheme(_scheme(payload.scheme))
    return {"valid": not errors, "errors": errors}


@app.post("/ranking/positions")
def positions(payload: PositionsPayload) -> Dict:
    ranking = compute_positions(StudentTotal(student.id, student.total) for student in payload.students)
    return _ranking_response(ranking)


@app.post("/mock/aggregate")
def mock_aggregate(payload: MockScoresPayload) -> Dict:
    value = aggregate(payload.scores)
    letter, is_passing = aggregate_grade(value, payload.exam_type)
    return {
        "aggregate": value,
        "raw_average": raw_average(payload.scores),
        "raw_total": raw_total(payload.scores),
        "grade": letter,
        "is_passing": is_passing,
        "grade_points": {
            subject: grade_point(score) for subject, score in payload.scores.items() if score is not None
        },
    }


@app.post("/ca-types")
def create_ca_type(payload: CATypePayload) -> Dict[str, str]:
    try:
        service = ResultsService.from_settings()
        ca_type_id = service.save_assessment_scheme(payload.name, payload.configuration, payload.description)
        return {"id": ca_type_id}
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc


@app.get("/grading-scales")
def list_grading_scales(department: str, academic_year: str, term: str) -> List[Dict]:
    try:
        service = ResultsService.from_settings()
        scales = service.list_grading_scales(department, academic_year, term)
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc
    return [
        {
            "from_percentage": scale.from_percentage,
            "to_percentage": scale.to_percentage,
            "grade": scale.grade,
            "remark": scale.remark,
        }
        for scale in scales
    ]


@app.put("/grading-scales")
def save_grading_scales(payload: GradingScalesPayload) -> Dict:
    try:
        service = ResultsService.from_settings()
        count = service.save_grading_scales(
            payload.department,
            payload.academic_year,
            payload.term,
            _scales(payload.scales),
        )
        return {"status": "saved", "count": count}
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc


@app.get("/classes/{class_id}/positions")
def class_positions(class_id: str, academic_year: str, term: str) -> Dict:
    try:
        service = ResultsService.from_settings()
        return _ranking_response(service.calculate_class_positions(class_id, academic_year, term))
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc


@app.post("/classes/{class_id}/subject-positions")
def subject_positions(class_id: str, academic_year: str, term: str) -> Dict[str, Dict]:
    try:
        service = ResultsService.from_settings()
        rankings = service.calculate_subject_positions(class_id, academic_year, term)
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc
    return {subject_id: _ranking_response(ranking) for subject_id, ranking in rankings.items()}


@app.get("/results/{result_id}/position")
def overall_position(result_id: str, academic_year: str, term: str, class_id: Optional[str] = None) -> Dict:
    try:
        service = ResultsService.from_settings()
        return service.calculate_overall_position(result_id, class_id, academic_year, term)
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc


@app.post("/results/{result_id}/subjects/{subject_id}/marks")
def save_subject_marks(result_id: str, subject_id: str, payload: SubjectMarksPayload) -> Dict:
    try:
        service = ResultsService.from_settings()
        return service.save_subject_marks(
            result_id,
            subject_id,
            SubjectScoreEntry.from_mapping(payload.entry.model_dump()),
            ca_type_id=payload.ca_type_id,
            department=payload.department,
        )
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc


@app.post("/mock-sessions/{session_id}/students/{student_id}/scores")
def save_mock_scores(session_id: str, student_id: str, payload: SaveMockScoresPayload) -> Dict:
    try:
        service = ResultsService.from_settings()
        return service.save_mock_scores(session_id, student_id, payload.scores, class_id=payload.class_id)
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc


@app.get("/mock-sessions/{session_id}/results")
def mock_results(session_id: str) -> List[Dict]:
    try:
        service = ResultsService.from_settings()
        return service.list_mock_results(session_id)
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc


@app.get("/mock-sessions/{session_id}/summary")
def mock_summary(session_id: str) -> Dict:
    try:
        service = ResultsService.from_settings()
        return service.mock_session_summary(session_id)
    except ResultsServiceError as exc:
        raise _bad_request(exc) from exc
