from datetime import datetime, timezone
import json
import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Tuple

from appwrite.client import Client
from appwrite.exception import AppwriteException
from appwrite.id import ID
from appwrite.query import Query
from appwrite.services.databases import Databases

from skoolresults.config.settings import settings
from skoolresults.core.departments import normalize_department_name
from skoolresults.core.grades import GradingScale, resolve_grade, validate_grading_scales
from skoolresults.core.mock import (
    CORE_SUBJECTS,
    ELECTIVE_SUBJECTS,
    aggregate,
    raw_average,
    resolve_subject_key,
    summarize_session,
)
from skoolresults.core.ranking import (
    RankingResult,
    StudentTotal,
    compute_positions,
    compute_subject_positions,
    student_total,
)
from skoolresults.core.weighting import (
    ENTRY_KEYS,
    AssessmentScheme,
    SubjectScoreEntry,
    compute_weighted_total,
    to_score,
    validate_scheme,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class ResultsServiceError(Exception):
    pass


class ResultsService:
    def __init__(
        self,
        endpoint: str,
        project_id: str,
        api_key: str,
        database_id: str,
        ca_types_collection_id: str,
        grading_scales_collection_id: str,
        results_collection_id: str,
        subject_marks_collection_id: str,
        mock_results_collection_id: str,
    ) -> None:
        if not endpoint:
            raise ResultsServiceError("Missing APPWRITE_ENDPOINT in environment")
        if not project_id:
            raise ResultsServiceError("Missing APPWRITE_PROJECT_ID in environment")
        if not api_key:
            raise ResultsServiceError("Missing APPWRITE_API_KEY in environment")
        if not database_id:
            raise ResultsServiceError("Missing APPWRITE_DATABASE_ID in environment")

        self.database_id = database_id
        self.ca_types_collection_id = ca_types_collection_id
        self.grading_scales_collection_id = grading_scales_collection_id
        self.results_collection_id = results_collection_id
        self.subject_marks_collection_id = subject_marks_collection_id
        self.mock_results_collection_id = mock_results_collection_id

        client = Client()
        client.set_endpoint(endpoint.rstrip("/"))
        client.set_project(project_id)
        client.set_key(api_key)

        self.db = Databases(client)

    @classmethod
    def from_settings(cls) -> "ResultsService":
        return cls(
            endpoint=settings.appwrite_endpoint,
            project_id=settings.appwrite_project_id,
            api_key=settings.appwrite_api_key,
            database_id=settings.appwrite_database_id,
            ca_types_collection_id=settings.appwrite_ca_types_collection_id,
            grading_scales_collection_id=settings.appwrite_grading_scales_collection_id,
            results_collection_id=settings.appwrite_results_collection_id,
            subject_marks_collection_id=settings.appwrite_subject_marks_collection_id,
            mock_results_collection_id=settings.appwrite_mock_results_collection_id,
        )

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _raw_score(value: Any) -> Optional[float]:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
            return None
        return float(value)

    def _list_documents(self, collection_id: str, queries: List[str]) -> List[Dict]:
        try:
            result = self.db.list_documents(self.database_id, collection_id, queries=queries)
            return list(result.get("documents", []))
        except AppwriteException as exc:
            raise ResultsServiceError(str(exc)) from exc

    def _list_all(self, collection_id: str, queries: List[str]) -> List[Dict]:
        documents: List[Dict] = []
        offset = 0
        while True:
            page = self._list_documents(
                collection_id,
                [*queries, Query.limit(PAGE_SIZE), Query.offset(offset)],
            )
            documents.extend(page)
            if len(page) < PAGE_SIZE:
                return documents
            offset += PAGE_SIZE

    def _create_document(self, collection_id: str, data: Dict, document_id: Optional[str] = None) -> Dict:
        try:
            return self.db.create_document(
                self.database_id,
                collection_id,
                document_id or ID.unique(),
                data,
            )
        except AppwriteException as exc:
            raise ResultsServiceError(str(exc)) from exc

    def _get_document(self, collection_id: str, document_id: str) -> Dict:
        try:
            return self.db.get_document(self.database_id, collection_id, document_id)
        except AppwriteException as exc:
            raise ResultsServiceError(str(exc)) from exc

    def _update_document(self, collection_id: str, document_id: str, data: Dict) -> Dict:
        try:
            return self.db.update_document(self.database_id, collection_id, document_id, data)
        except AppwriteException as exc:
            raise ResultsServiceError(str(exc)) from exc

    def _delete_document(self, collection_id: str, document_id: str) -> None:
        try:
            self.db.delete_document(self.database_id, collection_id, document_id)
        except AppwriteException as exc:
            raise ResultsServiceError(str(exc)) from exc

    def _find_first(self, collection_id: str, queries: List[str]) -> Optional[Dict]:
        docs = self._list_documents(collection_id, [*queries, Query.limit(1)])
        if not docs:
            return None
        return docs[0]

    def _upsert(self, collection_id: str, queries: List[str], payload: Dict) -> Dict:
        existing = self._find_first(collection_id, queries)
        if existing:
            return self._update_document(collection_id, existing["$id"], payload)
        return self._create_document(collection_id, payload)

    # Assessment schemes

    def get_assessment_scheme(self, ca_type_id: str) -> AssessmentScheme:
        doc = self._get_document(self.ca_types_collection_id, ca_type_id)
        configuration = doc.get("configuration") or {}
        if isinstance(configuration, str):
            try:
                configuration = json.loads(configuration)
            except ValueError as exc:
                raise ResultsServiceError(f"Invalid configuration for assessment type {ca_type_id}") from exc
        if not isinstance(configuration, dict):
            raise ResultsServiceError(f"Invalid configuration for assessment type {ca_type_id}")

        try:
            return AssessmentScheme.from_mapping(configuration, name=str(doc.get("name") or ""))
        except ValueError as exc:
            raise ResultsServiceError(str(exc)) from exc

    def save_assessment_scheme(self, name: str, configuration: Mapping[str, Any], description: str = "") -> str:
        if not name.strip():
            raise ResultsServiceError("Assessment type name is required.")
        try:
            scheme = AssessmentScheme.from_mapping(configuration, name=name.strip())
        except ValueError as exc:
            raise ResultsServiceError(str(exc)) from exc

        errors = validate_scheme(scheme)
        if errors:
            raise ResultsServiceError("; ".join(errors))

        doc = self._create_document(
            self.ca_types_collection_id,
            {
                "name": scheme.name,
                "description": description,
                "configuration": json.dumps(scheme.to_mapping()),
                "created_at": self._now_iso(),
            },
        )
        logger.info("Saved assessment type %s (%s)", doc["$id"], scheme.name)
        return doc["$id"]

    # Grading scales

    def _scale_queries(self, department: str, academic_year: str, term: str) -> List[str]:
        return [
            Query.equal("department", [normalize_department_name(department)]),
            Query.equal("academic_year", [academic_year]),
            Query.equal("term", [term]),
        ]

    def list_grading_scales(self, department: str, academic_year: str, term: str) -> List[GradingScale]:
        docs = self._list_all(
            self.grading_scales_collection_id,
            [
                *self._scale_queries(department, academic_year, term),
                Query.order_desc("from_percentage"),
            ],
        )
        return [GradingScale.from_mapping(doc) for doc in docs]

    def save_grading_scales(
        self,
        department: str,
        academic_year: str,
        term: str,
        scales: List[GradingScale],
    ) -> int:
        errors = validate_grading_scales(scales)
        if errors:
            raise ResultsServiceError("; ".join(errors))

        department_name = normalize_department_name(department)
        if not department_name:
            raise ResultsServiceError("Department is required.")

        existing = self._list_all(
            self.grading_scales_collection_id,
            self._scale_queries(department, academic_year, term),
        )
        # New bands are written before the old ones are removed so a failed
        # write leaves the previous scale in place.
        created: List[str] = []
        try:
            for scale in scales:
                doc = self._create_document(
                    self.grading_scales_collection_id,
                    {
                        "department": department_name,
                        "academic_year": academic_year,
                        "term": term,
                        "from_percentage": scale.from_percentage,
                        "to_percentage": scale.to_percentage,
                        "grade": scale.grade.strip(),
                        "remark": scale.remark.strip(),
                    },
                )
                created.append(doc["$id"])
        except ResultsServiceError:
            logger.error(
                "Saving grading bands for %s %s %s failed, removing %d new bands",
                department_name,
                academic_year,
                term,
                len(created),
            )
            for document_id in created:
                try:
                    self._delete_document(self.grading_scales_collection_id, document_id)
                except ResultsServiceError as exc:
                    logger.error("Could not remove grading band %s: %s", document_id, exc)
            raise

        for doc in existing:
            self._delete_document(self.grading_scales_collection_id, doc["$id"])
        logger.info(
            "Replaced %d grading bands with %d for %s %s %s",
            len(existing),
            len(scales),
            department_name,
            academic_year,
            term,
        )
        return len(scales)

    # Subject marks and positions

    def _subject_marks(self, result_id: str) -> List[Dict]:
        return self._list_all(
            self.subject_marks_collection_id,
            [Query.equal("result_id", [result_id])],
        )

    def save_subject_marks(
        self,
        result_id: str,
        subject_id: str,
        entry: SubjectScoreEntry,
        ca_type_id: Optional[str] = None,
        department: str = "",
    ) -> Dict:
        result = self._get_document(self.results_collection_id, result_id)
        ca_type_id = ca_type_id or result.get("ca_type_id")
        if not ca_type_id:
            raise ResultsServiceError("No assessment type selected for this result.")

        scheme = self.get_assessment_scheme(ca_type_id)
        total = compute_weighted_total(entry, scheme)

        scales: List[GradingScale] = []
        if department:
            scales = self.list_grading_scales(
                department,
                str(result.get("academic_year", "")),
                str(result.get("term", "")),
            )
        grade = resolve_grade(total, scales)

        payload: Dict[str, Any] = {
            "result_id": result_id,
            "subject_id": subject_id,
            "total_score": total,
            "grade": grade.grade,
            "remark": grade.remark,
            "updated_at": self._now_iso(),
        }
        for key in ENTRY_KEYS:
            payload[key] = self._raw_score(getattr(entry, key))

        mark = self._upsert(
            self.subject_marks_collection_id,
            [
                Query.equal("result_id", [result_id]),
                Query.equal("subject_id", [subject_id]),
            ],
            payload,
        )

        result_total = round(sum(to_score(m.get("total_score")) for m in self._subject_marks(result_id)), 2)
        self._update_document(self.results_collection_id, result_id, {"total_score": result_total})

        payload["id"] = mark["$id"]
        return payload

    def _cohort_rows(self, class_id: str, academic_year: str, term: str) -> List[Dict]:
        return self._list_all(
            self.results_collection_id,
            [
                Query.equal("class_id", [class_id]),
                Query.equal("academic_year", [academic_year]),
                Query.equal("term", [term]),
            ],
        )

    def list_cohort_totals(self, class_id: str, academic_year: str, term: str) -> List[StudentTotal]:
        totals: List[StudentTotal] = []
        for row in self._cohort_rows(class_id, academic_year, term):
            stored = row.get("total_score")
            subject_totals: List[Optional[float]] = []
            if not to_score(stored):
                subject_totals = [mark.get("total_score") for mark in self._subject_marks(row["$id"])]
            totals.append(StudentTotal(row["$id"], student_total(stored, subject_totals)))
        return totals

    def calculate_class_positions(self, class_id: str, academic_year: str, term: str) -> RankingResult:
        cohort = self.list_cohort_totals(class_id, academic_year, term)
        ranking = compute_positions(cohort)
        logger.info(
            "Class %s %s %s: ranked %d of %d results",
            class_id,
            academic_year,
            term,
            ranking.total_students,
            len(cohort),
        )
        return ranking

    def calculate_overall_position(
        self,
        result_id: str,
        class_id: Optional[str],
        academic_year: str,
        term: str,
    ) -> Dict[str, Any]:
        if not class_id:
            return {"position": "", "total_students": 0}
        ranking = self.calculate_class_positions(class_id, academic_year, term)
        return {
            "position": ranking.position_for(result_id),
            "total_students": ranking.total_students,
        }

    def calculate_subject_positions(self, class_id: str, academic_year: str, term: str) -> Dict[str, RankingResult]:
        by_subject: Dict[str, List[StudentTotal]] = {}
        mark_ids: Dict[Tuple[str, str], str] = {}
        for row in self._cohort_rows(class_id, academic_year, term):
            for mark in self._subject_marks(row["$id"]):
                subject_id = str(mark.get("subject_id", ""))
                by_subject.setdefault(subject_id, []).append(StudentTotal(row["$id"], mark.get("total_score")))
                mark_ids[(subject_id, row["$id"])] = mark["$id"]

        rankings = compute_subject_positions(by_subject)
        for (subject_id, result_id), mark_id in mark_ids.items():
            rank = rankings[subject_id].ranks.get(result_id)
            self._update_document(self.subject_marks_collection_id, mark_id, {"position": rank})
        return rankings

    # Mock exams

    def save_mock_scores(
        self,
        session_id: str,
        student_id: str,
        scores: Mapping[str, Optional[float]],
        class_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not session_id:
            raise ResultsServiceError("No session selected")

        keyed: Dict[str, float] = {}
        for name, value in scores.items():
            key = name if name in CORE_SUBJECTS or name in ELECTIVE_SUBJECTS else resolve_subject_key(name)
            raw = self._raw_score(value)
            if key is None or raw is None:
                logger.debug("Skipping mock score %r=%r for student %s", name, value, student_id)
                continue
            keyed[key] = max(0.0, min(raw, 100.0))

        raw_score = raw_average(keyed)
        aggregate_value = aggregate(keyed)

        payload: Dict[str, Any] = {
            "session_id": session_id,
            "student_id": student_id,
            "scores": json.dumps(keyed, sort_keys=True),
            "total_score": raw_score,
            "aggregate": aggregate_value,
            "updated_at": self._now_iso(),
        }
        if class_id:
            payload["class_id"] = class_id

        doc = self._upsert(
            self.mock_results_collection_id,
            [
                Query.equal("session_id", [session_id]),
                Query.equal("student_id", [student_id]),
            ],
            payload,
        )
        return {"id": doc["$id"], "raw_score": raw_score, "aggregate": aggregate_value}

    def list_mock_results(self, session_id: str) -> List[Dict]:
        docs = self._list_all(
            self.mock_results_collection_id,
            [Query.equal("session_id", [session_id])],
        )

        results: List[Dict] = []
        for doc in docs:
            row = dict(doc)
            row["id"] = row["$id"]
            scores = row.get("scores")
            if isinstance(scores, str) and scores:
                try:
                    row["scores"] = json.loads(scores)
                except ValueError:
                    row["scores"] = {}
            elif not isinstance(scores, dict):
                row["scores"] = {}
            results.append(row)

        results.sort(key=lambda row: (row.get("aggregate") is None, row.get("aggregate") or 0))
        return results

    def mock_session_summary(self, session_id: str) -> Dict[str, Any]:
        return summarize_session(self.list_mock_results(session_id))
