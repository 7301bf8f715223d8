import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from skoolresults.app import app
from skoolresults.core.grades import GradingScale
from skoolresults.core.ranking import RankingResult
from skoolresults.services.results_service import ResultsServiceError


class GradingEndpointTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_weighted_total(self):
        response = self.client.post(
            "/grading/total",
            json={"scheme": {"ca": 60, "exam": 40}, "entry": {"ca1_score": 80, "exam_score": 50}},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"total": 68.0, "ca_percentage": 60, "exam_percentage": 40})

    def test_weighted_total_rejects_unknown_keys(self):
        response = self.client.post(
            "/grading/total",
            json={"scheme": {"ca": 60, "quiz": 40}, "entry": {"ca1_score": 80}},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("quiz", response.json()["detail"])

    def test_weighted_total_rejects_infinite_weight(self):
        response = self.client.post(
            "/grading/total",
            content='{"scheme": {"ca": Infinity}, "entry": {}}',
            headers={"Content-Type": "application/json"},
        )
        self.assertEqual(response.status_code, 400)

    def test_grade_with_and_without_scales(self):
        response = self.client.post("/grading/grade", json={"total": 79.9})
        self.assertEqual(response.json(), {"grade": "B", "remark": "Very Good"})

        response = self.client.post(
            "/grading/grade",
            json={
                "total": 79.9,
                "scales": [{"from_percentage": 75, "to_percentage": 100, "grade": "1", "remark": "Highest"}],
            },
        )
        self.assertEqual(response.json(), {"grade": "1", "remark": "Highest"})

    def test_validate_scales(self):
        response = self.client.post(
            "/grading/scales/validate",
            json={
                "scales": [
                    {"from_percentage": 80, "to_percentage": 100, "grade": "A", "remark": "Excellent"},
                    {"from_percentage": 70, "to_percentage": 85, "grade": "B", "remark": "Very Good"},
                ]
            },
        )
        self.assertEqual(
            response.json(),
            {"valid": False, "errors": ["Overlapping ranges: 70-85% and 80-100%"]},
        )

    def test_validate_scheme(self):
        response = self.client.post("/grading/schemes/validate", json={"scheme": {"ca": 30, "exam": 70}})
        self.assertEqual(response.json(), {"valid": True, "errors": []})

    def test_positions(self):
        response = self.client.post(
            "/ranking/positions",
            json={"students": [{"id": "A", "total": 90}, {"id": "B", "total": 90}, {"id": "C", "total": 80}, {"id": "D", "total": 0}]},
        )
        self.assertEqual(
            response.json(),
            {"positions": {"A": "1st", "B": "1st", "C": "3rd"}, "total_students": 3},
        )

    def test_mock_aggregate(self):
        response = self.client.post(
            "/mock/aggregate",
            json={
                "scores": {
                    "mathematics": 90,
                    "english": 85,
                    "social": 70,
                    "science": 60,
                    "rme": 95,
                    "ict": 92,
                    "french": 40,
                }
            },
        )
        body = response.json()
        self.assertEqual(body["aggregate"], 10)
        self.assertEqual((body["grade"], body["is_passing"]), ("A", True))
        self.assertEqual(body["grade_points"]["french"], 8)
        self.assertEqual(body["raw_total"], 532)
        self.assertEqual(body["raw_average"], 76)


class ServiceEndpointTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("skoolresults.app.ResultsService")
        self.service_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.service = self.service_cls.from_settings.return_value
        self.client = TestClient(app)

    def test_class_positions(self):
        self.service.calculate_class_positions.return_value = RankingResult(
            positions={"r1": "1st", "r2": "2nd"}, ranks={"r1": 1, "r2": 2}, total_students=2
        )
        response = self.client.get("/classes/c1/positions", params={"academic_year": "2024/2025", "term": "Term 1"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"positions": {"r1": "1st", "r2": "2nd"}, "total_students": 2})
        self.service.calculate_class_positions.assert_called_once_with("c1", "2024/2025", "Term 1")

    def test_overall_position(self):
        self.service.calculate_overall_position.return_value = {"position": "", "total_students": 0}
        response = self.client.get("/results/r1/position", params={"academic_year": "2024/2025", "term": "Term 1"})
        self.assertEqual(response.json(), {"position": "", "total_students": 0})
        self.service.calculate_overall_position.assert_called_once_with("r1", None, "2024/2025", "Term 1")

    def test_list_grading_scales(self):
        self.service.list_grading_scales.return_value = [GradingScale(80, 100, "A", "Excellent")]
        response = self.client.get(
            "/grading-scales", params={"department": "jhs", "academic_year": "2024/2025", "term": "Term 1"}
        )
        self.assertEqual(
            response.json(),
            [{"from_percentage": 80, "to_percentage": 100, "grade": "A", "remark": "Excellent"}],
        )

    def test_save_grading_scales(self):
        self.service.save_grading_scales.return_value = 1
        response = self.client.put(
            "/grading-scales",
            json={
                "department": "jhs",
                "academic_year": "2024/2025",
                "term": "Term 1",
                "scales": [{"from_percentage": 0, "to_percentage": 100, "grade": "P", "remark": "Pass"}],
            },
        )
        self.assertEqual(response.json(), {"status": "saved", "count": 1})
        args = self.service.save_grading_scales.call_args.args
        self.assertEqual(args[3], [GradingScale(0, 100, "P", "Pass")])

    def test_save_subject_marks(self):
        self.service.save_subject_marks.return_value = {"id": "m1", "total_score": 68.0, "grade": "C"}
        response = self.client.post(
            "/results/r1/subjects/maths/marks",
            json={"ca_type_id": "ct1", "entry": {"ca1_score": 80, "exam_score": 50}},
        )
        self.assertEqual(response.json()["id"], "m1")
        args, kwargs = self.service.save_subject_marks.call_args
        self.assertEqual(args[:2], ("r1", "maths"))
        self.assertEqual(args[2].ca1_score, 80)
        self.assertEqual(kwargs, {"ca_type_id": "ct1", "department": ""})

    def test_service_errors_become_bad_requests(self):
        self.service.save_mock_scores.side_effect = ResultsServiceError("No session selected")
        response = self.client.post("/mock-sessions/s1/students/st1/scores", json={"scores": {"english": 50}})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"detail": "No session selected"})

    def test_missing_configuration_becomes_bad_request(self):
        self.service_cls.from_settings.side_effect = ResultsServiceError("Missing APPWRITE_ENDPOINT in environment")
        response = self.client.get("/mock-sessions/s1/summary")
        self.assertEqual(response.status_code, 400)
        self.assertIn("APPWRITE_ENDPOINT", response.json()["detail"])

    def test_mock_summary(self):
        self.service.mock_session_summary.return_value = {
            "students": 2,
            "average_score": 65,
            "average_aggregate": 24.0,
            "pass_rate": 50,
        }
        response = self.client.get("/mock-sessions/s1/summary")
        self.assertEqual(response.json()["pass_rate"], 50)
        self.service.mock_session_summary.assert_called_once_with("s1")


if __name__ == "__main__":
    unittest.main()
