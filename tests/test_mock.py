import unittest

from skoolresults.core.mock import (
    WORST_AGGREGATE,
    aggregate,
    aggregate_grade,
    grade_point,
    raw_average,
    raw_total,
    resolve_subject_key,
    summarize_session,
)


class GradePointTests(unittest.TestCase):
    def test_bands(self):
        cases = [(100, 1), (80, 1), (79, 2), (70, 2), (65, 3), (60, 4), (55, 5), (50, 6), (45, 7), (35, 8), (34, 9), (0, 9)]
        for score, point in cases:
            with self.subTest(score=score):
                self.assertEqual(grade_point(score), point)

    def test_out_of_range_scores_are_clamped(self):
        self.assertEqual(grade_point(140), 1)
        self.assertEqual(grade_point(-20), 9)


class AggregateTests(unittest.TestCase):
    def test_core_plus_best_two_electives(self):
        scores = {
            "mathematics": 90,
            "english": 85,
            "social": 70,
            "science": 60,
            "rme": 95,
            "ict": 92,
            "french": 40,
        }
        self.assertEqual(aggregate(scores), 10)

    def test_no_scores_is_worst_case(self):
        self.assertEqual(aggregate({}), 54)
        self.assertEqual(WORST_AGGREGATE, 54)

    def test_missing_elective_slot_counts_as_worst(self):
        scores = {"mathematics": 80, "english": 80, "social": 80, "science": 80, "ict": 80}
        self.assertEqual(aggregate(scores), 4 + 1 + 9)

    def test_none_core_score_counts_as_worst(self):
        scores = {"mathematics": None, "english": 80, "social": 80, "science": 80, "rme": 80, "ict": 80}
        self.assertEqual(aggregate(scores), 9 + 3 + 2)


class RawScoreTests(unittest.TestCase):
    def test_zero_scores_are_ignored(self):
        self.assertEqual(raw_average({"a": 100, "b": 0, "c": 50}), 75)
        self.assertEqual(raw_total({"a": 100, "b": 0, "c": 50}), 150)

    def test_average_rounds_half_up(self):
        self.assertEqual(raw_average({"a": 70, "b": 71}), 71)

    def test_nothing_entered(self):
        self.assertEqual(raw_average({}), 0)
        self.assertEqual(raw_average({"a": None, "b": 0}), 0)


class AggregateGradeTests(unittest.TestCase):
    def test_bece_bands(self):
        self.assertEqual(aggregate_grade(6), ("A", True))
        self.assertEqual(aggregate_grade(24), ("C", True))
        self.assertEqual(aggregate_grade(30), ("D", True))
        self.assertEqual(aggregate_grade(31), ("E", False))
        self.assertEqual(aggregate_grade(54), ("F", False))

    def test_wassce_bands(self):
        self.assertEqual(aggregate_grade(24, "wassce"), ("B", True))
        self.assertEqual(aggregate_grade(40, "wassce"), ("D", False))
        self.assertEqual(aggregate_grade(40, "unknown"), ("D", False))


class SubjectKeyTests(unittest.TestCase):
    def test_aliases(self):
        self.assertEqual(resolve_subject_key("English Language"), "english")
        self.assertEqual(resolve_subject_key("MATHS"), "mathematics")
        self.assertEqual(resolve_subject_key("Rel. & Moral Edu."), "rme")
        self.assertEqual(resolve_subject_key("Ghanaian  Language"), "gh_language")
        self.assertEqual(resolve_subject_key("creative_arts"), "creative_arts")

    def test_unknown_subject(self):
        self.assertIsNone(resolve_subject_key("Physics"))
        self.assertIsNone(resolve_subject_key("  "))
        self.assertIsNone(resolve_subject_key(None))


class SessionSummaryTests(unittest.TestCase):
    def test_summary(self):
        rows = [
            {"aggregate": 10, "total_score": 80},
            {"aggregate": 30, "total_score": 61},
            {"aggregate": None, "total_score": None},
        ]
        self.assertEqual(
            summarize_session(rows),
            {"students": 3, "average_score": 47, "average_aggregate": 31.3, "pass_rate": 33},
        )

    def test_empty_session(self):
        self.assertEqual(
            summarize_session([]),
            {"students": 0, "average_score": 0, "average_aggregate": None, "pass_rate": 0},
        )


if __name__ == "__main__":
    unittest.main()
