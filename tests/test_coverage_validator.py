"""Tests for mastery test coverage validation."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from mastery_engine.errors import ValidationFailure
from mastery_engine.models.curriculum import Question, SolutionStep
from mastery_engine.services import coverage_validator as cv

REQUIRED = ["quad-def", "quad-zero-product", "quad-abc", "quad-disc"]


def _valid_questions():
    return [
        Question(
            id="q1",
            topic_id="quadratics",
            subtopic_id="quad-factoring",
            primary_unit_id="quad-zero-product",
            supporting_unit_ids=["quad-def"],
            steps=[
                SolutionStep(text="Factor", unit_id="quad-zero-product", unit_code="T1"),
                SolutionStep(text="Simplify", unit_id="f-arith", unit_code="F1"),
            ],
        ),
        Question(
            id="q2",
            topic_id="quadratics",
            subtopic_id="quad-formula",
            primary_unit_id="quad-abc",
            steps=[SolutionStep(text="Apply the formula", unit_id="quad-abc", unit_code="M1")],
        ),
        Question(
            id="q3",
            topic_id="quadratics",
            subtopic_id="quad-discriminant",
            primary_unit_id="quad-disc",
            supporting_unit_ids=["quad-abc"],
            is_combination_question=True,
            combined_subtopic_ids=["quad-formula", "quad-discriminant"],
            steps=[
                SolutionStep(text="Compute D", unit_id="quad-disc", unit_code="T2"),
                SolutionStep(text="Solve", unit_id="quad-abc", unit_code="M1"),
            ],
        ),
    ]


def _reasons(report):
    return [v.reason for v in report.violations]


class TestCoverageRules:

    def test_valid_assessment_passes(self, catalog):
        report = cv.validate_coverage(_valid_questions(), REQUIRED, catalog)
        assert report.ok is True
        assert report.violations == []

    def test_missing_primary_unit(self, catalog):
        questions = _valid_questions()
        questions[1].primary_unit_id = ""
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert not report.ok
        assert cv.MISSING_PRIMARY_UNIT in _reasons(report)
        violation = next(v for v in report.violations if v.reason == cv.MISSING_PRIMARY_UNIT)
        assert violation.question_id == "q2"

    def test_primary_unit_from_other_topic_is_rejected(self, catalog):
        questions = _valid_questions()
        questions[1].primary_unit_id = "lin-balance"
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert cv.PRIMARY_UNIT_NOT_ALLOWED in _reasons(report)

    def test_foundational_units_are_allowed_for_any_topic(self, catalog):
        questions = _valid_questions()
        questions.append(Question(
            id="q4",
            topic_id="quadratics",
            subtopic_id="quad-formula",
            primary_unit_id="f-fractions",
            steps=[SolutionStep(text="Add fractions", unit_id="f-fractions", unit_code="F2")],
        ))
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert report.ok

    def test_step_code_must_match_unit(self, catalog):
        questions = _valid_questions()
        questions[1].steps[0].unit_code = "T9"
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert _reasons(report) == [cv.STEP_CITATION_CODE_MISMATCH]
        assert report.violations[0].unit_id == "quad-abc"

    def test_step_without_citation(self, catalog):
        questions = _valid_questions()
        questions[0].steps.append(SolutionStep(text="Check the answer"))
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert _reasons(report) == [cv.STEP_MISSING_CITATION]

    def test_step_citing_unit_outside_topic(self, catalog):
        questions = _valid_questions()
        questions[0].steps[1] = SolutionStep(text="Balance", unit_id="lin-balance", unit_code="M1")
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert _reasons(report) == [cv.STEP_CITATION_NOT_ALLOWED]

    def test_definition_only_reference_does_not_cover(self, catalog):
        questions = _valid_questions()
        questions[0].supporting_unit_ids = []
        questions[0].definition_unit_ids = ["quad-def"]
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert _reasons(report) == [cv.REQUIRED_UNIT_UNCOVERED]
        assert report.violations[0].unit_id == "quad-def"

    def test_every_uncovered_unit_is_listed(self, catalog):
        report = cv.validate_coverage(_valid_questions()[:1], REQUIRED, catalog)
        uncovered = {v.unit_id for v in report.violations if v.reason == cv.REQUIRED_UNIT_UNCOVERED}
        assert uncovered == {"quad-abc", "quad-disc"}


class TestCombinationRule:

    def test_no_combination_question(self, catalog):
        questions = _valid_questions()
        questions[2].is_combination_question = False
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert _reasons(report) == [cv.NO_COMBINATION_QUESTION]

    def test_combination_flag_with_single_subtopic(self, catalog):
        questions = _valid_questions()
        questions[2].combined_subtopic_ids = []
        questions[2].supporting_unit_ids = []
        questions[2].steps = [SolutionStep(text="Compute D", unit_id="quad-disc", unit_code="T2")]
        questions[1].supporting_unit_ids = ["quad-abc"]
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert _reasons(report) == [cv.NO_COMBINATION_QUESTION]

    def test_declared_subtopics_without_citations_do_not_count(self, catalog):
        questions = _valid_questions()
        # Claims quad-formula but only ever cites the discriminant unit
        questions[2].combined_subtopic_ids = ["quad-discriminant", "quad-formula"]
        questions[2].supporting_unit_ids = []
        questions[2].steps = [SolutionStep(text="Compute D", unit_id="quad-disc", unit_code="T2")]
        questions[1].supporting_unit_ids = ["quad-abc"]
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert _reasons(report) == [cv.NO_COMBINATION_QUESTION]

    def test_cited_unit_subtopics_count(self, catalog):
        questions = _valid_questions()
        # No declared subtopics, but the cited quad-abc unit belongs to quad-formula
        questions[2].combined_subtopic_ids = []
        report = cv.validate_coverage(questions, REQUIRED, catalog)
        assert report.ok


class TestRequireCoverage:

    def test_raises_with_violations(self, catalog):
        questions = _valid_questions()
        questions[2].is_combination_question = False
        with pytest.raises(ValidationFailure) as exc_info:
            cv.require_coverage(questions, REQUIRED, catalog)
        assert exc_info.value.violations[0]["reason"] == cv.NO_COMBINATION_QUESTION

    def test_returns_report_when_valid(self, catalog):
        assert cv.require_coverage(_valid_questions(), REQUIRED, catalog).ok


class TestQuestionDifficulty:

    def test_known_difficulties_are_normalized(self):
        question = Question(id="q1", topic_id="quadratics", difficulty="HARD")
        assert question.difficulty == "hard"
        assert Question(id="q2", topic_id="quadratics").difficulty == "medium"

    def test_unknown_difficulty_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            Question(id="q1", topic_id="quadratics", difficulty="impossible")
