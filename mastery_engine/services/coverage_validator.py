"""
coverage_validator.py - Traceability gate for generated assessments

A freshly generated mastery test is only accepted when:
1. every question names a primary knowledge unit allowed for its topic
2. every solution step cites an allowed unit by id and matching code
3. the questions together cover every required unit
4. at least one combination question spans two or more subtopics

validate_coverage() is pure and returns a CoverageReport;
require_coverage() raises ValidationFailure with the same violations.
"""

from pydantic import BaseModel
from typing import Optional

from mastery_engine.errors import ValidationFailure
from mastery_engine.models.curriculum import Question
from mastery_engine.services.curriculum import CurriculumCatalog

MISSING_PRIMARY_UNIT = "missing_primary_unit"
PRIMARY_UNIT_NOT_ALLOWED = "primary_unit_not_allowed"
UNIT_NOT_ALLOWED = "unit_not_allowed"
STEP_MISSING_CITATION = "step_missing_citation"
STEP_CITATION_NOT_ALLOWED = "step_citation_not_allowed"
STEP_CITATION_CODE_MISMATCH = "step_citation_code_mismatch"
REQUIRED_UNIT_UNCOVERED = "required_unit_uncovered"
NO_COMBINATION_QUESTION = "no_combination_question"


class CoverageViolation(BaseModel):
    reason: str
    unit_id: Optional[str] = None
    question_id: Optional[str] = None
    detail: str = ""


class CoverageReport(BaseModel):
    ok: bool
    violations: list[CoverageViolation] = []


def _question_subtopics(question: Question, catalog: CurriculumCatalog) -> set[str]:
    """Distinct subtopics of the units a question cites; declared subtopic ids do not count."""
    subtopics = set()
    cited = list(question.referenced_unit_ids())
    cited.extend(step.unit_id for step in question.steps if step.unit_id)
    for unit_id in cited:
        unit = catalog.unit(unit_id)
        if unit is not None and unit.subtopic_id:
            subtopics.add(unit.subtopic_id)
    return subtopics


def _check_question(question: Question, catalog: CurriculumCatalog) -> list[CoverageViolation]:
    violations = []
    allowed = catalog.allowed_units(question.topic_id)

    if not question.primary_unit_id:
        violations.append(CoverageViolation(
            reason=MISSING_PRIMARY_UNIT,
            question_id=question.id,
            detail="question has no primary knowledge unit",
        ))
    elif question.primary_unit_id not in allowed:
        violations.append(CoverageViolation(
            reason=PRIMARY_UNIT_NOT_ALLOWED,
            unit_id=question.primary_unit_id,
            question_id=question.id,
            detail=f"primary unit is not part of topic {question.topic_id} or the foundational pool",
        ))

    for unit_id in [*question.supporting_unit_ids, *question.definition_unit_ids]:
        if unit_id not in allowed:
            violations.append(CoverageViolation(
                reason=UNIT_NOT_ALLOWED,
                unit_id=unit_id,
                question_id=question.id,
                detail="supporting or definition unit is outside the allowed set",
            ))

    for n, step in enumerate(question.steps, start=1):
        if not step.unit_id or not step.unit_code:
            violations.append(CoverageViolation(
                reason=STEP_MISSING_CITATION,
                unit_id=step.unit_id,
                question_id=question.id,
                detail=f"step {n} does not cite a knowledge unit id and code",
            ))
            continue
        unit = allowed.get(step.unit_id)
        if unit is None:
            violations.append(CoverageViolation(
                reason=STEP_CITATION_NOT_ALLOWED,
                unit_id=step.unit_id,
                question_id=question.id,
                detail=f"step {n} cites a unit outside the allowed set",
            ))
        elif unit.code != step.unit_code:
            violations.append(CoverageViolation(
                reason=STEP_CITATION_CODE_MISMATCH,
                unit_id=step.unit_id,
                question_id=question.id,
                detail=f"step {n} cites code {step.unit_code!r}, unit code is {unit.code!r}",
            ))

    return violations


def validate_coverage(
    questions: list[Question],
    required_units: list[str],
    catalog: CurriculumCatalog,
) -> CoverageReport:
    """Check a generated assessment against the four coverage rules."""
    violations: list[CoverageViolation] = []

    for question in questions:
        violations.extend(_check_question(question, catalog))

    covered = set()
    for question in questions:
        covered.add(question.primary_unit_id)
        covered.update(question.supporting_unit_ids)
    for unit_id in dict.fromkeys(required_units):
        if unit_id not in covered:
            violations.append(CoverageViolation(
                reason=REQUIRED_UNIT_UNCOVERED,
                unit_id=unit_id,
                detail="no question uses this unit as primary or supporting",
            ))

    has_combination = any(
        q.is_combination_question and len(_question_subtopics(q, catalog)) >= 2
        for q in questions
    )
    if not has_combination:
        violations.append(CoverageViolation(
            reason=NO_COMBINATION_QUESTION,
            detail="no combination question spans two or more subtopics",
        ))

    return CoverageReport(ok=not violations, violations=violations)


def require_coverage(
    questions: list[Question],
    required_units: list[str],
    catalog: CurriculumCatalog,
) -> CoverageReport:
    """Like validate_coverage() but raises ValidationFailure on any violation."""
    report = validate_coverage(questions, required_units, catalog)
    if not report.ok:
        raise ValidationFailure(
            f"Assessment failed coverage validation ({len(report.violations)} violations)",
            violations=[v.model_dump() for v in report.violations],
        )
    return report
