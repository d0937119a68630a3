"""
mastery_grader.py - Mastery test grading and per-unit aggregation

Provides:
- grade(questions, answers, judge) - judge every answer, aggregate per unit and subtopic
- submit_mastery_test(db, student_id, topic_id, questions, answers, judge, catalog) - gate coverage, grade and persist atomically
"""

import asyncio
import inspect
import json
import logging
from typing import Awaitable, Callable, Optional, Union

from mastery_engine.config import settings
from mastery_engine.db import store
from mastery_engine.db.database import transaction
from mastery_engine.errors import InvalidInput, JudgeTimeout, SchedulingConflict
from mastery_engine.models.assessment import (
    AnswerSubmission,
    GradedAnswer,
    MasteryResult,
    SubtopicCoverage,
    UnitScore,
)
from mastery_engine.models.competency import Classification, classify, percent
from mastery_engine.models.curriculum import Question
from mastery_engine.services.coverage_validator import require_coverage
from mastery_engine.services.curriculum import CurriculumCatalog

logger = logging.getLogger(__name__)

Judge = Callable[[str, str], Union[bool, Awaitable[bool]]]


async def _call_judge(judge: Judge, student_answer: str, correct_answer: str) -> bool:
    if inspect.iscoroutinefunction(judge) or inspect.iscoroutinefunction(getattr(judge, "__call__", None)):
        outcome = await judge(student_answer, correct_answer)
    else:
        outcome = await asyncio.to_thread(judge, student_answer, correct_answer)
        if inspect.isawaitable(outcome):
            outcome = await outcome
    return bool(outcome)


async def _judge_one(
    question: Question,
    submission: Optional[AnswerSubmission],
    judge: Judge,
    semaphore: asyncio.Semaphore,
    timeout: float,
) -> GradedAnswer:
    answer = submission.answer if submission else ""
    graded = GradedAnswer(
        question_id=question.id,
        user_answer=answer,
        correct_answer=question.correct_answer,
        time_spent_seconds=submission.time_spent_seconds if submission else 0,
    )
    if not answer or not answer.strip():
        return graded

    async with semaphore:
        try:
            graded.is_correct = await asyncio.wait_for(
                _call_judge(judge, answer, question.correct_answer),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            err = JudgeTimeout(f"Judge timed out after {timeout}s", details={"question_id": question.id})
            logger.error(f"Judge timeout on question {question.id}: {err}")
            graded.judge_error = str(err)
        except Exception as e:
            logger.error(f"Judge failed on question {question.id}: {e}")
            graded.judge_error = f"{type(e).__name__}: {e}"
    return graded


def _index_answers(questions: list[Question], answers: list[AnswerSubmission]) -> dict[str, AnswerSubmission]:
    question_ids = {q.id for q in questions}
    if len(question_ids) != len(questions):
        raise InvalidInput("Question ids must be unique")
    by_question: dict[str, AnswerSubmission] = {}
    for submission in answers:
        if submission.question_id not in question_ids:
            raise InvalidInput(
                f"Answer references unknown question {submission.question_id}",
                details={"question_id": submission.question_id},
            )
        if submission.question_id in by_question:
            raise InvalidInput(
                f"Duplicate answer for question {submission.question_id}",
                details={"question_id": submission.question_id},
            )
        by_question[submission.question_id] = submission
    return by_question


def aggregate(
    questions: list[Question],
    graded: list[GradedAnswer],
    catalog: Optional[CurriculumCatalog] = None,
    topic_id: Optional[str] = None,
) -> MasteryResult:
    """Roll graded answers up into per-unit and per-subtopic percentages.

    Units are reported in first-cited order. A unit cited several times by
    the same question counts once for that question.
    """
    unit_counts: dict[str, dict] = {}
    subtopic_counts: dict[str, dict] = {}

    for question, answer in zip(questions, graded):
        for unit_id in question.referenced_unit_ids():
            counts = unit_counts.setdefault(unit_id, {"correct": 0, "total": 0})
            counts["total"] += 1
            if answer.is_correct:
                counts["correct"] += 1
        if question.subtopic_id:
            counts = subtopic_counts.setdefault(question.subtopic_id, {"correct": 0, "total": 0})
            counts["total"] += 1
            if answer.is_correct:
                counts["correct"] += 1

    unit_scores = []
    for unit_id, counts in unit_counts.items():
        pct = percent(counts["correct"], counts["total"])
        unit = catalog.unit(unit_id) if catalog else None
        unit_scores.append(UnitScore(
            unit_id=unit_id,
            unit_code=unit.code if unit else None,
            correct=counts["correct"],
            total=counts["total"],
            percentage=pct,
            classification=classify(pct),
        ))

    correct_count = sum(1 for a in graded if a.is_correct)
    return MasteryResult(
        topic_id=topic_id,
        overall_percentage=percent(correct_count, len(questions)),
        correct_count=correct_count,
        total_questions=len(questions),
        unit_scores=unit_scores,
        weak_unit_ids=[s.unit_id for s in unit_scores if s.classification == Classification.WEAK],
        needs_review_unit_ids=[s.unit_id for s in unit_scores if s.classification == Classification.NEEDS_REVIEW],
        strong_unit_ids=[s.unit_id for s in unit_scores if s.classification == Classification.STRONG],
        subtopic_coverage=[
            SubtopicCoverage(
                subtopic_id=sid,
                correct=c["correct"],
                total=c["total"],
                percentage=percent(c["correct"], c["total"]),
            )
            for sid, c in subtopic_counts.items()
        ],
        graded_answers=graded,
    )


async def grade(
    questions: list[Question],
    answers: list[AnswerSubmission],
    judge: Judge,
    *,
    catalog: Optional[CurriculumCatalog] = None,
    topic_id: Optional[str] = None,
    concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
) -> MasteryResult:
    """Judge every answer and aggregate the result.

    Judge calls run concurrently (at most `concurrency` at a time, each
    bounded by `timeout` seconds). A failed or timed-out call marks that
    question incorrect and is recorded on the graded answer; grading itself
    always completes. Aggregation starts only once every call has finished,
    so the result does not depend on completion order.
    """
    if not questions:
        raise InvalidInput("Cannot grade an empty question list")
    by_question = _index_answers(questions, answers)

    semaphore = asyncio.Semaphore(concurrency or settings.judge_concurrency)
    timeout = timeout if timeout is not None else settings.judge_timeout_seconds

    graded = await asyncio.gather(*[
        _judge_one(q, by_question.get(q.id), judge, semaphore, timeout)
        for q in questions
    ])

    failures = sum(1 for g in graded if g.judge_error)
    if failures:
        logger.warning(f"Grading finished with {failures}/{len(questions)} judge failures")

    return aggregate(questions, list(graded), catalog=catalog, topic_id=topic_id)


async def submit_mastery_test(
    db,
    student_id: str,
    topic_id: str,
    questions: list[Question],
    answers: list[AnswerSubmission],
    judge: Judge,
    catalog: CurriculumCatalog,
) -> dict:
    """Grade a mastery test, persist it in one transaction, then update the learning path.

    The questions must pass coverage validation for the topic first; a test
    that fails is rejected before any answer is judged.
    """
    from mastery_engine.services.plan_updater import on_mastery_test_graded

    catalog.topic(topic_id)
    for q in questions:
        if q.topic_id != topic_id:
            raise InvalidInput(
                f"Question {q.id} belongs to topic {q.topic_id}, not {topic_id}",
                details={"question_id": q.id},
            )
    require_coverage(questions, [u.id for u in catalog.units_for_topic(topic_id)], catalog)

    result = await grade(questions, answers, judge, catalog=catalog, topic_id=topic_id)

    async with transaction(db):
        attempt_id = await store.insert_attempt(
            db,
            student_id=student_id,
            topic_id=topic_id,
            kind="mastery_test",
            answers=[a.model_dump() for a in result.graded_answers],
            score=result.overall_percentage,
        )
        result_id = await store.insert_mastery_result(db, attempt_id, student_id, result)
        for score in result.unit_scores:
            await store.upsert_competency(db, student_id, score.unit_id, score.correct, score.total)
        for coverage in result.subtopic_coverage:
            await store.upsert_subtopic_progress(
                db, student_id, coverage.subtopic_id,
                mastery=coverage.percentage, correct=coverage.correct, answered=coverage.total,
            )

    logger.info(
        f"Mastery test graded for student {student_id} topic {topic_id}: "
        f"{result.correct_count}/{result.total_questions} ({result.overall_percentage}%), "
        f"weak={result.weak_unit_ids}"
    )

    # The graded test is already stored; a path conflict must not lose it
    path_update_error = None
    try:
        path_update = await on_mastery_test_graded(db, student_id, result, catalog=catalog)
    except SchedulingConflict as e:
        logger.warning(f"Path update failed after mastery test {attempt_id}: {e}")
        path_update, path_update_error = None, str(e)

    return {
        "attempt_id": attempt_id,
        "result_id": result_id,
        "result": json.loads(result.model_dump_json()),
        "path_update": path_update,
        "path_update_error": path_update_error,
    }
