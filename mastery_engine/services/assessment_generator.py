"""
assessment_generator.py - Theory-cited mastery test generation

Asks the Content Generator for a mastery test over one topic, parses the
JSON into typed questions and only hands it out once it passes coverage
validation. Failed drafts are regenerated with the violations fed back
into the prompt.
"""

import json
import logging
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from mastery_engine.config import settings
from mastery_engine.errors import InvalidInput, ValidationFailure
from mastery_engine.models.curriculum import Question
from mastery_engine.models.generated import GeneratedAssessment
from mastery_engine.services.ai_client import ai_chat
from mastery_engine.services.coverage_validator import require_coverage
from mastery_engine.services.curriculum import CurriculumCatalog
from mastery_engine.services.prompts import load_prompt

logger = logging.getLogger(__name__)

Generator = Callable[[list[dict]], Awaitable[str]]


async def _default_generator(messages: list[dict]) -> str:
    return await ai_chat(messages, use_case="generation", temperature=0.7, json_mode=True)


def _unit_lines(units) -> str:
    return "\n".join(
        f"- id={u.id} code={u.code} kind={u.kind} subtopic={u.subtopic_id or '-'}: {u.title}"
        for u in units
    ) or "(none)"


def _build_messages(catalog: CurriculumCatalog, topic_id: str, question_count: int, feedback: str) -> list[dict]:
    prompt = load_prompt("mastery_test.yaml")
    topic = catalog.topic(topic_id)
    subtopics = "\n".join(f"- id={s.id}: {s.name}" for s in catalog.subtopics_for(topic_id)) or "(none)"
    user_msg = prompt["user_template"].format(
        topic_name=topic.name or topic.id,
        question_count=question_count,
        subtopics=subtopics,
        topic_units=_unit_lines(catalog.units_for_topic(topic_id)),
        foundational_units=_unit_lines(catalog.foundational_units()),
        feedback=feedback,
    )
    return [
        {"role": "system", "content": prompt["system_prompt"]},
        {"role": "user", "content": user_msg},
    ]


def _feedback_from(violations: list[dict]) -> str:
    lines = [f"- {v.get('reason')}: {v.get('detail') or ''} (unit={v.get('unit_id')}, question={v.get('question_id')})"
             for v in violations[:15]]
    return "\nYour previous draft was rejected. Fix these problems:\n" + "\n".join(lines) + "\n"


async def generate_mastery_test(
    catalog: CurriculumCatalog,
    topic_id: str,
    question_count: Optional[int] = None,
    generator: Optional[Generator] = None,
    max_attempts: Optional[int] = None,
) -> list[Question]:
    """Generate a mastery test that covers every unit of the topic.

    Raises ValidationFailure (with the last draft's violations) when no
    draft passes within max_attempts.
    """
    catalog.topic(topic_id)
    question_count = question_count or settings.default_question_count
    if question_count < 2:
        raise InvalidInput("A mastery test needs at least 2 questions")
    generator = generator or _default_generator
    max_attempts = max_attempts or settings.generation_max_attempts

    required = [u.id for u in catalog.units_for_topic(topic_id)]
    feedback = ""
    last_violations: list[dict] = []

    for attempt in range(1, max_attempts + 1):
        content = await generator(_build_messages(catalog, topic_id, question_count, feedback))
        try:
            draft = GeneratedAssessment.model_validate_json(content)
        except ValidationError as e:
            logger.warning(f"Mastery test draft {attempt}/{max_attempts} for {topic_id} is malformed: {e.error_count()} errors")
            last_violations = [{"reason": "malformed_output", "detail": str(err.get("msg")), "unit_id": None,
                                "question_id": None} for err in e.errors()[:10]]
            feedback = _feedback_from(last_violations)
            continue

        questions = draft.to_questions(topic_id)
        try:
            require_coverage(questions, required, catalog)
        except ValidationFailure as e:
            last_violations = e.violations
            logger.warning(
                f"Mastery test draft {attempt}/{max_attempts} for {topic_id} failed coverage: "
                f"{json.dumps([v['reason'] for v in e.violations])}"
            )
            feedback = _feedback_from(last_violations)
            continue

        logger.info(f"Mastery test for {topic_id} accepted on attempt {attempt}: {len(questions)} questions")
        return questions

    raise ValidationFailure(
        f"No mastery test for topic {topic_id} passed validation after {max_attempts} attempts",
        violations=last_violations,
    )
