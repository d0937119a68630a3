"""
diagnostic_analyzer.py - Diagnostic responses -> competency profile

Provides:
- analyze(responses, catalog, goal_topic_ids) - pure profile computation
- submit_diagnostic(db, student_id, topic_id, responses, catalog) - analyze and persist
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError

from mastery_engine.db import store
from mastery_engine.db.database import transaction
from mastery_engine.errors import InvalidInput
from mastery_engine.models.assessment import DiagnosticResponse
from mastery_engine.models.competency import (
    CompetencyProfile,
    MisconceptionPattern,
    SubtopicLevel,
    percent,
)
from mastery_engine.models.generated import DiagnosticNarrative
from mastery_engine.services.ai_client import ai_chat
from mastery_engine.services.curriculum import CurriculumCatalog
from mastery_engine.services.prompts import load_prompt

logger = logging.getLogger(__name__)

STRENGTH_FROM = 70
WEAKNESS_BELOW = 50


def _check_responses(responses: list[DiagnosticResponse], catalog: CurriculumCatalog) -> None:
    for r in responses:
        if r.is_correct and not r.answered:
            raise InvalidInput(
                f"Response {r.question_id} is marked correct but has no answer",
                details={"question_id": r.question_id},
            )
        if not catalog.has_subtopic(r.subtopic_id):
            raise InvalidInput(
                f"Response {r.question_id} references unknown subtopic {r.subtopic_id}",
                details={"question_id": r.question_id, "subtopic_id": r.subtopic_id},
            )


def _recommend_start(
    levels: list[SubtopicLevel],
    weaknesses: list[str],
    catalog: CurriculumCatalog,
    goal_topic_ids: list[str],
) -> Optional[str]:
    level_by_subtopic = {entry.subtopic_id: entry.level for entry in levels}

    if weaknesses:
        ranked = sorted(
            weaknesses,
            key=lambda sid: (level_by_subtopic[sid], catalog.subtopic_rank(sid)),
        )
        weak_topics = {catalog.subtopics[sid].topic_id for sid in weaknesses}
        goal_set = set(goal_topic_ids)
        for sid in ranked:
            topic_id = catalog.subtopics[sid].topic_id
            blocking = catalog.prerequisite_closure(topic_id) & goal_set & weak_topics
            if not blocking:
                return sid
        # Every weakness sits behind another weak prerequisite
        return ranked[0]

    for topic_id in catalog.topological_order(goal_topic_ids):
        for sub in catalog.subtopics_for(topic_id):
            if sub.id not in level_by_subtopic:
                return sub.id
    return None


def analyze(
    responses: list[DiagnosticResponse],
    catalog: CurriculumCatalog,
    goal_topic_ids: Optional[list[str]] = None,
) -> CompetencyProfile:
    """Group responses by subtopic and derive levels, strengths and weaknesses.

    Unanswered responses do not count toward a subtopic's level; a subtopic
    with no answered responses is left out of the profile entirely.
    """
    _check_responses(responses, catalog)

    grouped: dict[str, dict] = {}
    for r in responses:
        if not r.answered:
            continue
        group = grouped.setdefault(r.subtopic_id, {"correct": 0, "answered": 0})
        group["answered"] += 1
        if r.is_correct:
            group["correct"] += 1

    ordered_ids = sorted(grouped, key=catalog.subtopic_rank)
    levels = [
        SubtopicLevel(
            subtopic_id=sid,
            level=percent(grouped[sid]["correct"], grouped[sid]["answered"]),
            correct=grouped[sid]["correct"],
            answered=grouped[sid]["answered"],
        )
        for sid in ordered_ids
    ]
    strengths = [entry.subtopic_id for entry in levels if entry.level >= STRENGTH_FROM]
    weaknesses = [entry.subtopic_id for entry in levels if entry.level < WEAKNESS_BELOW]

    patterns: dict[str, MisconceptionPattern] = {}
    for r in responses:
        if r.is_correct or not r.misconception:
            continue
        tag = r.misconception.strip()
        if not tag:
            continue
        if tag in patterns:
            patterns[tag].occurrences += 1
            if r.subtopic_id not in patterns[tag].subtopic_ids:
                patterns[tag].subtopic_ids.append(r.subtopic_id)
        else:
            patterns[tag] = MisconceptionPattern(tag=tag, occurrences=1, subtopic_ids=[r.subtopic_id])

    if goal_topic_ids is None:
        goal_topic_ids = list(dict.fromkeys(
            catalog.subtopics[r.subtopic_id].topic_id for r in responses
        ))

    overall = 0
    if levels:
        overall = percent(sum(entry.level for entry in levels), 100 * len(levels))

    return CompetencyProfile(
        overall_level=overall,
        subtopic_levels=levels,
        strengths=strengths,
        weaknesses=weaknesses,
        misconception_patterns=list(patterns.values()),
        recommended_starting_subtopic_id=_recommend_start(levels, weaknesses, catalog, goal_topic_ids),
    )


def _fallback_narrative(profile: CompetencyProfile, catalog: CurriculumCatalog) -> DiagnosticNarrative:
    def names(ids):
        return ", ".join(catalog.subtopics[sid].name or sid for sid in ids)

    parts = [f"Overall diagnostic level: {profile.overall_level}%."]
    if profile.strengths:
        parts.append(f"Strong in {names(profile.strengths)}.")
    if profile.weaknesses:
        parts.append(f"Needs work on {names(profile.weaknesses)}.")
    return DiagnosticNarrative(overall_assessment=" ".join(parts))


async def narrate_profile(profile: CompetencyProfile, catalog: CurriculumCatalog) -> DiagnosticNarrative:
    """Ask the Content Generator for a short narrative; fall back to a template."""
    prompt = load_prompt("diagnostic_insights.yaml")
    levels = [
        {"subtopic": catalog.subtopics[e.subtopic_id].name or e.subtopic_id, "level": e.level}
        for e in profile.subtopic_levels
    ]
    user_msg = prompt["user_template"].format(
        overall_level=profile.overall_level,
        subtopic_levels=json.dumps(levels, ensure_ascii=False),
        misconceptions=json.dumps([p.tag for p in profile.misconception_patterns], ensure_ascii=False),
    )
    try:
        content = await ai_chat(
            messages=[
                {"role": "system", "content": prompt["system_prompt"]},
                {"role": "user", "content": user_msg},
            ],
            use_case="analysis",
            temperature=0.4,
            json_mode=True,
            max_tokens=600,
        )
        return DiagnosticNarrative.model_validate_json(content)
    except (ValidationError, ValueError) as e:
        logger.warning(f"Diagnostic narrative was malformed, using template: {e}")
    except Exception as e:
        logger.error(f"Diagnostic narrative generation failed, using template: {e}")
    return _fallback_narrative(profile, catalog)


async def submit_diagnostic(
    db,
    student_id: str,
    topic_id: str,
    responses: list[DiagnosticResponse],
    catalog: CurriculumCatalog,
    with_narrative: bool = True,
) -> dict:
    """Analyze a diagnostic and persist the profile, subtopic levels and unit records."""
    catalog.topic(topic_id)
    if not responses:
        raise InvalidInput("Diagnostic has no responses")

    profile = analyze(responses, catalog, goal_topic_ids=[topic_id])
    narrative = await narrate_profile(profile, catalog) if with_narrative else _fallback_narrative(profile, catalog)

    unit_counts: dict[str, dict] = {}
    for r in responses:
        if not r.answered:
            continue
        for unit_id in dict.fromkeys(r.unit_ids):
            counts = unit_counts.setdefault(unit_id, {"correct": 0, "total": 0})
            counts["total"] += 1
            if r.is_correct:
                counts["correct"] += 1

    async with transaction(db):
        attempt_id = await store.insert_attempt(
            db,
            student_id=student_id,
            topic_id=topic_id,
            kind="diagnostic",
            answers=[r.model_dump() for r in responses],
            score=profile.overall_level,
        )
        await store.upsert_learning_profile(db, student_id, topic_id, profile, narrative)
        for entry in profile.subtopic_levels:
            await store.upsert_subtopic_progress(
                db, student_id, entry.subtopic_id,
                mastery=entry.level, correct=entry.correct, answered=entry.answered,
            )
        for unit_id, counts in unit_counts.items():
            await store.upsert_competency(db, student_id, unit_id, counts["correct"], counts["total"])

    logger.info(
        f"Diagnostic stored for student {student_id} topic {topic_id}: "
        f"overall={profile.overall_level} weak={len(profile.weaknesses)} strong={len(profile.strengths)}"
    )

    return {
        "attempt_id": attempt_id,
        "profile": profile.model_dump(),
        "overall_assessment": narrative.overall_assessment,
        "learning_style_notes": narrative.learning_style_notes,
    }
