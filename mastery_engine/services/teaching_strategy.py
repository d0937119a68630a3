"""Retry strategy for practice questions.

Each (student, question family) pair moves through an explicit state
machine keyed by consecutive failures:

    FIRST_ATTEMPT  --fail-->  SECOND_ATTEMPT  --fail-->  ESCALATED
          ^                                                  |
          +------------------- correct answer ---------------+

SECOND_ATTEMPT re-explains the idea a different way; ESCALATED walks
through a fully worked example and steps the difficulty down one tier.
Tier advancement follows difficulty_engine.check_mastery().
"""

import logging
from enum import Enum

from mastery_engine.db import store
from mastery_engine.db.database import transaction
from mastery_engine.models.path import Difficulty
from mastery_engine.services.difficulty_engine import check_mastery, should_fast_track

logger = logging.getLogger(__name__)


class AttemptStage(str, Enum):
    FIRST_ATTEMPT = "first_attempt"
    SECOND_ATTEMPT = "second_attempt"
    ESCALATED = "escalated"


EXPLANATION_FOR_STAGE = {
    AttemptStage.FIRST_ATTEMPT: "hint",
    AttemptStage.SECOND_ATTEMPT: "alternative_explanation",
    AttemptStage.ESCALATED: "worked_example",
}

_EASIER = {
    Difficulty.HARD: Difficulty.MEDIUM,
    Difficulty.MEDIUM: Difficulty.EASY,
    Difficulty.EASY: Difficulty.EASY,
    Difficulty.EXAM: Difficulty.HARD,
}


def next_stage(consecutive_failures: int) -> AttemptStage:
    if consecutive_failures <= 0:
        return AttemptStage.FIRST_ATTEMPT
    if consecutive_failures == 1:
        return AttemptStage.SECOND_ATTEMPT
    return AttemptStage.ESCALATED


def advance(state: dict, is_correct: bool) -> dict:
    """Pure transition: fold one attempt into a strategy state."""
    difficulty = Difficulty(state.get("difficulty", Difficulty.EASY.value))
    attempts = state.get("attempts", 0) + 1
    correct = state.get("correct", 0) + (1 if is_correct else 0)

    if is_correct:
        failures = 0
        streak = state.get("consecutive_correct", 0) + 1
    else:
        failures = state.get("consecutive_failures", 0) + 1
        streak = 0

    stage = next_stage(failures)
    mastery = check_mastery(difficulty, streak, attempts, correct)

    if is_correct and mastery["is_mastered"] and mastery["next_difficulty"] != difficulty:
        difficulty = mastery["next_difficulty"]
        # New tier starts a fresh count
        attempts, correct, streak = 0, 0, 0
    elif stage == AttemptStage.ESCALATED and failures == 2 and difficulty != Difficulty.EASY:
        difficulty = _EASIER[difficulty]

    return {
        "stage": stage.value,
        "consecutive_failures": failures,
        "consecutive_correct": streak,
        "attempts": attempts,
        "correct": correct,
        "difficulty": difficulty.value,
        "mastery": mastery,
    }


async def _subtopic_mastery(db, student_id: str, question_family: str) -> int:
    """Stored mastery for a question family named after a subtopic, else 0."""
    for row in await store.get_subtopic_progress(db, student_id):
        if row["subtopic_id"] == question_family:
            return row["mastery_percentage"]
    return 0


async def record_attempt(
    db,
    student_id: str,
    question_family: str,
    is_correct: bool,
    starting_difficulty: Difficulty = Difficulty.EASY,
) -> dict:
    """Persist one practice attempt and return the strategy to use next.

    A family seen for the first time starts at starting_difficulty, fast-tracked
    by the student's mastery of the subtopic of the same id.
    """
    async with transaction(db):
        state = await store.get_strategy_state(db, student_id, question_family)
        if state is None:
            existing = await _subtopic_mastery(db, student_id, question_family)
            state = {"difficulty": should_fast_track(starting_difficulty, existing).value}
        updated = advance(state, is_correct)
        await store.upsert_strategy_state(db, student_id, question_family, updated)

    stage = AttemptStage(updated["stage"])
    if stage == AttemptStage.ESCALATED:
        logger.info(f"Student {student_id} escalated on {question_family} after {updated['consecutive_failures']} misses")

    return {
        "question_family": question_family,
        "stage": stage.value,
        "explanation": EXPLANATION_FOR_STAGE[stage],
        "difficulty": updated["difficulty"],
        "consecutive_failures": updated["consecutive_failures"],
        "consecutive_correct": updated["consecutive_correct"],
        "mastery": {
            "is_mastered": updated["mastery"]["is_mastered"],
            "progress": updated["mastery"]["progress"],
            "progress_type": updated["mastery"]["progress_type"],
        },
    }
