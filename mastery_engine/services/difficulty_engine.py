"""Difficulty thresholds shared by path scheduling and practice.

Per-tier mastery rules:
    easy / medium  → 3 correct in a row, or 75% over at least 5 attempts
    hard           → 4 correct in a row, or 80% over at least 7 attempts

Topic mastery picks the starting tier of new path nodes, and fast-tracks
strong students past easy work.
"""

import math

from mastery_engine.models.path import Difficulty

MASTERY_THRESHOLDS = {
    Difficulty.EASY: {"required_streak": 3, "required_accuracy": 75, "min_attempts": 5},
    Difficulty.MEDIUM: {"required_streak": 3, "required_accuracy": 75, "min_attempts": 5},
    Difficulty.HARD: {"required_streak": 4, "required_accuracy": 80, "min_attempts": 7},
}

FAST_TRACK_THRESHOLD = 80
MEDIUM_START_THRESHOLD = 50

_NEXT_TIER = {
    Difficulty.EASY: Difficulty.MEDIUM,
    Difficulty.MEDIUM: Difficulty.HARD,
    Difficulty.HARD: Difficulty.EXAM,
}


def starting_difficulty(mastery: int) -> Difficulty:
    """mastery >= 80 → hard, >= 50 → medium, otherwise easy."""
    if mastery >= FAST_TRACK_THRESHOLD:
        return Difficulty.HARD
    if mastery >= MEDIUM_START_THRESHOLD:
        return Difficulty.MEDIUM
    return Difficulty.EASY


def should_fast_track(current: Difficulty, existing_mastery: int) -> Difficulty:
    """Skip ahead for students who already know the material."""
    if existing_mastery >= FAST_TRACK_THRESHOLD:
        return Difficulty.HARD
    if existing_mastery >= 60 and current == Difficulty.EASY:
        return Difficulty.MEDIUM
    return current


def check_mastery(
    difficulty: Difficulty,
    consecutive_correct: int,
    total_attempts: int,
    correct_attempts: int,
) -> dict:
    """Has the student mastered the current tier?

    Returns dict with is_mastered, progress (0-100), progress_type
    ("streak" or "accuracy") and next_difficulty.
    """
    if difficulty == Difficulty.EXAM:
        return {"is_mastered": True, "progress": 100, "progress_type": "streak", "next_difficulty": Difficulty.EXAM}

    threshold = MASTERY_THRESHOLDS[difficulty]
    accuracy = (correct_attempts / total_attempts) * 100 if total_attempts > 0 else 0

    if consecutive_correct >= threshold["required_streak"]:
        return {
            "is_mastered": True,
            "progress": 100,
            "progress_type": "streak",
            "next_difficulty": _NEXT_TIER[difficulty],
        }

    if total_attempts >= threshold["min_attempts"] and accuracy >= threshold["required_accuracy"]:
        return {
            "is_mastered": True,
            "progress": 100,
            "progress_type": "accuracy",
            "next_difficulty": _NEXT_TIER[difficulty],
        }

    streak_progress = consecutive_correct / threshold["required_streak"] * 100
    if total_attempts >= threshold["min_attempts"]:
        accuracy_progress = accuracy / threshold["required_accuracy"] * 100
    else:
        # Half credit while attempts are still building up
        accuracy_progress = total_attempts / threshold["min_attempts"] * 50

    return {
        "is_mastered": False,
        "progress": min(math.floor(max(streak_progress, accuracy_progress)), 99),
        "progress_type": "streak" if streak_progress >= accuracy_progress else "accuracy",
        "next_difficulty": difficulty,
    }
