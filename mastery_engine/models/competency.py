from enum import Enum
from pydantic import BaseModel
from typing import Optional

WEAK_BELOW = 50
STRONG_FROM = 80


class Classification(str, Enum):
    STRONG = "strong"
    NEEDS_REVIEW = "needs-review"
    WEAK = "weak"


def percent(correct: int, total: int) -> int:
    """Integer percentage rounded half-up. 0 when total is 0."""
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def classify(percentage: int) -> Classification:
    """< 50 weak, 50-79 needs review, >= 80 strong."""
    if percentage < WEAK_BELOW:
        return Classification.WEAK
    if percentage < STRONG_FROM:
        return Classification.NEEDS_REVIEW
    return Classification.STRONG


class CompetencyRecord(BaseModel):
    student_id: str
    unit_id: str
    mastery_score: int = 0
    classification: Classification = Classification.WEAK
    attempts: int = 0
    correct: int = 0
    updated_at: Optional[str] = None


class SubtopicLevel(BaseModel):
    subtopic_id: str
    level: int
    correct: int
    answered: int


class MisconceptionPattern(BaseModel):
    tag: str
    occurrences: int = 1
    subtopic_ids: list[str] = []


class CompetencyProfile(BaseModel):
    overall_level: int = 0
    subtopic_levels: list[SubtopicLevel] = []
    strengths: list[str] = []
    weaknesses: list[str] = []
    misconception_patterns: list[MisconceptionPattern] = []
    recommended_starting_subtopic_id: Optional[str] = None

    def level_of(self, subtopic_id: str) -> Optional[int]:
        for entry in self.subtopic_levels:
            if entry.subtopic_id == subtopic_id:
                return entry.level
        return None
