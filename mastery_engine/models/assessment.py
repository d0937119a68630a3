from pydantic import BaseModel, field_validator
from typing import Optional

from mastery_engine.models.competency import Classification


class DiagnosticResponse(BaseModel):
    """One answered (or skipped) diagnostic question."""
    question_id: str
    subtopic_id: str
    is_correct: bool = False
    user_answer: str = ""
    misconception: Optional[str] = None
    unit_ids: list[str] = []

    @property
    def answered(self) -> bool:
        return bool(self.user_answer and self.user_answer.strip())


class AnswerSubmission(BaseModel):
    question_id: str
    answer: str = ""
    time_spent_seconds: int = 0

    @field_validator("time_spent_seconds")
    @classmethod
    def non_negative_time(cls, v: int) -> int:
        if v < 0:
            raise ValueError("time_spent_seconds must be >= 0")
        return v


class GradedAnswer(BaseModel):
    question_id: str
    user_answer: str = ""
    correct_answer: str = ""
    is_correct: bool = False
    time_spent_seconds: int = 0
    judge_error: Optional[str] = None


class UnitScore(BaseModel):
    unit_id: str
    unit_code: Optional[str] = None
    correct: int = 0
    total: int = 0
    percentage: int = 0
    classification: Classification = Classification.WEAK


class SubtopicCoverage(BaseModel):
    subtopic_id: str
    correct: int = 0
    total: int = 0
    percentage: int = 0


class MasteryResult(BaseModel):
    topic_id: Optional[str] = None
    overall_percentage: int = 0
    correct_count: int = 0
    total_questions: int = 0
    unit_scores: list[UnitScore] = []
    weak_unit_ids: list[str] = []
    needs_review_unit_ids: list[str] = []
    strong_unit_ids: list[str] = []
    subtopic_coverage: list[SubtopicCoverage] = []
    graded_answers: list[GradedAnswer] = []
