"""Schemas for Content Generator output.

Generator JSON is untrusted: it is parsed into these models before anything
in the engine touches it.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from mastery_engine.models.curriculum import Question, SolutionStep, check_difficulty


class GeneratedStep(BaseModel):
    text: str = ""
    unit_id: Optional[str] = None
    unit_code: Optional[str] = None
    citation: str = ""


class GeneratedQuestion(BaseModel):
    id: Optional[str] = None
    prompt: str = Field(min_length=1)
    correct_answer: str = Field(min_length=1)
    difficulty: str = "medium"
    subtopic_id: Optional[str] = None
    primary_unit_id: str = ""
    supporting_unit_ids: list[str] = []
    definition_unit_ids: list[str] = []
    is_combination_question: bool = False
    combined_subtopic_ids: list[str] = []
    steps: list[GeneratedStep] = []

    @field_validator("difficulty")
    @classmethod
    def known_difficulty(cls, v: str) -> str:
        return check_difficulty(v)


class GeneratedAssessment(BaseModel):
    questions: list[GeneratedQuestion] = Field(min_length=1)

    def to_questions(self, topic_id: str) -> list[Question]:
        questions = []
        for i, gq in enumerate(self.questions):
            questions.append(Question(
                id=gq.id or f"q{i + 1}",
                topic_id=topic_id,
                subtopic_id=gq.subtopic_id,
                difficulty=gq.difficulty,
                prompt=gq.prompt,
                correct_answer=gq.correct_answer,
                primary_unit_id=gq.primary_unit_id,
                supporting_unit_ids=gq.supporting_unit_ids,
                definition_unit_ids=gq.definition_unit_ids,
                is_combination_question=gq.is_combination_question,
                combined_subtopic_ids=gq.combined_subtopic_ids,
                steps=[SolutionStep(**s.model_dump()) for s in gq.steps],
            ))
        return questions


class DiagnosticNarrative(BaseModel):
    overall_assessment: str = ""
    learning_style_notes: str = ""
