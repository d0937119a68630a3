from pydantic import BaseModel, field_validator
from typing import Optional


# Units in this topic are allowed in assessments for every topic
FOUNDATIONAL_TOPIC_ID = "00000000-0000-0000-0000-000000000000"

QUESTION_DIFFICULTIES = ("easy", "medium", "hard")


def check_difficulty(v: str) -> str:
    v = (v or "medium").lower()
    if v not in QUESTION_DIFFICULTIES:
        raise ValueError(f"unknown difficulty: {v}")
    return v


class KnowledgeUnit(BaseModel):
    id: str
    code: str
    topic_id: str
    kind: str = "method"  # definition, theorem, method, foundational
    title: str = ""
    subtopic_id: Optional[str] = None


class Subtopic(BaseModel):
    id: str
    topic_id: str
    name: str = ""
    order_index: int = 0


class Topic(BaseModel):
    id: str
    name: str = ""
    order_index: int = 0
    prerequisite_ids: list[str] = []


class SolutionStep(BaseModel):
    text: str = ""
    unit_id: Optional[str] = None
    unit_code: Optional[str] = None
    citation: str = ""


class Question(BaseModel):
    id: str
    topic_id: str
    subtopic_id: Optional[str] = None
    difficulty: str = "medium"
    prompt: str = ""
    correct_answer: str = ""
    primary_unit_id: str = ""
    supporting_unit_ids: list[str] = []
    definition_unit_ids: list[str] = []
    is_combination_question: bool = False
    combined_subtopic_ids: list[str] = []
    steps: list[SolutionStep] = []

    @field_validator("difficulty")
    @classmethod
    def known_difficulty(cls, v: str) -> str:
        return check_difficulty(v)

    def referenced_unit_ids(self) -> list[str]:
        """Primary, supporting and definition units, each listed once."""
        seen = []
        for unit_id in [self.primary_unit_id, *self.supporting_unit_ids, *self.definition_unit_ids]:
            if unit_id and unit_id not in seen:
                seen.append(unit_id)
        return seen
