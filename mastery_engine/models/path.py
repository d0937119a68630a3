from datetime import date
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXAM = "exam"


class NodeStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


# Reinforcement nodes live in [-1000, -1] so they sort ahead of regular work
REINFORCEMENT_ORDER_BASE = -1000


class LearningGoal(BaseModel):
    id: Optional[int] = None
    student_id: str
    target_date: date
    topic_ids: list[str]
    is_active: bool = True
    created_at: Optional[str] = None


class LearningPathNode(BaseModel):
    id: Optional[int] = None
    goal_id: Optional[int] = None
    topic_id: str
    subtopic_id: Optional[str] = None
    unit_id: Optional[str] = None
    scheduled_date: date
    target_difficulty: Difficulty = Difficulty.MEDIUM
    status: NodeStatus = NodeStatus.PENDING
    order_index: int = 0
    estimated_minutes: int = 30

    @property
    def is_reinforcement(self) -> bool:
        return self.order_index < 0


class PerformanceSignal(BaseModel):
    topic_id: str
    score: int = Field(ge=0, le=100)
    weak_units: list[str] = []
    weak_subtopics: list[str] = []


class PathDelta(BaseModel):
    inserted: list[LearningPathNode] = []
    escalated_node_ids: list[int] = []
    topic_mastery: Optional[int] = None


class PathPlan(BaseModel):
    goal: LearningGoal
    nodes: list[LearningPathNode]
    days_until_deadline: int
    minutes_per_day: int
    estimated_total_minutes: int
    start_date: date
    end_date: date
    pace: str
