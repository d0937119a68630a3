"""add_lookup_indexes

Indexes for the store's hot paths: path range reads per goal, active goal
lookup, unit/subtopic catalog joins and mastery result history.

Revision ID: 8d2f6a1b5c34
Revises: 3b1c9e4d7a20
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "8d2f6a1b5c34"
down_revision: Union[str, Sequence[str], None] = "3b1c9e4d7a20"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_INDEXES = [
    ("idx_path_nodes_goal_topic", "learning_path_nodes(goal_id, topic_id, status)"),
    ("idx_learning_goals_student_active", "learning_goals(student_id, is_active)"),
    ("idx_knowledge_units_topic", "knowledge_units(topic_id)"),
    ("idx_subtopics_topic", "subtopics(topic_id, order_index)"),
    ("idx_mastery_results_student", "mastery_results(student_id, topic_id)"),
    ("idx_attempts_student", "assessment_attempts(student_id, kind, created_at)"),
]


def upgrade() -> None:
    for name, target in _INDEXES:
        op.execute(sa.text(f"CREATE INDEX IF NOT EXISTS {name} ON {target}"))


def downgrade() -> None:
    for name, _ in reversed(_INDEXES):
        op.execute(sa.text(f"DROP INDEX IF EXISTS {name}"))
