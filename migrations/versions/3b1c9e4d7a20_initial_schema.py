"""initial_schema

Creates the curriculum catalog, competency store, learning goal/path and
assessment history tables from mastery_engine/db/schema.sql.

Revision ID: 3b1c9e4d7a20
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union
from pathlib import Path

from alembic import op
import sqlalchemy as sa


revision: str = "3b1c9e4d7a20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _adapt_sql(sql: str, dialect_name: str) -> str:
    if dialect_name == "postgresql":
        sql = sql.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "SERIAL PRIMARY KEY")
    return sql


def upgrade() -> None:
    """Execute schema.sql statement by statement (CREATE TABLE IF NOT EXISTS)."""
    dialect_name = op.get_bind().dialect.name

    schema_path = Path(__file__).resolve().parents[2] / "mastery_engine" / "db" / "schema.sql"
    for statement in schema_path.read_text().split(";"):
        lines = [
            line for line in statement.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        cleaned = "\n".join(lines).strip()
        if cleaned:
            op.execute(sa.text(_adapt_sql(cleaned, dialect_name)))


def downgrade() -> None:
    tables = [
        "strategy_states",
        "mastery_results",
        "assessment_attempts",
        "learning_path_nodes",
        "learning_goals",
        "learning_profiles",
        "user_subtopic_progress",
        "user_topic_progress",
        "competency_records",
        "knowledge_units",
        "subtopics",
        "topic_prerequisites",
        "topics",
    ]
    for table in tables:
        op.drop_table(table)
