"""
store.py - Competency Store queries

Provides read/upsert helpers for:
- curriculum catalog (topics, subtopics, knowledge units, prerequisites)
- competency_records, user_topic_progress, user_subtopic_progress
- learning_profiles
- learning_goals, learning_path_nodes
- assessment_attempts, mastery_results
- strategy_states

Helpers never commit. Callers group writes with database.transaction().
"""

import json
from datetime import date
from typing import Optional, List, Dict, Any

from mastery_engine.db.database import is_unique_violation
from mastery_engine.errors import SchedulingConflict
from mastery_engine.models.competency import CompetencyProfile, classify, percent
from mastery_engine.models.curriculum import KnowledgeUnit, Subtopic, Topic
from mastery_engine.models.generated import DiagnosticNarrative
from mastery_engine.models.path import LearningGoal, LearningPathNode
from mastery_engine.services.curriculum import CurriculumCatalog


# ══════════════════════════════════════════════════════════════════════════════
# CURRICULUM
# ══════════════════════════════════════════════════════════════════════════════

async def load_catalog(db) -> CurriculumCatalog:
    """Build the curriculum catalog from the store."""
    prereqs: Dict[str, List[str]] = {}
    cursor = await db.execute(
        "SELECT topic_id, prerequisite_topic_id FROM topic_prerequisites ORDER BY id"
    )
    for row in await cursor.fetchall():
        prereqs.setdefault(row["topic_id"], []).append(row["prerequisite_topic_id"])

    cursor = await db.execute("SELECT id, name, order_index FROM topics ORDER BY order_index, id")
    topics = [
        Topic(id=r["id"], name=r["name"], order_index=r["order_index"], prerequisite_ids=prereqs.get(r["id"], []))
        for r in await cursor.fetchall()
    ]

    cursor = await db.execute("SELECT id, topic_id, name, order_index FROM subtopics")
    subtopics = [Subtopic(**dict(r)) for r in await cursor.fetchall()]

    cursor = await db.execute("SELECT id, code, topic_id, subtopic_id, kind, title FROM knowledge_units")
    units = [KnowledgeUnit(**dict(r)) for r in await cursor.fetchall()]

    return CurriculumCatalog(topics, subtopics, units)


async def save_catalog(db, catalog: CurriculumCatalog) -> None:
    """Insert or refresh every catalog entry."""
    for topic in catalog.topics.values():
        await db.execute(
            """INSERT INTO topics (id, name, order_index) VALUES (?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET name = excluded.name, order_index = excluded.order_index""",
            (topic.id, topic.name, topic.order_index),
        )
    for topic in catalog.topics.values():
        for prereq in topic.prerequisite_ids:
            await db.execute(
                """INSERT INTO topic_prerequisites (topic_id, prerequisite_topic_id) VALUES (?, ?)
                   ON CONFLICT(topic_id, prerequisite_topic_id) DO NOTHING""",
                (topic.id, prereq),
            )
    for sub in catalog.subtopics.values():
        await db.execute(
            """INSERT INTO subtopics (id, topic_id, name, order_index) VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET name = excluded.name, order_index = excluded.order_index""",
            (sub.id, sub.topic_id, sub.name, sub.order_index),
        )
    for unit in catalog.units.values():
        await db.execute(
            """INSERT INTO knowledge_units (id, code, topic_id, subtopic_id, kind, title)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO NOTHING""",
            (unit.id, unit.code, unit.topic_id, unit.subtopic_id, unit.kind, unit.title),
        )


# ══════════════════════════════════════════════════════════════════════════════
# COMPETENCY RECORDS
# ══════════════════════════════════════════════════════════════════════════════

async def upsert_competency(db, student_id: str, unit_id: str, correct: int, total: int) -> Dict[str, Any]:
    """Fold new (correct, total) counts into the student's record for a unit.

    Counts are incremented in SQL and the upsert holds the row lock until the
    transaction ends. The mastery score is the running percentage over every
    counted attempt.
    """
    score = percent(correct, total)
    await db.execute(
        """INSERT INTO competency_records
           (student_id, unit_id, mastery_score, classification, attempts, correct)
           VALUES (?, ?, ?, ?, ?, ?)
           ON CONFLICT(student_id, unit_id) DO UPDATE SET
               attempts = competency_records.attempts + excluded.attempts,
               correct = competency_records.correct + excluded.correct,
               updated_at = CURRENT_TIMESTAMP""",
        (student_id, unit_id, score, classify(score).value, total, correct),
    )

    cursor = await db.execute(
        "SELECT attempts, correct FROM competency_records WHERE student_id = ? AND unit_id = ?",
        (student_id, unit_id),
    )
    row = await cursor.fetchone()
    attempts, correct_total = row["attempts"], row["correct"]
    score = percent(correct_total, attempts)
    classification = classify(score).value

    await db.execute(
        """UPDATE competency_records SET mastery_score = ?, classification = ?
           WHERE student_id = ? AND unit_id = ?""",
        (score, classification, student_id, unit_id),
    )
    return {
        "unit_id": unit_id,
        "mastery_score": score,
        "classification": classification,
        "attempts": attempts,
        "correct": correct_total,
    }


async def get_competency_records(
    db,
    student_id: str,
    unit_ids: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """Competency records for a student, optionally limited to some units."""
    cursor = await db.execute(
        "SELECT * FROM competency_records WHERE student_id = ? ORDER BY unit_id",
        (student_id,),
    )
    rows = [_row_to_dict(r) for r in await cursor.fetchall()]
    if unit_ids is not None:
        wanted = set(unit_ids)
        rows = [r for r in rows if r["unit_id"] in wanted]
    return rows


# ══════════════════════════════════════════════════════════════════════════════
# TOPIC / SUBTOPIC PROGRESS
# ══════════════════════════════════════════════════════════════════════════════

async def upsert_topic_progress(db, student_id: str, topic_id: str, mastery: int) -> None:
    await db.execute(
        """INSERT INTO user_topic_progress (student_id, topic_id, mastery_percentage)
           VALUES (?, ?, ?)
           ON CONFLICT(student_id, topic_id) DO UPDATE SET
               mastery_percentage = excluded.mastery_percentage,
               updated_at = CURRENT_TIMESTAMP""",
        (student_id, topic_id, mastery),
    )


async def get_topic_mastery(db, student_id: str, topic_ids: List[str]) -> Dict[str, int]:
    """Current mastery per topic; topics never assessed are 0."""
    cursor = await db.execute(
        "SELECT topic_id, mastery_percentage FROM user_topic_progress WHERE student_id = ?",
        (student_id,),
    )
    known = {r["topic_id"]: r["mastery_percentage"] for r in await cursor.fetchall()}
    return {tid: known.get(tid, 0) for tid in topic_ids}


async def upsert_subtopic_progress(
    db,
    student_id: str,
    subtopic_id: str,
    mastery: int,
    correct: int,
    answered: int,
) -> None:
    await db.execute(
        """INSERT INTO user_subtopic_progress
           (student_id, subtopic_id, mastery_percentage, exercises_completed, exercises_correct)
           VALUES (?, ?, ?, ?, ?)
           ON CONFLICT(student_id, subtopic_id) DO UPDATE SET
               mastery_percentage = excluded.mastery_percentage,
               exercises_completed = user_subtopic_progress.exercises_completed + excluded.exercises_completed,
               exercises_correct = user_subtopic_progress.exercises_correct + excluded.exercises_correct,
               updated_at = CURRENT_TIMESTAMP""",
        (student_id, subtopic_id, mastery, answered, correct),
    )


async def get_subtopic_progress(db, student_id: str) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM user_subtopic_progress WHERE student_id = ? ORDER BY subtopic_id",
        (student_id,),
    )
    return [_row_to_dict(r) for r in await cursor.fetchall()]


# ══════════════════════════════════════════════════════════════════════════════
# LEARNING PROFILES
# ══════════════════════════════════════════════════════════════════════════════

_PROFILE_JSON_FIELDS = ["subtopic_levels", "strengths", "weaknesses", "misconception_patterns"]


async def upsert_learning_profile(
    db,
    student_id: str,
    topic_id: str,
    profile: CompetencyProfile,
    narrative: Optional[DiagnosticNarrative] = None,
) -> None:
    data = profile.model_dump()
    await db.execute(
        """INSERT INTO learning_profiles
           (student_id, topic_id, overall_level, subtopic_levels, strengths, weaknesses,
            misconception_patterns, recommended_starting_subtopic_id,
            overall_assessment, learning_style_notes)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(student_id, topic_id) DO UPDATE SET
               overall_level = excluded.overall_level,
               subtopic_levels = excluded.subtopic_levels,
               strengths = excluded.strengths,
               weaknesses = excluded.weaknesses,
               misconception_patterns = excluded.misconception_patterns,
               recommended_starting_subtopic_id = excluded.recommended_starting_subtopic_id,
               overall_assessment = excluded.overall_assessment,
               learning_style_notes = excluded.learning_style_notes,
               updated_at = CURRENT_TIMESTAMP""",
        (
            student_id,
            topic_id,
            profile.overall_level,
            json.dumps(data["subtopic_levels"]),
            json.dumps(data["strengths"]),
            json.dumps(data["weaknesses"]),
            json.dumps(data["misconception_patterns"]),
            profile.recommended_starting_subtopic_id,
            narrative.overall_assessment if narrative else None,
            narrative.learning_style_notes if narrative else None,
        ),
    )


async def get_learning_profile(db, student_id: str, topic_id: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM learning_profiles WHERE student_id = ? AND topic_id = ?",
        (student_id, topic_id),
    )
    row = await cursor.fetchone()
    if not row:
        return None
    return _row_to_dict(row, parse_json_fields=_PROFILE_JSON_FIELDS)


# ══════════════════════════════════════════════════════════════════════════════
# LEARNING GOALS
# ══════════════════════════════════════════════════════════════════════════════

async def deactivate_goals(db, student_id: str) -> int:
    """Soft-deactivate every active goal of a student. Returns how many changed."""
    cursor = await db.execute(
        "UPDATE learning_goals SET is_active = 0 WHERE student_id = ? AND is_active = 1",
        (student_id,),
    )
    return cursor.rowcount


async def insert_goal(db, goal: LearningGoal, minutes_per_day: Optional[int] = None) -> int:
    cursor = await db.execute(
        """INSERT INTO learning_goals (student_id, target_date, topic_ids, is_active, minutes_per_day)
           VALUES (?, ?, ?, ?, ?)""",
        (
            goal.student_id,
            goal.target_date.isoformat(),
            json.dumps(goal.topic_ids),
            1 if goal.is_active else 0,
            minutes_per_day,
        ),
    )
    return cursor.lastrowid


def _goal_from_row(row) -> LearningGoal:
    data = _row_to_dict(row, parse_json_fields=["topic_ids"])
    return LearningGoal(
        id=data["id"],
        student_id=data["student_id"],
        target_date=date.fromisoformat(data["target_date"]),
        topic_ids=data["topic_ids"] or [],
        is_active=bool(data["is_active"]),
        created_at=data.get("created_at"),
    )


async def get_goal(db, goal_id: int) -> Optional[LearningGoal]:
    cursor = await db.execute("SELECT * FROM learning_goals WHERE id = ?", (goal_id,))
    row = await cursor.fetchone()
    return _goal_from_row(row) if row else None


async def get_active_goal(db, student_id: str) -> Optional[LearningGoal]:
    cursor = await db.execute(
        """SELECT * FROM learning_goals
           WHERE student_id = ? AND is_active = 1
           ORDER BY id DESC LIMIT 1""",
        (student_id,),
    )
    row = await cursor.fetchone()
    return _goal_from_row(row) if row else None


# ══════════════════════════════════════════════════════════════════════════════
# LEARNING PATH NODES
# ══════════════════════════════════════════════════════════════════════════════

async def insert_path_nodes(db, goal_id: int, nodes: List[LearningPathNode]) -> List[int]:
    """Insert nodes for a goal. A taken (date, order) slot raises SchedulingConflict."""
    ids = []
    for node in nodes:
        try:
            cursor = await db.execute(
                """INSERT INTO learning_path_nodes
                   (goal_id, topic_id, subtopic_id, unit_id, scheduled_date,
                    target_difficulty, status, order_index, estimated_minutes)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    goal_id,
                    node.topic_id,
                    node.subtopic_id,
                    node.unit_id,
                    node.scheduled_date.isoformat(),
                    node.target_difficulty.value,
                    node.status.value,
                    node.order_index,
                    node.estimated_minutes,
                ),
            )
        except Exception as e:
            if is_unique_violation(e):
                raise SchedulingConflict(
                    f"Path slot already taken for goal {goal_id}",
                    details={"scheduled_date": node.scheduled_date.isoformat(), "order_index": node.order_index},
                ) from e
            raise
        ids.append(cursor.lastrowid)
    return ids


def _node_from_row(row) -> LearningPathNode:
    data = _row_to_dict(row)
    data["scheduled_date"] = date.fromisoformat(data["scheduled_date"])
    return LearningPathNode(**{k: v for k, v in data.items() if k in LearningPathNode.model_fields})


async def get_path_nodes(
    db,
    goal_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[LearningPathNode]:
    """Nodes of a goal ordered by (scheduled_date, order_index), optionally within [start, end]."""
    sql = "SELECT * FROM learning_path_nodes WHERE goal_id = ?"
    params: list = [goal_id]
    if start is not None:
        sql += " AND scheduled_date >= ?"
        params.append(start.isoformat())
    if end is not None:
        sql += " AND scheduled_date <= ?"
        params.append(end.isoformat())
    sql += " ORDER BY scheduled_date, order_index"
    cursor = await db.execute(sql, tuple(params))
    return [_node_from_row(r) for r in await cursor.fetchall()]


async def get_path_node(db, node_id: int) -> Optional[LearningPathNode]:
    cursor = await db.execute("SELECT * FROM learning_path_nodes WHERE id = ?", (node_id,))
    row = await cursor.fetchone()
    return _node_from_row(row) if row else None


async def escalate_pending_nodes(db, node_ids: List[int], from_difficulty: str, to_difficulty: str) -> int:
    """Change difficulty of the given nodes, guarded to pending nodes at from_difficulty."""
    changed = 0
    for node_id in node_ids:
        cursor = await db.execute(
            """UPDATE learning_path_nodes
               SET target_difficulty = ?, updated_at = CURRENT_TIMESTAMP
               WHERE id = ? AND status = 'pending' AND target_difficulty = ?""",
            (to_difficulty, node_id, from_difficulty),
        )
        changed += max(cursor.rowcount, 0)
    return changed


async def set_node_status(db, node_id: int, status: str) -> None:
    await db.execute(
        "UPDATE learning_path_nodes SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        (status, node_id),
    )


# ══════════════════════════════════════════════════════════════════════════════
# ATTEMPTS & MASTERY RESULTS
# ══════════════════════════════════════════════════════════════════════════════

async def insert_attempt(
    db,
    student_id: str,
    topic_id: str,
    kind: str,
    answers: List[Dict[str, Any]],
    score: Optional[int] = None,
) -> int:
    cursor = await db.execute(
        """INSERT INTO assessment_attempts (student_id, topic_id, kind, answers_json, score)
           VALUES (?, ?, ?, ?, ?)""",
        (student_id, topic_id, kind, json.dumps(answers), score),
    )
    return cursor.lastrowid


async def insert_mastery_result(db, attempt_id: int, student_id: str, result) -> int:
    cursor = await db.execute(
        """INSERT INTO mastery_results
           (attempt_id, student_id, topic_id, overall_percentage, correct_count, total_questions, result_json)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            attempt_id,
            student_id,
            result.topic_id,
            result.overall_percentage,
            result.correct_count,
            result.total_questions,
            result.model_dump_json(),
        ),
    )
    return cursor.lastrowid


async def get_mastery_results(db, student_id: str, topic_id: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM mastery_results WHERE student_id = ?"
    params: list = [student_id]
    if topic_id:
        sql += " AND topic_id = ?"
        params.append(topic_id)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    cursor = await db.execute(sql, tuple(params))
    return [_row_to_dict(r, parse_json_fields=["result_json"]) for r in await cursor.fetchall()]


# ══════════════════════════════════════════════════════════════════════════════
# STRATEGY STATES
# ══════════════════════════════════════════════════════════════════════════════

async def get_strategy_state(db, student_id: str, question_family: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM strategy_states WHERE student_id = ? AND question_family = ?",
        (student_id, question_family),
    )
    row = await cursor.fetchone()
    return _row_to_dict(row) if row else None


async def upsert_strategy_state(db, student_id: str, question_family: str, state: Dict[str, Any]) -> None:
    await db.execute(
        """INSERT INTO strategy_states
           (student_id, question_family, stage, consecutive_failures, consecutive_correct,
            attempts, correct, difficulty)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(student_id, question_family) DO UPDATE SET
               stage = excluded.stage,
               consecutive_failures = excluded.consecutive_failures,
               consecutive_correct = excluded.consecutive_correct,
               attempts = excluded.attempts,
               correct = excluded.correct,
               difficulty = excluded.difficulty,
               updated_at = CURRENT_TIMESTAMP""",
        (
            student_id,
            question_family,
            state["stage"],
            state["consecutive_failures"],
            state["consecutive_correct"],
            state["attempts"],
            state["correct"],
            state["difficulty"],
        ),
    )


# ══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ══════════════════════════════════════════════════════════════════════════════

def _row_to_dict(row, parse_json_fields: Optional[List[str]] = None) -> Dict[str, Any]:
    """Convert a database row to a dictionary, parsing JSON fields."""
    if row is None:
        return {}

    result = {key: row[key] for key in row.keys()}

    if parse_json_fields:
        for field in parse_json_fields:
            if field in result and result[field]:
                try:
                    result[field] = json.loads(result[field])
                except (json.JSONDecodeError, TypeError):
                    pass

    return result
