"""
plan_updater.py - Learning goal and path update service

Applies Path Scheduler decisions to the Competency Store:
- create_learning_goal: deactivate the old goal, store the new goal and its path
- apply_performance_signal: reinforcement / escalation / topic progress for one goal
- on_mastery_test_graded: hook run after a mastery test is stored
"""

import asyncio
import logging
import weakref
from datetime import date
from typing import Any, Dict, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from mastery_engine.config import settings
from mastery_engine.db import store
from mastery_engine.db.database import transaction
from mastery_engine.errors import InvalidInput, NotFound, SchedulingConflict
from mastery_engine.models.assessment import MasteryResult
from mastery_engine.models.path import (
    Difficulty,
    LearningGoal,
    NodeStatus,
    PathDelta,
    PerformanceSignal,
)
from mastery_engine.services.curriculum import CurriculumCatalog
from mastery_engine.services.path_scheduler import compute_signal_delta, create_path

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════════
# PER-GOAL LOCKS
# ══════════════════════════════════════════════════════════════════════════════

# Entries vanish once no coroutine holds or waits on the lock
_goal_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()
_goal_locks_lock: Optional[asyncio.Lock] = None


def _get_locks_lock() -> asyncio.Lock:
    global _goal_locks_lock
    if _goal_locks_lock is None:
        _goal_locks_lock = asyncio.Lock()
    return _goal_locks_lock


async def get_goal_lock(goal_id: int) -> asyncio.Lock:
    """One lock per goal so signal updates on the same path never interleave."""
    async with _get_locks_lock():
        lock = _goal_locks.get(goal_id)
        if lock is None:
            lock = asyncio.Lock()
            _goal_locks[goal_id] = lock
        return lock


# ══════════════════════════════════════════════════════════════════════════════
# GOALS
# ══════════════════════════════════════════════════════════════════════════════

async def create_learning_goal(
    db,
    student_id: str,
    target_date: date,
    topic_ids: list[str],
    catalog: CurriculumCatalog,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Create the student's new active goal together with its learning path.

    The path is computed before anything is written, so a refused goal
    (deadline too close, unknown topics) leaves the previous goal active.
    """
    today = today or date.today()
    mastery = await store.get_topic_mastery(db, student_id, topic_ids)
    goal = LearningGoal(student_id=student_id, target_date=target_date, topic_ids=topic_ids)
    plan = create_path(goal, mastery, catalog, today)

    async with transaction(db):
        deactivated = await store.deactivate_goals(db, student_id)
        goal_id = await store.insert_goal(db, goal, minutes_per_day=plan.minutes_per_day)
        for node in plan.nodes:
            node.goal_id = goal_id
        node_ids = await store.insert_path_nodes(db, goal_id, plan.nodes)

    for node, node_id in zip(plan.nodes, node_ids):
        node.id = node_id
    plan.goal.id = goal_id

    logger.info(
        f"Learning goal {goal_id} created for student {student_id}: {len(plan.nodes)} nodes, "
        f"{plan.minutes_per_day} min/day ({plan.pace}), {deactivated} previous goal(s) deactivated"
    )

    return {
        "goal_id": goal_id,
        "plan": plan.model_dump(mode="json"),
        "deactivated_goals": deactivated,
    }


async def get_learning_path(
    db,
    goal_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Any]:
    goal = await store.get_goal(db, goal_id)
    if goal is None:
        raise NotFound(f"Learning goal {goal_id} not found")
    nodes = await store.get_path_nodes(db, goal_id, start=start, end=end)
    return {
        "goal": goal.model_dump(mode="json"),
        "nodes": [n.model_dump(mode="json") for n in nodes],
        "total": len(nodes),
    }


_ALLOWED_TRANSITIONS = {
    NodeStatus.PENDING: {NodeStatus.IN_PROGRESS, NodeStatus.COMPLETED, NodeStatus.SKIPPED},
    NodeStatus.IN_PROGRESS: {NodeStatus.COMPLETED, NodeStatus.SKIPPED, NodeStatus.PENDING},
    NodeStatus.COMPLETED: set(),
    NodeStatus.SKIPPED: set(),
}


async def update_node_status(db, node_id: int, status: NodeStatus) -> Dict[str, Any]:
    """Move a node through pending → in_progress → completed/skipped. Finished nodes are final."""
    node = await store.get_path_node(db, node_id)
    if node is None:
        raise NotFound(f"Path node {node_id} not found")
    if status == node.status:
        return node.model_dump(mode="json")
    if status not in _ALLOWED_TRANSITIONS[node.status]:
        raise InvalidInput(
            f"Cannot move node {node_id} from {node.status.value} to {status.value}",
            details={"node_id": node_id, "from": node.status.value, "to": status.value},
        )

    lock = await get_goal_lock(node.goal_id)
    async with lock:
        async with transaction(db):
            await store.set_node_status(db, node_id, status.value)
    node.status = status
    return node.model_dump(mode="json")


# ══════════════════════════════════════════════════════════════════════════════
# PERFORMANCE SIGNALS
# ══════════════════════════════════════════════════════════════════════════════

@retry(
    stop=stop_after_attempt(settings.schedule_retry_attempts),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(SchedulingConflict),
    before_sleep=lambda retry_state: logger.warning(
        "Path slot conflict (attempt %d), re-scanning: %s",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
    ),
    reraise=True,
)
async def _apply_once(
    db,
    goal: LearningGoal,
    signal: PerformanceSignal,
    today: date,
    catalog: Optional[CurriculumCatalog],
) -> PathDelta:
    async with transaction(db):
        nodes = await store.get_path_nodes(db, goal.id)
        delta = compute_signal_delta(goal.id, nodes, signal, today, catalog=catalog)
        if delta.inserted:
            node_ids = await store.insert_path_nodes(db, goal.id, delta.inserted)
            for node, node_id in zip(delta.inserted, node_ids):
                node.id = node_id
        if delta.escalated_node_ids:
            await store.escalate_pending_nodes(
                db, delta.escalated_node_ids, Difficulty.EASY.value, Difficulty.HARD.value,
            )
        await store.upsert_topic_progress(db, goal.student_id, signal.topic_id, signal.score)
    return delta


async def apply_performance_signal(
    db,
    goal_id: int,
    signal: PerformanceSignal,
    catalog: Optional[CurriculumCatalog] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Adjust a goal's path for a new score on one topic.

    Serialized per goal in-process; across processes the unique
    (goal, date, order) slot turns a lost race into SchedulingConflict,
    which is retried with a fresh scan before it reaches the caller.
    """
    goal = await store.get_goal(db, goal_id)
    if goal is None:
        raise NotFound(f"Learning goal {goal_id} not found")
    if catalog is not None and signal.topic_id not in catalog.topics:
        raise InvalidInput(f"Unknown topic {signal.topic_id}", details={"topic_id": signal.topic_id})

    today = today or date.today()
    lock = await get_goal_lock(goal_id)
    async with lock:
        delta = await _apply_once(db, goal, signal, today, catalog)

    if delta.inserted or delta.escalated_node_ids:
        logger.info(
            f"Goal {goal_id}: signal on topic {signal.topic_id} score={signal.score} -> "
            f"{len(delta.inserted)} reinforcement node(s), {len(delta.escalated_node_ids)} escalated"
        )

    return {
        "goal_id": goal_id,
        "topic_id": signal.topic_id,
        "score": signal.score,
        "inserted": [n.model_dump(mode="json") for n in delta.inserted],
        "escalated_node_ids": delta.escalated_node_ids,
    }


async def on_mastery_test_graded(
    db,
    student_id: str,
    result: MasteryResult,
    catalog: Optional[CurriculumCatalog] = None,
    today: Optional[date] = None,
) -> Optional[Dict[str, Any]]:
    """Hook called after a mastery test is stored.

    Turns the result into a performance signal for the student's active goal.
    Without an active goal only topic progress is recorded.
    """
    signal = PerformanceSignal(
        topic_id=result.topic_id,
        score=result.overall_percentage,
        weak_units=result.weak_unit_ids,
    )

    goal = await store.get_active_goal(db, student_id)
    if goal is None:
        async with transaction(db):
            await store.upsert_topic_progress(db, student_id, signal.topic_id, signal.score)
        logger.info(f"No active goal for student {student_id}; recorded topic progress only")
        return None

    return await apply_performance_signal(db, goal.id, signal, catalog=catalog, today=today)
