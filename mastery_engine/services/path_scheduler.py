"""Learning path construction and signal-driven adjustment.

Both entry points are pure: they take the current state and return what
should be written. plan_updater applies the result to the store.

create_path()           goal + topic mastery -> ordered, dated nodes
compute_signal_delta()  existing nodes + performance signal -> inserts/escalations
"""

import logging
import math
from datetime import date, timedelta
from typing import Optional

from mastery_engine.config import settings
from mastery_engine.errors import PreconditionViolation
from mastery_engine.models.path import (
    REINFORCEMENT_ORDER_BASE,
    Difficulty,
    LearningGoal,
    LearningPathNode,
    NodeStatus,
    PathDelta,
    PathPlan,
    PerformanceSignal,
)
from mastery_engine.services.curriculum import CurriculumCatalog
from mastery_engine.services.difficulty_engine import starting_difficulty

logger = logging.getLogger(__name__)

MINUTES_BY_DIFFICULTY = {
    Difficulty.EASY: 20,
    Difficulty.MEDIUM: 30,
    Difficulty.HARD: 40,
    Difficulty.EXAM: 45,
}


def pace_label(minutes_per_day: int) -> str:
    if minutes_per_day <= 30:
        return "relaxed"
    if minutes_per_day <= 60:
        return "moderate"
    if minutes_per_day <= 90:
        return "intensive"
    return "extreme"


def daily_minutes(mastery_by_topic: dict[str, int], topic_ids: list[str], days: int) -> int:
    """ceil(minutes_per_mastery_point * total remaining mastery / days)."""
    gap = sum(100 - max(0, min(100, mastery_by_topic.get(tid, 0))) for tid in topic_ids)
    return math.ceil(settings.minutes_per_mastery_point * gap / days)


def order_topics(topic_ids: list[str], mastery_by_topic: dict[str, int], catalog: CurriculumCatalog) -> list[str]:
    """Least-mastered topics first; ties follow prerequisite order."""
    rank = {tid: i for i, tid in enumerate(catalog.topological_order(topic_ids))}
    return sorted(rank, key=lambda tid: (mastery_by_topic.get(tid, 0), rank[tid]))


def create_path(
    goal: LearningGoal,
    mastery_by_topic: dict[str, int],
    catalog: CurriculumCatalog,
    today: date,
) -> PathPlan:
    """Lay out one node per subtopic of every goal topic, packed day by day.

    Raises PreconditionViolation when the deadline is closer than the minimum
    horizon or the topic set is empty or unknown.
    """
    days = (goal.target_date - today).days
    if days < settings.min_goal_horizon_days:
        raise PreconditionViolation(
            f"Target date must be at least {settings.min_goal_horizon_days} days away",
            details={"days_until_deadline": days},
        )
    if not goal.topic_ids:
        raise PreconditionViolation("A learning goal needs at least one topic")
    unknown = [tid for tid in goal.topic_ids if tid not in catalog.topics]
    if unknown:
        raise PreconditionViolation("Unknown topics in learning goal", details={"topic_ids": unknown})

    topic_ids = list(dict.fromkeys(goal.topic_ids))
    minutes_per_day = daily_minutes(mastery_by_topic, topic_ids, days)

    drafts = []
    for topic_id in order_topics(topic_ids, mastery_by_topic, catalog):
        difficulty = starting_difficulty(mastery_by_topic.get(topic_id, 0))
        subtopics = catalog.subtopics_for(topic_id) or [None]
        for sub in subtopics:
            drafts.append((topic_id, sub.id if sub else None, difficulty))

    total_minutes = sum(MINUTES_BY_DIFFICULTY[d] for _, _, d in drafts)
    capacity = max(minutes_per_day, math.ceil(total_minutes / days), 1)

    start = today + timedelta(days=1)
    current, used = start, 0
    nodes = []
    for order_index, (topic_id, subtopic_id, difficulty) in enumerate(drafts):
        minutes = MINUTES_BY_DIFFICULTY[difficulty]
        if used > 0 and used + minutes > capacity and current < goal.target_date:
            current += timedelta(days=1)
            used = 0
        nodes.append(LearningPathNode(
            goal_id=goal.id,
            topic_id=topic_id,
            subtopic_id=subtopic_id,
            scheduled_date=current,
            target_difficulty=difficulty,
            order_index=order_index,
            estimated_minutes=minutes,
        ))
        used += minutes

    return PathPlan(
        goal=goal,
        nodes=nodes,
        days_until_deadline=days,
        minutes_per_day=minutes_per_day,
        estimated_total_minutes=total_minutes,
        start_date=start,
        end_date=nodes[-1].scheduled_date if nodes else start,
        pace=pace_label(minutes_per_day),
    )


def _reinforcement_targets(signal: PerformanceSignal) -> list[tuple[str, str]]:
    targets = [("unit", uid) for uid in dict.fromkeys(signal.weak_units) if uid]
    targets += [("subtopic", sid) for sid in dict.fromkeys(signal.weak_subtopics) if sid]
    return targets[: settings.max_reinforcement_nodes]


def _has_pending_reinforcement(nodes: list[LearningPathNode], kind: str, target_id: str) -> bool:
    for node in nodes:
        if not node.is_reinforcement or node.status != NodeStatus.PENDING:
            continue
        if kind == "unit" and node.unit_id == target_id:
            return True
        if kind == "subtopic" and node.unit_id is None and node.subtopic_id == target_id:
            return True
    return False


def first_free_reinforcement_date(nodes: list[LearningPathNode], today: date) -> date:
    """First date after today with no reinforcement nodes already scheduled."""
    taken = {n.scheduled_date for n in nodes if n.is_reinforcement}
    candidate = today + timedelta(days=1)
    while candidate in taken:
        candidate += timedelta(days=1)
    return candidate


def compute_signal_delta(
    goal_id: int,
    nodes: list[LearningPathNode],
    signal: PerformanceSignal,
    today: date,
    catalog: Optional[CurriculumCatalog] = None,
) -> PathDelta:
    """Decide what a performance signal changes in a goal's path.

    score < reinforcement threshold: up to N easy reinforcement nodes for weak
    units/subtopics that do not already have a pending one.
    score >= escalation threshold: pending easy nodes of the topic go to hard.
    Completed, skipped and in-progress nodes are never touched.
    """
    delta = PathDelta(topic_mastery=signal.score)

    if signal.score < settings.reinforcement_score_threshold:
        targets = [
            (kind, target_id) for kind, target_id in _reinforcement_targets(signal)
            if not _has_pending_reinforcement(nodes, kind, target_id)
        ]
        if targets:
            slot_date = first_free_reinforcement_date(nodes, today)
            for i, (kind, target_id) in enumerate(targets):
                subtopic_id = target_id if kind == "subtopic" else None
                if kind == "unit" and catalog is not None:
                    unit = catalog.unit(target_id)
                    subtopic_id = unit.subtopic_id if unit else None
                delta.inserted.append(LearningPathNode(
                    goal_id=goal_id,
                    topic_id=signal.topic_id,
                    subtopic_id=subtopic_id,
                    unit_id=target_id if kind == "unit" else None,
                    scheduled_date=slot_date,
                    target_difficulty=Difficulty.EASY,
                    order_index=REINFORCEMENT_ORDER_BASE + i,
                    estimated_minutes=settings.reinforcement_minutes,
                ))

    if signal.score >= settings.escalation_score_threshold:
        delta.escalated_node_ids = [
            n.id for n in nodes
            if n.topic_id == signal.topic_id
            and n.status == NodeStatus.PENDING
            and n.target_difficulty == Difficulty.EASY
            and n.id is not None
        ]

    return delta
