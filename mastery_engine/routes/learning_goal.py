"""Learning goal endpoints: create a goal with its path, read it, feed it signals."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from mastery_engine.db.database import get_db
from mastery_engine.errors import EngineError
from mastery_engine.models.path import NodeStatus, PerformanceSignal
from mastery_engine.routes.common import get_catalog, to_http
from mastery_engine.services import plan_updater

router = APIRouter(tags=["learning-goals"])


class CreateGoalRequest(BaseModel):
    student_id: str
    target_date: date
    topic_ids: list[str] = Field(min_length=1)


class NodeStatusUpdate(BaseModel):
    status: NodeStatus


@router.post("/api/learning-goals")
async def post_learning_goal(body: CreateGoalRequest, db=Depends(get_db), catalog=Depends(get_catalog)):
    """Replace the student's active goal and lay out a new learning path."""
    try:
        return await plan_updater.create_learning_goal(
            db, body.student_id, body.target_date, body.topic_ids, catalog,
        )
    except EngineError as e:
        raise to_http(e)


@router.get("/api/learning-goals/{goal_id}/path")
async def get_path(goal_id: int, start: Optional[date] = None, end: Optional[date] = None, db=Depends(get_db)):
    """Path nodes ordered by date, then order index (reinforcement first)."""
    try:
        return await plan_updater.get_learning_path(db, goal_id, start=start, end=end)
    except EngineError as e:
        raise to_http(e)


@router.post("/api/learning-goals/{goal_id}/signals")
async def post_signal(
    goal_id: int,
    body: PerformanceSignal,
    db=Depends(get_db),
    catalog=Depends(get_catalog),
):
    """Apply a performance signal: reinforce weak areas or escalate mastered ones."""
    try:
        return await plan_updater.apply_performance_signal(db, goal_id, body, catalog=catalog)
    except EngineError as e:
        raise to_http(e)


@router.patch("/api/path-nodes/{node_id}")
async def patch_node(node_id: int, body: NodeStatusUpdate, db=Depends(get_db)):
    try:
        return await plan_updater.update_node_status(db, node_id, body.status)
    except EngineError as e:
        raise to_http(e)
