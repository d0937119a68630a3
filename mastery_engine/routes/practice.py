"""Practice endpoint: record an attempt and get the next explanation strategy."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from mastery_engine.db.database import get_db
from mastery_engine.models.path import Difficulty
from mastery_engine.services.teaching_strategy import record_attempt

router = APIRouter(tags=["practice"])


class PracticeAttempt(BaseModel):
    student_id: str
    question_family: str
    is_correct: bool
    starting_difficulty: Difficulty = Difficulty.EASY


@router.post("/api/practice/attempts")
async def post_attempt(body: PracticeAttempt, db=Depends(get_db)):
    return await record_attempt(
        db, body.student_id, body.question_family, body.is_correct,
        starting_difficulty=body.starting_difficulty,
    )
