"""Diagnostic endpoints: submit a diagnostic and read the stored profile."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from mastery_engine.db import store
from mastery_engine.db.database import get_db
from mastery_engine.errors import EngineError
from mastery_engine.models.assessment import DiagnosticResponse
from mastery_engine.routes.common import get_catalog, to_http
from mastery_engine.services.diagnostic_analyzer import submit_diagnostic

router = APIRouter(tags=["diagnostics"])


class DiagnosticSubmission(BaseModel):
    responses: list[DiagnosticResponse]
    with_narrative: bool = True


@router.post("/api/diagnostics/{student_id}/topics/{topic_id}")
async def post_diagnostic(
    student_id: str,
    topic_id: str,
    body: DiagnosticSubmission,
    db=Depends(get_db),
    catalog=Depends(get_catalog),
):
    """Analyze diagnostic responses and store the student's profile for the topic."""
    try:
        return await submit_diagnostic(
            db, student_id, topic_id, body.responses, catalog, with_narrative=body.with_narrative,
        )
    except EngineError as e:
        raise to_http(e)


@router.get("/api/diagnostics/{student_id}/topics/{topic_id}")
async def get_diagnostic_profile(student_id: str, topic_id: str, db=Depends(get_db)):
    profile = await store.get_learning_profile(db, student_id, topic_id)
    if not profile:
        raise HTTPException(status_code=404, detail="No diagnostic profile for this topic")
    return profile


@router.get("/api/students/{student_id}/competencies")
async def get_competencies(student_id: str, db=Depends(get_db)):
    """Per-unit competency records and per-subtopic progress."""
    records = await store.get_competency_records(db, student_id)
    return {
        "student_id": student_id,
        "records": records,
        "subtopics": await store.get_subtopic_progress(db, student_id),
        "total": len(records),
    }
