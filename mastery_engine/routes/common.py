"""Shared route helpers: curriculum dependency and engine-error translation."""

import logging
from typing import Optional

from fastapi import Depends, HTTPException

from mastery_engine.db import store
from mastery_engine.db.database import get_db
from mastery_engine.errors import (
    EngineError,
    InvalidInput,
    NotFound,
    PreconditionViolation,
    SchedulingConflict,
    ValidationFailure,
)
from mastery_engine.services.curriculum import CurriculumCatalog

logger = logging.getLogger(__name__)

_catalog: Optional[CurriculumCatalog] = None


async def get_catalog(db=Depends(get_db)) -> CurriculumCatalog:
    """FastAPI dependency returning the curriculum catalog, loaded once per process."""
    global _catalog
    if _catalog is None:
        _catalog = await store.load_catalog(db)
        logger.info(f"Curriculum catalog loaded: {len(_catalog.topics)} topics, {len(_catalog.units)} units")
    return _catalog


def reset_catalog() -> None:
    """Drop the cached catalog (after reseeding the curriculum)."""
    global _catalog
    _catalog = None


_STATUS_FOR = [
    (ValidationFailure, 422),
    (NotFound, 404),
    (PreconditionViolation, 400),
    (InvalidInput, 400),
    (SchedulingConflict, 503),
]


def to_http(exc: EngineError) -> HTTPException:
    """Map an engine error onto the HTTP status the caller should act on."""
    for exc_type, status in _STATUS_FOR:
        if isinstance(exc, exc_type):
            detail = {"message": exc.message, **exc.details}
            if isinstance(exc, ValidationFailure):
                detail["violations"] = exc.violations
            if isinstance(exc, SchedulingConflict):
                detail["retryable"] = True
            return HTTPException(status_code=status, detail=detail)
    logger.error(f"Unhandled engine error: {exc}")
    return HTTPException(status_code=500, detail=exc.message)
