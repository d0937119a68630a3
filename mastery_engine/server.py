import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from mastery_engine.config import settings
from mastery_engine.db import store
from mastery_engine.db.database import close_db, get_db, init_db, transaction
from mastery_engine.routes.common import reset_catalog
from mastery_engine.services.curriculum import load_catalog_file

logger = logging.getLogger(__name__)

# CORS: use CORS_ORIGINS (comma-separated) or local defaults.
if settings.cors_origins:
    _allowed_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
else:
    _allowed_origins = [
        "http://localhost:8000",
        "http://127.0.0.1:8000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


async def _seed_curriculum(path: str) -> None:
    catalog = load_catalog_file(path)
    async for db in get_db():
        async with transaction(db):
            await store.save_catalog(db, catalog)
    reset_catalog()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    if settings.curriculum_path:
        await _seed_curriculum(settings.curriculum_path)
    yield
    await close_db()


app = FastAPI(title="Mastery Engine", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# Import and register routes
from mastery_engine.routes.diagnostic import router as diagnostic_router
from mastery_engine.routes.mastery_test import router as mastery_test_router
from mastery_engine.routes.learning_goal import router as learning_goal_router
from mastery_engine.routes.practice import router as practice_router

app.include_router(diagnostic_router)
app.include_router(mastery_test_router)
app.include_router(learning_goal_router)
app.include_router(practice_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
