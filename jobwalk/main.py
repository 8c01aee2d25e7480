from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from jobwalk.api.actions import router as actions_router
from jobwalk.api.chat import router as chat_router
from jobwalk.api.jobs import router as jobs_router
from jobwalk.api.notifications import router as notifications_router
from jobwalk.api.search import router as search_router
from jobwalk.api.sessions import router as sessions_router
from jobwalk.api.ws import router as ws_router
from jobwalk.core.config import settings
from jobwalk.core.logging import get_logger
from jobwalk.db.session import SessionLocal
from jobwalk.realtime.hub import hub
from jobwalk.worker.scheduler import build_scheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await hub.start()
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler()
        scheduler.start()
    else:
        logger.info("Scheduler disabled")

    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()
        await hub.stop()


app = FastAPI(title="Jobwalk API", version="0.1.0", lifespan=lifespan)
app.include_router(sessions_router)
app.include_router(actions_router)
app.include_router(jobs_router)
app.include_router(search_router)
app.include_router(chat_router)
app.include_router(notifications_router)
app.include_router(ws_router)


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    db_ok: bool
    ws_clients: int


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.error(f"Health check DB probe failed: {e}")
    finally:
        db.close()

    return HealthResponse(ok=True, service="api", version=app.version, db_ok=db_ok, ws_clients=hub.client_count)
