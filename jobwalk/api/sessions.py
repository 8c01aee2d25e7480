from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from jobwalk.api.errors import safe_json_loads, to_http
from jobwalk.core.errors import JobwalkError
from jobwalk.core.logging import get_logger, log_with_context
from jobwalk.db.session import get_db
from jobwalk.models.action_item import ActionItem
from jobwalk.models.field_session import FieldSession
from jobwalk.models.job import Job
from jobwalk.services.pipeline import create_session, process_session, reset_session_for_retry

logger = get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    audio_path: str
    title: str | None = None
    job_id: int | None = None
    voice_tag: str | None = None
    recorded_at: datetime | None = None


class SessionQueuedResponse(BaseModel):
    ok: bool
    session_id: int
    status: str


def run_pipeline(session_id: int) -> None:
    """Background entry point. Failures are already recorded on the session."""
    try:
        process_session(session_id)
    except JobwalkError as e:
        log_with_context(logger, logging.WARNING, "Background processing failed", session_id=session_id, error=str(e))
    except Exception as e:  # noqa: BLE001 - the pipeline has marked the session error
        log_with_context(logger, logging.ERROR, "Background processing crashed", session_id=session_id, error=str(e))


def _serialize_action(a: ActionItem) -> dict:
    return {
        "id": a.id,
        "description": a.description,
        "priority": a.priority,
        "due": a.due,
        "completed": bool(a.completed),
        "completed_at": a.completed_at.isoformat() if a.completed_at else None,
    }


@router.post("", response_model=SessionQueuedResponse)
def create(req: CreateSessionRequest, background: BackgroundTasks, db: Session = Depends(get_db)) -> SessionQueuedResponse:
    if not req.audio_path.strip():
        raise HTTPException(status_code=400, detail="audio_path is required")
    if req.job_id is not None:
        job = db.query(Job).filter(Job.id == req.job_id, Job.deleted_at.is_(None)).first()
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

    fs = create_session(
        db,
        audio_path=req.audio_path.strip(),
        title=req.title,
        job_id=req.job_id,
        voice_tag=req.voice_tag,
        recorded_at=req.recorded_at,
    )
    background.add_task(run_pipeline, fs.id)
    return SessionQueuedResponse(ok=True, session_id=fs.id, status=fs.status)


@router.get("/{session_id}")
def get_session(session_id: int, db: Session = Depends(get_db)):
    fs = (
        db.query(FieldSession)
        .filter(FieldSession.id == session_id, FieldSession.deleted_at.is_(None))
        .first()
    )
    if not fs:
        raise HTTPException(status_code=404, detail="Session not found")

    actions = (
        db.query(ActionItem)
        .filter(ActionItem.session_id == session_id, ActionItem.deleted_at.is_(None))
        .order_by(ActionItem.id.asc())
        .all()
    )

    return {
        "ok": True,
        "session": {
            "id": fs.id,
            "job_id": fs.job_id,
            "title": fs.title,
            "phase": fs.phase,
            "voice_tag": fs.voice_tag,
            "status": fs.status,
            "error_message": fs.error_message,
            "duration_secs": fs.duration_secs,
            "transcript": fs.transcript,
            "summary": fs.summary,
            "summary_json": safe_json_loads(fs.summary_json),
            "discrepancies": safe_json_loads(fs.discrepancies_json),
            "commands": safe_json_loads(fs.command_meta_json),
            "recorded_at": fs.recorded_at.isoformat() if fs.recorded_at else None,
            "processed_at": fs.processed_at.isoformat() if fs.processed_at else None,
            "emailed_at": fs.emailed_at.isoformat() if fs.emailed_at else None,
            "processing_duration_secs": fs.processing_duration_secs,
        },
        "action_items": [_serialize_action(a) for a in actions],
    }


@router.post("/{session_id}/retry", response_model=SessionQueuedResponse)
def retry(session_id: int, background: BackgroundTasks, db: Session = Depends(get_db)) -> SessionQueuedResponse:
    try:
        fs = reset_session_for_retry(db, session_id)
    except JobwalkError as e:
        raise to_http(e)

    background.add_task(run_pipeline, fs.id)
    return SessionQueuedResponse(ok=True, session_id=fs.id, status=fs.status)
