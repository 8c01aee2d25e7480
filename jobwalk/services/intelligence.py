from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from jobwalk.core.config import settings
from jobwalk.core.errors import UpstreamError
from jobwalk.core.logging import get_logger
from jobwalk.models.action_item import ActionItem
from jobwalk.models.attachment import Attachment
from jobwalk.models.field_session import FieldSession, SessionStatus
from jobwalk.models.job import Job
from jobwalk.services.llm.client import chat_completion
from jobwalk.services.llm.prompts import INTEL_SYSTEM

logger = get_logger(__name__)

_PRIORITY_ORDER = {"critical": 0, "high": 1, "normal": 2, "low": 3}


def _completed_sessions(db: Session, job_id: int, include_session_id: Optional[int] = None) -> list[FieldSession]:
    done = FieldSession.status == SessionStatus.COMPLETE.value
    if include_session_id is not None:
        done = or_(done, FieldSession.id == include_session_id)
    return (
        db.query(FieldSession)
        .filter(
            FieldSession.job_id == job_id,
            done,
            FieldSession.deleted_at.is_(None),
        )
        .order_by(FieldSession.recorded_at.asc(), FieldSession.id.asc())
        .all()
    )


def _build_context(db: Session, job: Job, sessions: list[FieldSession]) -> str:
    lines = [
        f"JOB: {job.label()}",
        f"Current Phase: {job.phase or 'Unknown'}",
        f"Total Walks: {len(sessions)}",
        "",
        "=== JOB WALK HISTORY ===",
        "",
    ]
    for s in sessions:
        date = s.recorded_at.date().isoformat() if s.recorded_at else "Unknown date"
        dur = f"{round(s.duration_secs / 60)}min" if s.duration_secs else ""
        lines.append(f"--- Walk: {date} {dur} ({s.phase or 'untagged'}) ---")
        lines.append(s.summary or s.summary_json or "[no summary]")
        disc = json.loads(s.discrepancies_json) if s.discrepancies_json else None
        if disc and disc.get("items"):
            lines.append("DISCREPANCIES FOUND:")
            lines.extend(f"  ! {d.get('description')} ({d.get('severity')})" for d in disc["items"])
        lines.append("")

    plans = (
        db.query(Attachment)
        .filter(Attachment.job_id == job.id, Attachment.analysis_json.isnot(None), Attachment.deleted_at.is_(None))
        .all()
    )
    if plans:
        lines += ["=== PLAN ANALYSES ===", ""]
        for p in plans:
            lines.append(f"Plan: {p.file_name}")
            lines.append(p.analysis_text or p.analysis_json or "")
            lines.append("")

    open_items = (
        db.query(ActionItem)
        .filter(ActionItem.job_id == job.id, ActionItem.completed.is_(False), ActionItem.deleted_at.is_(None))
        .all()
    )
    if open_items:
        lines += ["=== OPEN ACTION ITEMS ===", ""]
        for a in sorted(open_items, key=lambda a: (_PRIORITY_ORDER.get(a.priority, 9), a.id)):
            due = f" (due: {a.due})" if a.due else ""
            lines.append(f"• [{a.priority.upper()}] {a.description}{due}")

    return "\n".join(lines)


def update_job_intelligence(db: Session, job_id: int, *, include_session_id: Optional[int] = None) -> Optional[str]:
    """
    Rebuild the rolling brief for a job from every completed walk.

    When generation fails the brief falls back to the walk summaries joined
    together, so a job always ends up with something readable.
    include_session_id lets the pipeline count the walk it is still finishing.
    """
    job = db.query(Job).filter(Job.id == job_id, Job.deleted_at.is_(None)).first()
    if not job:
        logger.warning(f"Job {job_id} not found, skipping intelligence update")
        return None

    sessions = _completed_sessions(db, job_id, include_session_id)
    if not sessions:
        logger.info(f"Job {job_id} has no completed sessions, skipping intelligence update")
        return None

    context = _build_context(db, job, sessions)
    try:
        intel = chat_completion(
            [
                {"role": "system", "content": INTEL_SYSTEM},
                {"role": "user", "content": context},
            ],
            temperature=0.3,
            max_tokens=3000,
            timeout_s=settings.ollama_summary_timeout_sec,
        )
    except UpstreamError as e:
        logger.error(f"Intelligence generation failed for job {job_id}: {e}")
        intel = "\n\n---\n\n".join(s.summary for s in sessions if s.summary)

    job.job_intel = intel
    job.updated_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(f"Job {job_id} intelligence updated ({len(intel)} chars)")
    return intel


def get_job_intelligence(db: Session, job_id: int, *, force_refresh: bool = False) -> Optional[str]:
    """Cached brief unless a walk completed after it was written."""
    job = db.query(Job).filter(Job.id == job_id, Job.deleted_at.is_(None)).first()
    if not job:
        return None

    if not force_refresh and job.job_intel:
        latest = (
            db.query(func.max(FieldSession.processed_at))
            .filter(
                FieldSession.job_id == job_id,
                FieldSession.status == SessionStatus.COMPLETE.value,
                FieldSession.deleted_at.is_(None),
            )
            .scalar()
        )
        if latest is None or _naive(latest) <= _naive(job.updated_at):
            return job.job_intel

    return update_job_intelligence(db, job_id)


def stale_job_ids(db: Session, limit: int) -> list[int]:
    """Active jobs whose brief predates their newest completed walk."""
    latest = (
        db.query(FieldSession.job_id, func.max(FieldSession.processed_at).label("latest"))
        .filter(
            FieldSession.status == SessionStatus.COMPLETE.value,
            FieldSession.deleted_at.is_(None),
            FieldSession.job_id.isnot(None),
        )
        .group_by(FieldSession.job_id)
        .subquery()
    )
    rows = (
        db.query(Job.id)
        .join(latest, latest.c.job_id == Job.id)
        .filter(Job.status == "active", Job.deleted_at.is_(None), Job.updated_at < latest.c.latest)
        .limit(limit)
        .all()
    )
    return [r[0] for r in rows]


def _naive(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; compare everything as naive UTC
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
