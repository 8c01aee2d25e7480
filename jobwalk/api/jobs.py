from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from jobwalk.db.session import get_db
from jobwalk.models.action_item import ActionItem
from jobwalk.models.field_session import FieldSession
from jobwalk.models.job import Job
from jobwalk.services.intelligence import get_job_intelligence

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _serialize_job(j: Job) -> dict:
    return {
        "id": j.id,
        "label": j.label(),
        "builder_name": j.builder_name,
        "subdivision": j.subdivision,
        "lot_number": j.lot_number,
        "address": j.address,
        "phase": j.phase,
        "status": j.status,
        "notes": j.notes,
        "created_at": j.created_at.isoformat() if j.created_at else None,
        "updated_at": j.updated_at.isoformat() if j.updated_at else None,
    }


def _get_job_or_404(db: Session, job_id: int) -> Job:
    job = db.query(Job).filter(Job.id == job_id, Job.deleted_at.is_(None)).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("")
def list_jobs(
    db: Session = Depends(get_db),
    q: str | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    query = db.query(Job).filter(Job.deleted_at.is_(None))
    if status:
        query = query.filter(Job.status == status)
    if q and q.strip():
        s = f"%{q.strip()}%"
        query = query.filter(
            or_(
                Job.builder_name.ilike(s),
                Job.subdivision.ilike(s),
                Job.lot_number.ilike(s),
                Job.address.ilike(s),
            )
        )

    total = query.count()
    rows = query.order_by(Job.updated_at.desc(), Job.id.desc()).offset(offset).limit(limit).all()
    return {
        "ok": True,
        "total": total,
        "limit": limit,
        "offset": offset,
        "items": [_serialize_job(j) for j in rows],
    }


@router.get("/{job_id}")
def get_job(job_id: int, db: Session = Depends(get_db)):
    job = _get_job_or_404(db, job_id)

    sessions = (
        db.query(FieldSession)
        .filter(FieldSession.job_id == job_id, FieldSession.deleted_at.is_(None))
        .order_by(FieldSession.recorded_at.desc(), FieldSession.id.desc())
        .limit(50)
        .all()
    )
    open_items = (
        db.query(ActionItem)
        .filter(ActionItem.job_id == job_id, ActionItem.completed.is_(False), ActionItem.deleted_at.is_(None))
        .order_by(ActionItem.id.asc())
        .all()
    )

    return {
        "ok": True,
        "job": _serialize_job(job),
        "sessions": [
            {
                "id": s.id,
                "title": s.title,
                "phase": s.phase,
                "status": s.status,
                "recorded_at": s.recorded_at.isoformat() if s.recorded_at else None,
                "duration_secs": s.duration_secs,
            }
            for s in sessions
        ],
        "open_action_items": [
            {"id": a.id, "session_id": a.session_id, "description": a.description, "priority": a.priority, "due": a.due}
            for a in open_items
        ],
    }


@router.get("/{job_id}/intel")
def job_intel(job_id: int, refresh: bool = Query(default=False), db: Session = Depends(get_db)):
    _get_job_or_404(db, job_id)
    intel = get_job_intelligence(db, job_id, force_refresh=refresh)
    return {"ok": True, "job_id": job_id, "intel": intel}
