from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from jobwalk.core.logging import get_logger
from jobwalk.models.notification import Notification
from jobwalk.realtime.hub import hub

logger = get_logger(__name__)


def _safe_json_loads(s: str | None):
    if not s:
        return None
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        return None


def serialize_notification(n: Notification) -> Dict[str, Any]:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "body": n.body,
        "data": _safe_json_loads(n.data_json),
        "read": bool(n.read),
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def create_notification(
    db: Session,
    type: str,
    title: str,
    body: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
    *,
    job_id: Optional[int] = None,
) -> Notification:
    """Persist to the notification log, then push to live clients."""
    n = Notification(
        type=type,
        title=title,
        body=body,
        data_json=json.dumps(data, ensure_ascii=False, default=str) if data is not None else None,
    )
    db.add(n)
    db.commit()
    db.refresh(n)

    hub.publish({"type": "notification", "notification": serialize_notification(n)}, job_id=job_id)
    return n


def notify_session_complete(
    db: Session,
    *,
    session_id: int,
    job_id: Optional[int],
    job_label: Optional[str],
    summary: Dict[str, Any],
) -> Notification:
    action_count = len(summary.get("action_items") or [])
    flag_count = len(summary.get("flags") or [])

    parts = [job_label or "Unassigned walk"]
    if action_count:
        parts.append(f"{action_count} action item{'s' if action_count != 1 else ''}")
    if flag_count:
        parts.append(f"{flag_count} flag{'s' if flag_count != 1 else ''}")

    n = create_notification(
        db,
        "session_complete",
        "Job walk processed",
        " • ".join(parts),
        {"session_id": session_id, "job_id": job_id},
        job_id=job_id,
    )
    hub.publish(
        {
            "type": "session_complete",
            "sessionId": session_id,
            "jobId": job_id,
            "summary": {
                "builder": summary.get("builder_name"),
                "subdivision": summary.get("subdivision"),
                "lot": summary.get("lot_number"),
                "phase": summary.get("phase"),
                "actionItems": action_count,
                "flags": flag_count,
            },
        },
        job_id=job_id,
    )
    return n


def notify_discrepancies(
    db: Session,
    *,
    session_id: int,
    job_id: Optional[int],
    report: Dict[str, Any],
) -> Optional[Notification]:
    """
    Live event whenever a report has items; a persisted log entry only when at
    least one item is high or critical.
    """
    items = report.get("items") or []
    if not items:
        return None

    urgent = [i for i in items if i.get("severity") in ("high", "critical")]
    n = None
    if urgent:
        n = create_notification(
            db,
            "discrepancy",
            f"{len(urgent)} plan discrepanc{'ies' if len(urgent) != 1 else 'y'} need attention",
            "; ".join(i.get("description", "") for i in urgent[:3]),
            {"session_id": session_id, "job_id": job_id, "items": urgent},
            job_id=job_id,
        )

    hub.publish(
        {
            "type": "discrepancies",
            "sessionId": session_id,
            "jobId": job_id,
            "count": len(items),
            "urgent": len(urgent),
            "items": items,
        },
        job_id=job_id,
    )
    return n


def notify_error(db: Session, *, session_id: int, message: str, job_id: Optional[int] = None) -> Notification:
    n = create_notification(
        db,
        "error",
        "Processing failed",
        f"Session #{session_id}: {message}",
        {"session_id": session_id},
        job_id=job_id,
    )
    hub.publish({"type": "error", "sessionId": session_id, "message": message}, job_id=job_id)
    return n


def get_unread(db: Session, limit: int = 50) -> List[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.read.is_(False))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def list_notifications(db: Session, *, limit: int = 50, offset: int = 0) -> List[Notification]:
    return (
        db.query(Notification)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_counts(db: Session) -> Dict[str, int]:
    total = db.query(func.count(Notification.id)).scalar() or 0
    unread = db.query(func.count(Notification.id)).filter(Notification.read.is_(False)).scalar() or 0
    return {"total": int(total), "unread": int(unread)}


def mark_read(db: Session, ids: List[int]) -> int:
    if not ids:
        return 0
    count = (
        db.query(Notification)
        .filter(Notification.id.in_(ids), Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return int(count)


def mark_all_read(db: Session) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return int(count)


def cleanup_read_notifications(db: Session, older_than_days: int) -> int:
    """Delete read entries older than the retention window (unread ones are kept)."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
    count = (
        db.query(Notification)
        .filter(Notification.read.is_(True), Notification.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    if count:
        logger.info(f"Cleaned up {count} old notification(s)")
    return int(count)
