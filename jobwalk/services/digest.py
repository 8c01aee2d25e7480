from __future__ import annotations

import json
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from jobwalk.core.config import settings
from jobwalk.core.errors import UpstreamError, UpstreamTimeout
from jobwalk.core.logging import get_logger
from jobwalk.models.action_item import ActionItem
from jobwalk.models.field_session import FieldSession, SessionStatus
from jobwalk.models.job import Job
from jobwalk.models.notification import Notification
from jobwalk.services.email import send_digest_email
from jobwalk.services.llm.client import chat_completion
from jobwalk.services.llm.prompts import DIGEST_SYSTEM
from jobwalk.services.notifications import create_notification

logger = get_logger(__name__)

_PRIORITY_ORDER = {"critical": 0, "high": 1, "normal": 2, "low": 3}


def gather_week(db: Session, now: datetime) -> Dict[str, Any]:
    week_ago = now - timedelta(days=7)

    sessions = (
        db.query(FieldSession, Job)
        .outerjoin(Job, Job.id == FieldSession.job_id)
        .filter(
            FieldSession.status == SessionStatus.COMPLETE.value,
            FieldSession.recorded_at >= week_ago,
            FieldSession.deleted_at.is_(None),
        )
        .order_by(FieldSession.recorded_at.desc())
        .all()
    )
    open_actions = (
        db.query(ActionItem, Job)
        .outerjoin(Job, Job.id == ActionItem.job_id)
        .filter(ActionItem.completed.is_(False), ActionItem.deleted_at.is_(None))
        .all()
    )
    open_actions.sort(key=lambda row: (_PRIORITY_ORDER.get(row[0].priority, 9), row[0].id))
    active_jobs = db.query(Job).filter(Job.status == "active", Job.deleted_at.is_(None)).all()

    minutes = round(sum((s.duration_secs or 0) for s, _ in sessions) / 60)
    with_discrepancies = sum(
        1 for s, _ in sessions if s.discrepancies_json and (json.loads(s.discrepancies_json).get("items") or [])
    )

    return {
        "period_start": week_ago,
        "period_end": now,
        "sessions": sessions,
        "open_actions": open_actions,
        "active_jobs": active_jobs,
        "stats": {
            "walks": len(sessions),
            "minutes": minutes,
            "active_jobs": len(active_jobs),
            "open_actions": len(open_actions),
            "discrepancies": with_discrepancies,
        },
    }


def build_digest_context(week: Dict[str, Any]) -> str:
    stats = week["stats"]
    lines = [
        f"WEEKLY REPORT DATA ({week['period_start'].date()} — {week['period_end'].date()})",
        "",
        "STATS:",
        f"- Job walks completed: {stats['walks']}",
        f"- Total recording time: {stats['minutes']} minutes",
        f"- Active jobs: {stats['active_jobs']}",
        f"- Open action items: {stats['open_actions']}",
        f"- Sessions with discrepancies: {stats['discrepancies']}",
        "",
    ]

    builders: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"walks": 0, "lots": set()})
    for s, job in week["sessions"]:
        b = builders[(job.builder_name if job else None) or "Unknown"]
        b["walks"] += 1
        if job and job.lot_number:
            b["lots"].add(job.lot_number)
    lines.append("BUILDER ACTIVITY:")
    lines.extend(f"- {name}: {d['walks']} walks, {len(d['lots'])} lots" for name, d in builders.items())
    lines.append("")

    lines.append("JOB WALKS THIS WEEK:")
    for s, job in week["sessions"]:
        date = s.recorded_at.date().isoformat() if s.recorded_at else "?"
        lines.append(f"- {date}: {job.label() if job else 'Unassigned'} ({s.phase or 'untagged'})")
        if s.summary:
            lines.append(f"  Summary: {s.summary[:200]}")
    lines.append("")

    if week["open_actions"]:
        lines.append("OPEN ACTION ITEMS:")
        for a, job in week["open_actions"][:20]:
            due = f" (due: {a.due})" if a.due else ""
            lines.append(f"- [{a.priority.upper()}] {job.label() if job else 'Unassigned'}: {a.description}{due}")
        if len(week["open_actions"]) > 20:
            lines.append(f"  ... and {len(week['open_actions']) - 20} more")

    return "\n".join(lines)


def generate_weekly_digest(db: Session, now: Optional[datetime] = None) -> Optional[str]:
    """
    Build, store and email the weekly digest.

    A timed-out or failed generation is logged and yields None; nothing is
    stored or sent in that case.
    """
    now = now or datetime.now(timezone.utc)
    week = gather_week(db, now)

    try:
        digest_text = chat_completion(
            [
                {"role": "system", "content": DIGEST_SYSTEM},
                {"role": "user", "content": build_digest_context(week)},
            ],
            temperature=0.4,
            max_tokens=3000,
            timeout_s=settings.ollama_chat_timeout_sec,
        )
    except UpstreamTimeout:
        logger.error("Weekly digest generation timed out")
        return None
    except UpstreamError as e:
        logger.error(f"Weekly digest generation failed: {e}")
        return None

    digest_text = digest_text or "Digest generation failed."
    create_notification(
        db,
        "weekly_digest",
        "Weekly Digest",
        digest_text[:200],
        {
            "full_text": digest_text,
            "stats": week["stats"],
            "period_start": week["period_start"].isoformat(),
            "period_end": week["period_end"].isoformat(),
        },
    )
    send_digest_email(digest_text, week["stats"])
    logger.info("Weekly digest generated")
    return digest_text


def digest_sent_since(db: Session, since: datetime) -> bool:
    count = (
        db.query(func.count(Notification.id))
        .filter(Notification.type == "weekly_digest", Notification.created_at >= since)
        .scalar()
    )
    return bool(count)
