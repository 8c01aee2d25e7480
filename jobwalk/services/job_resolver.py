from __future__ import annotations

import re
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from jobwalk.core.logging import get_logger
from jobwalk.models.job import Job

logger = get_logger(__name__)

# "Oak Creek lot 42", "oak creek, Lot #42", "Oak Creek lot number 7B"
_VOICE_TAG_RE = re.compile(
    r"^\s*(?P<subdivision>.+?)[\s,]*\blot\b\s*(?:number\s*|#\s*)?(?P<lot>[\w-]+)",
    re.IGNORECASE,
)
_TAG_PUNCT_RE = re.compile(r"[^\w\s#-]")


def parse_voice_tag(tag: Optional[str]) -> Optional[Tuple[str, str]]:
    """(subdivision, lot_number) from a spoken tag, or None if it doesn't fit the pattern."""
    if not tag:
        return None
    m = _VOICE_TAG_RE.match(_TAG_PUNCT_RE.sub(" ", tag))
    if not m:
        return None
    subdivision = " ".join(m.group("subdivision").split()).strip(" -")
    lot = m.group("lot").strip(" -")
    if not subdivision or not lot:
        return None
    return subdivision, lot


def find_job(db: Session, subdivision: str, lot_number: str) -> Optional[Job]:
    return (
        db.query(Job)
        .filter(
            func.lower(Job.subdivision) == subdivision.strip().lower(),
            func.lower(Job.lot_number) == lot_number.strip().lower(),
            Job.deleted_at.is_(None),
        )
        .order_by(Job.id.asc())
        .first()
    )


def match_voice_tag(db: Session, voice_tag: Optional[str]) -> Optional[int]:
    parts = parse_voice_tag(voice_tag)
    if not parts:
        return None
    job = find_job(db, *parts)
    return job.id if job else None


def resolve_job(db: Session, voice_tag: Optional[str], summary: Optional[Dict[str, Any]]) -> Optional[int]:
    """
    Find or create the Job a session belongs to.

    Voice-tag match first, then the summary's own (subdivision, lot_number),
    both case-insensitive. With no match a Job is created from the tag's
    location if there is one, otherwise from the summary, but only if
    something identifies it (builder, subdivision, lot or a voice tag).

    Not safe against two concurrent calls creating the same new lot.
    """
    s = summary if summary and not summary.get("parse_error") else {}
    builder = s.get("builder_name")
    subdivision = s.get("subdivision")
    lot = s.get("lot_number")

    tag_parts = parse_voice_tag(voice_tag)
    if tag_parts:
        job = find_job(db, *tag_parts)
        if job:
            return job.id

    if subdivision and lot:
        job = find_job(db, subdivision, lot)
        if job:
            return job.id

    # a new Job takes its location from the tag when one was spoken
    if tag_parts:
        subdivision, lot = tag_parts

    if not any([builder, subdivision, lot, voice_tag]):
        return None

    job = Job(
        builder_name=builder,
        subdivision=subdivision,
        lot_number=lot,
        address=s.get("address"),
        phase=s.get("phase"),
        status="active",
        notes=f"Voice tagged: {voice_tag}" if voice_tag else None,
    )
    db.add(job)
    db.commit()
    db.refresh(job)

    logger.info(f"Created job {job.id} ({job.label()})")
    return job.id
