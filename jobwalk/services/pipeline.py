from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobwalk.core.errors import InvalidTransition, JobwalkError, NotFound
from jobwalk.core.logging import get_logger, log_with_context
from jobwalk.db.session import SessionLocal
from jobwalk.models.action_item import ActionItem
from jobwalk.models.chunk import Chunk
from jobwalk.models.field_session import ALLOWED_TRANSITIONS, FieldSession, SessionStatus
from jobwalk.models.job import Job
from jobwalk.services.chunk_index import embed_session, embed_summary
from jobwalk.services.commands import flag_word_positions, parse_commands, strip_commands
from jobwalk.services.email import send_discrepancy_alert, send_summary_email
from jobwalk.services.intelligence import update_job_intelligence
from jobwalk.services.job_resolver import match_voice_tag, resolve_job
from jobwalk.services.notifications import notify_discrepancies, notify_error, notify_session_complete
from jobwalk.services.plans import (
    analyze_plan,
    cross_reference,
    load_plan_analysis,
    pending_plan_attachments,
    plan_has_error,
)
from jobwalk.services.stt import transcribe_audio
from jobwalk.services.summarizer import (
    format_summary_text,
    generate_discrepancies,
    summarize_transcript,
    summary_payload,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _load_session(db: Session, session_id: int) -> Optional[FieldSession]:
    return (
        db.query(FieldSession)
        .filter(FieldSession.id == session_id, FieldSession.deleted_at.is_(None))
        .first()
    )


def create_session(
    db: Session,
    *,
    audio_path: str,
    title: Optional[str] = None,
    job_id: Optional[int] = None,
    voice_tag: Optional[str] = None,
    recorded_at: Optional[datetime] = None,
) -> FieldSession:
    """Register an uploaded recording; processing starts from `uploaded`."""
    fs = FieldSession(
        audio_path=audio_path,
        title=title,
        job_id=job_id,
        voice_tag=voice_tag,
        recorded_at=recorded_at or _utcnow(),
        status=SessionStatus.UPLOADED.value,
    )
    db.add(fs)
    db.commit()
    db.refresh(fs)
    return fs


def clear_derived(db: Session, session_id: int) -> None:
    """Soft-delete chunks and action items left behind by an earlier run."""
    now = _utcnow()
    for model in (Chunk, ActionItem):
        db.query(model).filter(model.session_id == session_id, model.deleted_at.is_(None)).update(
            {model.deleted_at: now}, synchronize_session=False
        )
    db.commit()


def reset_session_for_retry(db: Session, session_id: int) -> FieldSession:
    """error -> uploaded. Raises NotFound / InvalidTransition."""
    fs = _load_session(db, session_id)
    if not fs:
        raise NotFound(f"Session {session_id} not found")
    fs.reset_for_retry()
    db.commit()
    db.refresh(fs)
    return fs


def retryable_session_ids(db: Session, *, limit: int, within_hours: int = 24) -> List[int]:
    cutoff = _utcnow() - timedelta(hours=within_hours)
    rows = (
        db.query(FieldSession.id)
        .filter(
            FieldSession.status == SessionStatus.ERROR.value,
            FieldSession.created_at > cutoff,
            FieldSession.deleted_at.is_(None),
        )
        .order_by(FieldSession.id.asc())
        .limit(limit)
        .all()
    )
    return [r[0] for r in rows]


def _mark_failed(db: Session, session_id: int, message: str) -> None:
    fs = _load_session(db, session_id)
    job_id = fs.job_id if fs else None
    if fs is not None and SessionStatus.ERROR in ALLOWED_TRANSITIONS[fs.status_enum]:
        fs.transition_to(SessionStatus.ERROR, error_message=message[:2000])
        db.commit()
    try:
        notify_error(db, session_id=session_id, message=message, job_id=job_id)
    except SQLAlchemyError as e:
        db.rollback()
        log_with_context(logger, logging.ERROR, "Could not record error notification", session_id=session_id, error=str(e))


def _analyze_pending_plans(db: Session, fs: FieldSession) -> None:
    for att in pending_plan_attachments(db, fs):
        try:
            analyze_plan(db, att.id)
        except JobwalkError as e:
            log_with_context(
                logger,
                logging.WARNING,
                "Plan analysis failed, continuing without it",
                session_id=fs.id,
                attachment_id=att.id,
                error=str(e),
            )


def _run(db: Session, fs: FieldSession) -> Dict[str, Any]:
    t0 = time.time()
    session_id = fs.id
    fs.processing_started_at = _utcnow()
    clear_derived(db, session_id)

    # 1) transcribe
    fs.transition_to(SessionStatus.TRANSCRIBING)
    db.commit()
    log_with_context(logger, logging.INFO, "Transcribing", session_id=session_id)

    stt = transcribe_audio(fs.audio_path)

    # 2) voice commands come out before anything semantic sees the text
    extracted = strip_commands(stt.text)
    meta = parse_commands(extracted.commands)
    flag_positions = flag_word_positions(stt.text, meta.flags)

    fs.transcript = extracted.cleaned
    fs.duration_secs = int(round(stt.duration_secs)) if stt.duration_secs else None
    fs.command_meta_json = json.dumps(meta.to_dict())
    db.commit()

    # 3) explicit job > voice tag
    voice_tag = fs.voice_tag or meta.job_tag
    if fs.job_id is None and voice_tag:
        fs.job_id = match_voice_tag(db, voice_tag)
        db.commit()

    # 4) plans (per-attachment failures are not fatal)
    _analyze_pending_plans(db, fs)
    plan = load_plan_analysis(db, fs)
    usable_plan = None if plan_has_error(plan) else plan

    # 5) summarize
    fs.transition_to(SessionStatus.SUMMARIZING)
    db.commit()
    log_with_context(logger, logging.INFO, "Summarizing", session_id=session_id, words=len(fs.transcript.split()))

    summary = summary_payload(summarize_transcript(fs.transcript, usable_plan))
    summary_text = format_summary_text(summary, recorded_at=fs.recorded_at, duration_secs=fs.duration_secs)

    # 6) summary-derived match, then create
    if fs.job_id is None:
        fs.job_id = resolve_job(db, voice_tag, summary)

    # 7) cross-reference against the plan
    discrepancies: Optional[Dict[str, Any]] = None
    if usable_plan is not None:
        report = cross_reference(usable_plan, summary) or generate_discrepancies(fs.transcript, usable_plan)
        if report is not None:
            discrepancies = report.model_dump(mode="json")
    disc_items = (discrepancies or {}).get("items") or []

    # 8) persist results
    now = _utcnow()
    fs.summary = summary_text
    fs.summary_json = json.dumps(summary, ensure_ascii=False)
    fs.discrepancies_json = json.dumps(discrepancies, ensure_ascii=False) if discrepancies else None
    fs.phase = summary.get("phase") or fs.phase
    fs.processed_at = now

    job = db.get(Job, fs.job_id) if fs.job_id else None
    if job is not None and summary.get("phase"):
        job.phase = summary["phase"]

    for item in summary.get("action_items") or []:
        db.add(
            ActionItem(
                session_id=session_id,
                job_id=fs.job_id,
                description=item["description"],
                priority=item.get("priority") or "normal",
                due=item.get("due"),
            )
        )
    db.commit()

    # 9) index
    embed_session(
        db,
        session_id=session_id,
        job_id=fs.job_id,
        transcript=fs.transcript,
        flag_positions=flag_positions,
    )
    embed_summary(db, session_id=session_id, job_id=fs.job_id, summary_text=summary_text)

    # 10) outbound
    job_label = job.label() if job is not None else None
    if send_summary_email(session_id=session_id, job_label=job_label, summary_text=summary_text):
        fs.emailed_at = _utcnow()
        db.commit()

    if disc_items:
        send_discrepancy_alert(session_id=session_id, job_label=job_label, report=discrepancies)

    if fs.job_id:
        update_job_intelligence(db, fs.job_id, include_session_id=session_id)

    notify_session_complete(db, session_id=session_id, job_id=fs.job_id, job_label=job_label, summary=summary)
    if disc_items:
        notify_discrepancies(db, session_id=session_id, job_id=fs.job_id, report=discrepancies)

    fs.processing_completed_at = _utcnow()
    fs.processing_duration_secs = round(time.time() - t0, 3)
    fs.transition_to(SessionStatus.COMPLETE)
    db.commit()

    log_with_context(
        logger,
        logging.INFO,
        "Session complete",
        session_id=session_id,
        job_id=fs.job_id,
        elapsed_s=fs.processing_duration_secs,
    )
    return {"session_id": session_id, "job_id": fs.job_id, "summary": summary}


def process_session(session_id: int) -> Dict[str, Any]:
    """
    Run one session through transcribe -> commands -> job -> summarize ->
    cross-reference -> persist/index -> notify.

    Only an `uploaded` session can start (InvalidTransition otherwise, nothing
    touched). A failure in any stage marks the session `error`, emits an error
    notification and re-raises.
    """
    db = SessionLocal()
    try:
        fs = _load_session(db, session_id)
        if fs is None:
            notify_error(db, session_id=session_id, message=f"Session {session_id} not found")
            raise NotFound(f"Session {session_id} not found")
        if fs.status_enum is not SessionStatus.UPLOADED:
            raise InvalidTransition(fs.status, SessionStatus.TRANSCRIBING.value)

        try:
            return _run(db, fs)
        except Exception as e:
            db.rollback()
            log_with_context(logger, logging.ERROR, "Pipeline failed", session_id=session_id, error=str(e), exc_info=True)
            _mark_failed(db, session_id, str(e) or e.__class__.__name__)
            raise
    finally:
        db.close()


def retry_session(session_id: int) -> Dict[str, Any]:
    """Manual or scheduled retry: reset error -> uploaded, then replay from the start."""
    db = SessionLocal()
    try:
        reset_session_for_retry(db, session_id)
    finally:
        db.close()
    return process_session(session_id)
