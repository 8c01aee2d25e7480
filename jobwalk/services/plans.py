from __future__ import annotations

import json
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from jobwalk.core.config import settings
from jobwalk.core.errors import NotFound, UpstreamError, UpstreamTimeout
from jobwalk.core.logging import get_logger
from jobwalk.models.attachment import Attachment
from jobwalk.models.field_session import FieldSession
from jobwalk.services.chunk_index import embed_plan_analysis
from jobwalk.services.llm.client import chat_completion
from jobwalk.services.llm.prompts import CROSS_REFERENCE_USER_TEMPLATE, PLAN_ANALYSIS_USER_TEMPLATE
from jobwalk.services.llm.schemas import DiscrepancyReport, PlanAnalysis
from jobwalk.services.llm.structured import Ok, parse_structured

logger = get_logger(__name__)

MIN_PLAN_TEXT_CHARS = 20
MAX_PLAN_TEXT_CHARS = 8000


def plan_has_error(plan: Optional[Dict[str, Any]]) -> bool:
    return not plan or bool(plan.get("error")) or bool(plan.get("parse_error"))


def _analyze_text(text: str) -> Dict[str, Any]:
    try:
        raw = chat_completion(
            [{"role": "user", "content": PLAN_ANALYSIS_USER_TEMPLATE.format(text=text[:MAX_PLAN_TEXT_CHARS])}],
            temperature=0.2,
            max_tokens=2048,
            timeout_s=settings.ollama_timeout_sec,
        )
    except UpstreamTimeout:
        logger.error("Plan analysis timed out")
        return {"error": "Analysis timed out", "raw_text_length": len(text)}
    except UpstreamError as e:
        logger.error(f"Plan analysis failed: {e}")
        return {"error": str(e), "raw_text_length": len(text)}

    result = parse_structured(raw, PlanAnalysis)
    if isinstance(result, Ok):
        return result.data.model_dump(mode="json")
    return {"error": "Unparseable analysis", **result.to_payload()}


def analyze_plan(db: Session, attachment_id: int) -> Dict[str, Any]:
    """
    Analyze one attachment from its upstream-extracted text and store the result.

    Upstream failures are recorded as {"error": ...} on the attachment rather
    than raised. A clean analysis of a session attachment is also indexed.
    """
    att = (
        db.query(Attachment)
        .filter(Attachment.id == attachment_id, Attachment.deleted_at.is_(None))
        .first()
    )
    if not att:
        raise NotFound(f"Attachment {attachment_id} not found")

    if att.file_type == "pdf":
        text = (att.extracted_text or "").strip()
        if len(text) < MIN_PLAN_TEXT_CHARS:
            analysis: Dict[str, Any] = {"error": "Insufficient text extracted", "raw_text_length": len(text)}
        else:
            analysis = _analyze_text(text)
    else:
        # images are stored for manual review
        text = f"Photo attachment: {att.file_name}"
        analysis = {"type": "image", "status": "stored", "needs_review": True}

    att.analysis_json = json.dumps(analysis, ensure_ascii=False)
    att.analysis_text = text
    db.commit()

    if att.session_id and att.file_type == "pdf" and not plan_has_error(analysis):
        embed_plan_analysis(
            db,
            session_id=att.session_id,
            job_id=att.job_id,
            analysis_text=(
                f"Plan Analysis for {att.file_name}:\n{text[:MAX_PLAN_TEXT_CHARS]}\n\n"
                f"Extracted Data:\n{json.dumps(analysis, indent=2)}"
            ),
        )

    logger.info(f"Plan analysis stored for attachment {attachment_id} (error={plan_has_error(analysis)})")
    return analysis


def pending_plan_attachments(db: Session, fs: FieldSession) -> list[Attachment]:
    scope = [Attachment.session_id == fs.id]
    if fs.job_id is not None:
        scope.append(Attachment.job_id == fs.job_id)
    return (
        db.query(Attachment)
        .filter(
            or_(*scope),
            Attachment.file_type == "pdf",
            Attachment.analysis_json.is_(None),
            Attachment.deleted_at.is_(None),
        )
        .order_by(Attachment.id.asc())
        .all()
    )


def load_plan_analysis(db: Session, fs: FieldSession) -> Optional[Dict[str, Any]]:
    """First stored plan analysis for the session (or its job), if any."""
    scope = [Attachment.session_id == fs.id]
    if fs.job_id is not None:
        scope.append(Attachment.job_id == fs.job_id)
    att = (
        db.query(Attachment)
        .filter(
            or_(*scope),
            Attachment.file_type == "pdf",
            Attachment.analysis_json.isnot(None),
            Attachment.deleted_at.is_(None),
        )
        .order_by(Attachment.id.asc())
        .first()
    )
    if not att:
        return None
    try:
        return json.loads(att.analysis_json)
    except json.JSONDecodeError:
        return None


def cross_reference(plan: Optional[Dict[str, Any]], summary: Optional[Dict[str, Any]]) -> Optional[DiscrepancyReport]:
    """Plan vs. structured summary. None when either side is unusable or the call fails."""
    if plan_has_error(plan) or not summary or summary.get("parse_error"):
        return None

    prompt = CROSS_REFERENCE_USER_TEMPLATE.format(
        plan=json.dumps(plan, indent=2),
        summary=json.dumps(summary, indent=2),
    )
    try:
        raw = chat_completion(
            [{"role": "user", "content": prompt}],
            temperature=0.2,
            max_tokens=2048,
            timeout_s=settings.ollama_timeout_sec,
        )
    except UpstreamError as e:
        logger.error(f"Cross-reference failed: {e}")
        return None

    result = parse_structured(raw, DiscrepancyReport)
    return result.data if isinstance(result, Ok) else None
