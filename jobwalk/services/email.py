"""Outbound email.

Summary emails, discrepancy alerts and the weekly digest go out through an
HTTP email API (Resend-compatible). Every public function returns True only
when the API accepted the message; nothing here raises for delivery problems.
"""

from __future__ import annotations

import html
from typing import Any, Dict, List, Optional

import httpx

from jobwalk.core.config import settings
from jobwalk.core.logging import get_logger

logger = get_logger(__name__)


def _send(subject: str, text_body: str, html_body: Optional[str] = None) -> bool:
    if not settings.email_enabled:
        logger.info(f"Email not configured, skipping: {subject}")
        return False

    payload: Dict[str, Any] = {
        "from": settings.email_from,
        "to": settings.email_recipients,
        "subject": subject,
        "text": text_body,
        "html": html_body or f"<pre>{html.escape(text_body)}</pre>",
    }
    try:
        with httpx.Client(timeout=settings.email_timeout_sec) as client:
            r = client.post(
                settings.email_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {settings.email_api_key}"},
            )
            r.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Email delivery failed ({subject}): {e}")
        return False

    logger.info(f"Email sent: {subject}")
    return True


def send_summary_email(*, session_id: int, job_label: Optional[str], summary_text: str) -> bool:
    subject = f"Job walk summary: {job_label or f'Session #{session_id}'}"
    return _send(subject, summary_text)


def send_discrepancy_alert(*, session_id: int, job_label: Optional[str], report: Dict[str, Any]) -> bool:
    items: List[Dict[str, Any]] = report.get("items") or []
    lines = [f"Plan discrepancies found for {job_label or f'session #{session_id}'}", ""]
    for i in items:
        lines.append(f"[{str(i.get('severity', 'medium')).upper()}] {i.get('description')}")
        if i.get("plan_says"):
            lines.append(f"    Plans: {i['plan_says']}")
        if i.get("conversation_says"):
            lines.append(f"    Walk:  {i['conversation_says']}")
    if report.get("recommendation"):
        lines += ["", f"Recommendation: {report['recommendation']}"]

    subject = f"{len(items)} plan discrepanc{'ies' if len(items) != 1 else 'y'}: {job_label or f'Session #{session_id}'}"
    return _send(subject, "\n".join(lines))


def send_digest_email(digest_text: str, stats: Dict[str, Any]) -> bool:
    header = (
        f"{stats.get('walks', 0)} walks, {stats.get('minutes', 0)} min recorded, "
        f"{stats.get('active_jobs', 0)} active jobs, {stats.get('open_actions', 0)} open items"
    )
    return _send("Weekly digest", f"{header}\n\n{digest_text}")
