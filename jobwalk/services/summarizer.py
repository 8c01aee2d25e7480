from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional

from jobwalk.core.config import settings
from jobwalk.core.errors import UpstreamError
from jobwalk.core.logging import get_logger
from jobwalk.services.llm.client import chat_completion
from jobwalk.services.llm.prompts import (
    DISCREPANCY_USER_TEMPLATE,
    SUMMARY_PLAN_TEMPLATE,
    SUMMARY_SYSTEM,
    SUMMARY_USER_TEMPLATE,
)
from jobwalk.services.llm.schemas import DiscrepancyReport, SessionSummary
from jobwalk.services.llm.structured import Ok, StructuredResult, parse_structured

logger = get_logger(__name__)

_PRIORITY_MARK = {"critical": "[!!]", "high": "[!]"}


def summarize_transcript(transcript: str, plan_analysis: Optional[Dict[str, Any]] = None) -> StructuredResult:
    """
    Structured summary of a cleaned transcript.

    Upstream errors propagate (fatal for a pipeline run); unparseable output
    comes back as ParseError.
    """
    user = SUMMARY_USER_TEMPLATE.format(transcript=transcript)
    if plan_analysis:
        user += SUMMARY_PLAN_TEMPLATE.format(plan=json.dumps(plan_analysis, indent=2))

    raw = chat_completion(
        [
            {"role": "system", "content": SUMMARY_SYSTEM},
            {"role": "user", "content": user},
        ],
        temperature=0.3,
        max_tokens=2048,
        timeout_s=settings.ollama_summary_timeout_sec,
    )

    result = parse_structured(raw, SessionSummary)
    if not isinstance(result, Ok):
        logger.warning(f"Summary JSON did not validate, storing raw text ({result.reason})")
    return result


def summary_payload(result: StructuredResult) -> Dict[str, Any]:
    if isinstance(result, Ok):
        return result.data.model_dump(mode="json")
    return result.to_payload()


def format_summary_text(
    summary: Dict[str, Any],
    *,
    recorded_at: Optional[datetime] = None,
    duration_secs: Optional[float] = None,
) -> str:
    """Plain-text rendering of a summary payload (what gets emailed and indexed)."""
    if summary.get("parse_error"):
        return summary.get("raw_response") or "Summary generation failed, see raw transcript."

    lines = ["JOB WALK SUMMARY", "=" * 40]

    if summary.get("builder_name"):
        lines.append(f"Builder:     {summary['builder_name']}")
    if summary.get("subdivision"):
        lines.append(f"Subdivision: {summary['subdivision']}")
    if summary.get("lot_number"):
        lines.append(f"Lot:         {summary['lot_number']}")
    if summary.get("phase"):
        lines.append(f"Phase:       {summary['phase']}")
    if recorded_at:
        lines.append(f"Date:        {recorded_at.date().isoformat()}")
    if duration_secs:
        lines.append(f"Duration:    {round(duration_secs / 60)} min")
    lines.append("")

    if summary.get("key_decisions"):
        lines.append("KEY DECISIONS")
        lines.extend(f"• {d}" for d in summary["key_decisions"])
        lines.append("")

    fixtures = summary.get("fixture_changes") or {}
    if fixtures.get("mentioned_count") or fixtures.get("details"):
        lines.append("FIXTURE CHANGES")
        if fixtures.get("mentioned_count"):
            lines.append(f"Count mentioned: {fixtures['mentioned_count']}")
        lines.extend(f"• {d}" for d in fixtures.get("details") or [])
        lines.append("")

    if summary.get("action_items"):
        lines.append("ACTION ITEMS")
        for item in summary["action_items"]:
            mark = _PRIORITY_MARK.get(item.get("priority"), "[ ]")
            due = f" (by {item['due']})" if item.get("due") else ""
            lines.append(f"{mark} {item.get('description')}{due}")
        lines.append("")

    if summary.get("flags"):
        lines.append("FLAGS")
        lines.extend(f"• {f}" for f in summary["flags"])
        lines.append("")

    if summary.get("notes"):
        lines.append("NOTES")
        lines.append(summary["notes"])

    return "\n".join(lines).rstrip()


def generate_discrepancies(transcript: str, plan_analysis: Optional[Dict[str, Any]]) -> Optional[DiscrepancyReport]:
    """Transcript-vs-plan comparison. Any failure yields None."""
    if not plan_analysis:
        return None

    prompt = DISCREPANCY_USER_TEMPLATE.format(
        transcript=transcript,
        plan=json.dumps(plan_analysis, indent=2),
    )
    try:
        raw = chat_completion(
            [{"role": "user", "content": prompt}],
            temperature=0.2,
            max_tokens=1024,
            timeout_s=settings.ollama_timeout_sec,
        )
    except UpstreamError as e:
        logger.error(f"Discrepancy generation failed: {e}")
        return None

    result = parse_structured(raw, DiscrepancyReport)
    return result.data if isinstance(result, Ok) else None
