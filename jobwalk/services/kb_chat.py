from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from jobwalk.core.config import settings
from jobwalk.core.logging import get_logger
from jobwalk.models.action_item import ActionItem
from jobwalk.models.chat_message import ChatMessage
from jobwalk.models.job import Job
from jobwalk.services.kb_search import search_chunks
from jobwalk.services.llm.client import chat_completion
from jobwalk.services.llm.prompts import CHAT_SYSTEM

logger = get_logger(__name__)

CONTEXT_CHUNKS = 8
HISTORY_TURNS = 10
MAX_MESSAGE_CHARS = 10000
MAX_HISTORY_CHARS = 5000

_TASK_KEYWORDS_RE = re.compile(r"action|todo|task|item|open|pending|due|follow.?up|what.*(need|should|do)", re.I)

_INJECTION_PATTERNS = [
    (re.compile(r"system:|assistant:|human:|user:", re.I), ""),
    (re.compile(r"\[system\]|\[assistant\]|\[human\]|\[user\]", re.I), ""),
    (re.compile(r"<system>|</system>|<assistant>|</assistant>", re.I), ""),
    (re.compile(r'\{"role":\s*"system".*?\}', re.I), ""),
    (re.compile(r"(?:ignore|disregard)\s+(?:previous|above|all)\s+instructions", re.I), "[REDACTED]"),
    (re.compile(r"you\s+are\s+now", re.I), "[REDACTED]"),
]


@dataclass
class ChatContext:
    text: str
    chunks: List[Dict[str, Any]]
    action_text: str = ""


@dataclass
class ChatReply:
    reply: str
    sources: List[Dict[str, Any]]


def sanitize_for_llm(s: str) -> str:
    """Drop role markers and instruction-override phrases from user text."""
    out = s or ""
    for pattern, repl in _INJECTION_PATTERNS:
        out = pattern.sub(repl, out)
    return out[:MAX_MESSAGE_CHARS]


def _format_date(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if value:
        return str(value)[:10]
    return None


def _chunk_header(chunk: Dict[str, Any]) -> str:
    meta = [m for m in (chunk.get("builder_name"), chunk.get("subdivision")) if m]
    if chunk.get("lot_number"):
        meta.append(f"Lot {chunk['lot_number']}")
    date = _format_date(chunk.get("recorded_at"))
    if date:
        meta.append(date)
    return f"[{' — '.join(meta)}]" if meta else "[Recording]"


def get_action_item_context(db: Session, question: str, job_id: Optional[int] = None) -> str:
    """Open action items, only when the question looks task-related."""
    if not _TASK_KEYWORDS_RE.search(question or ""):
        return ""

    q = (
        db.query(ActionItem, Job)
        .outerjoin(Job, Job.id == ActionItem.job_id)
        .filter(ActionItem.completed.is_(False), ActionItem.deleted_at.is_(None))
    )
    if job_id is not None:
        q = q.filter(ActionItem.job_id == job_id)
    rows = q.order_by(ActionItem.created_at.desc(), ActionItem.id.desc()).limit(20).all()
    if not rows:
        return ""

    lines = ["", "", "OPEN ACTION ITEMS:"]
    for item, job in rows:
        meta = " — ".join(x for x in (job.builder_name, job.subdivision, job.lot_number) if x) if job else ""
        lines.append(f"• [{meta}] {item.description} ({item.priority})")
    return "\n".join(lines) + "\n"


def build_chat_context(
    db: Session,
    question: str,
    *,
    job_id: Optional[int] = None,
    limit: int = CONTEXT_CHUNKS,
) -> ChatContext:
    """
    Grounding context for a question: top-k vector hits with provenance
    headers, plus open action items when the question asks about tasks.
    """
    chunks = search_chunks(db, question, job_id=job_id, limit=limit)

    text = ""
    if chunks:
        parts = ["\n\nRELEVANT INFORMATION FROM RECORDINGS:\n\n"]
        for c in chunks:
            parts.append(f"{_chunk_header(c)} ({c['chunk_type']}):\n{c['content']}\n\n")
        text = "".join(parts)

    return ChatContext(
        text=text,
        chunks=chunks,
        action_text=get_action_item_context(db, question, job_id),
    )


def _history_messages(history: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for msg in (history or [])[-HISTORY_TURNS:]:
        role = msg.get("role")
        if role not in ("user", "assistant"):
            continue
        out.append({"role": role, "content": sanitize_for_llm(str(msg.get("content") or ""))[:MAX_HISTORY_CHARS]})
    return out


def ask(
    db: Session,
    message: str,
    *,
    job_id: Optional[int] = None,
    history: Optional[List[Dict[str, Any]]] = None,
) -> ChatReply:
    """
    Retrieval-grounded chat turn. Both sides of the exchange are stored.

    UpstreamTimeout propagates so the HTTP layer can answer 504.
    """
    ctx = build_chat_context(db, message, job_id=job_id)

    user_content = sanitize_for_llm(message) + ctx.text + ctx.action_text
    messages = [{"role": "system", "content": CHAT_SYSTEM}]
    messages.extend(_history_messages(history or []))
    messages.append({"role": "user", "content": user_content})

    reply = chat_completion(
        messages,
        temperature=0.5,
        max_tokens=1024,
        timeout_s=settings.ollama_chat_timeout_sec,
    ) or "Sorry, I couldn't generate a response."

    db.add(ChatMessage(job_id=job_id, role="user", content=message))
    db.add(
        ChatMessage(
            job_id=job_id,
            role="assistant",
            content=reply,
            context_used_json=json.dumps(
                [{"id": c["chunk_id"], "similarity": round(c["similarity"], 3)} for c in ctx.chunks]
            ),
        )
    )
    db.commit()

    logger.info(f"Chat reply generated (job_id={job_id}, chunks={len(ctx.chunks)})")

    return ChatReply(
        reply=reply,
        sources=[
            {
                "session_id": c["session_id"],
                "builder": c["builder_name"],
                "subdivision": c["subdivision"],
                "lot": c["lot_number"],
                "date": _format_date(c["recorded_at"]),
                "type": c["chunk_type"],
                "similarity": round(c["similarity"], 3),
            }
            for c in ctx.chunks
        ],
    )
