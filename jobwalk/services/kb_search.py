from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from jobwalk.models.action_item import ActionItem
from jobwalk.models.job import Job
from jobwalk.services.embeddings import generate_embedding

SEARCH_TYPES = ("all", "transcripts", "summaries", "plans", "actions")

# search surface type -> chunk_type filter for the vector path
_TYPE_TO_CHUNK_TYPE = {
    "transcripts": "transcript",
    "summaries": "summary",
    "plans": "plan_analysis",
}


@dataclass
class HybridSearchResult:
    query: str
    vector_results: List[Dict[str, Any]] = field(default_factory=list)
    text_results: List[Dict[str, Any]] = field(default_factory=list)
    action_results: List[Dict[str, Any]] = field(default_factory=list)


def _safe_float(x: Any, default: float = 0.0) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return default


def _to_pgvector_literal(vec: List[float]) -> str:
    """
    Convert list[float] -> pgvector literal string: "[0.1,0.2,...]".
    This avoids psycopg sending it as double precision[] (array), which breaks <=>.
    """
    return "[" + ",".join(f"{float(v):.8f}" for v in vec) + "]"


def search_chunks(
    db: Session,
    query: str,
    *,
    job_id: Optional[int] = None,
    limit: int = 8,
    chunk_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Semantic search over stored chunks (pgvector cosine distance).

    similarity = 1 - distance. Soft-deleted chunks and chunks of soft-deleted
    sessions never come back.
    """
    q = (query or "").strip()
    if not q:
        return []

    qvec_literal = _to_pgvector_literal(generate_embedding(q))

    filters = ["c.deleted_at IS NULL", "s.deleted_at IS NULL", "c.embedding IS NOT NULL"]
    params: Dict[str, Any] = {"qvec": qvec_literal, "k": int(limit)}
    if job_id is not None:
        filters.append("c.job_id = :job_id")
        params["job_id"] = int(job_id)
    if chunk_type is not None:
        filters.append("c.chunk_type = :chunk_type")
        params["chunk_type"] = chunk_type

    # bind :qvec as TEXT and cast to ::vector in SQL
    stmt = text(
        f"""
        SELECT
          c.id AS chunk_id,
          c.session_id AS session_id,
          c.job_id AS job_id,
          c.chunk_type AS chunk_type,
          c.content AS content,
          c.is_flagged AS is_flagged,
          s.recorded_at AS recorded_at,
          j.builder_name AS builder_name,
          j.subdivision AS subdivision,
          j.lot_number AS lot_number,
          (1.0 - (c.embedding <=> (:qvec)::vector)) AS similarity
        FROM chunks c
        JOIN sessions s ON s.id = c.session_id
        LEFT JOIN jobs j ON j.id = c.job_id
        WHERE {" AND ".join(filters)}
        ORDER BY c.embedding <=> (:qvec)::vector
        LIMIT :k
        """
    )

    rows = db.execute(stmt, params).mappings().all()
    return [
        {
            "chunk_id": int(r["chunk_id"]),
            "session_id": int(r["session_id"]),
            "job_id": r["job_id"],
            "chunk_type": str(r["chunk_type"]),
            "content": str(r["content"]),
            "is_flagged": bool(r["is_flagged"]),
            "recorded_at": r["recorded_at"],
            "builder_name": r["builder_name"],
            "subdivision": r["subdivision"],
            "lot_number": r["lot_number"],
            "similarity": _safe_float(r["similarity"]),
        }
        for r in rows
    ]


def text_search_sessions(
    db: Session,
    query: str,
    *,
    job_id: Optional[int] = None,
    limit: int = 20,
) -> List[Dict[str, Any]]:
    """Postgres full-text ranking over session transcript + summary."""
    filters = [
        "s.deleted_at IS NULL",
        "to_tsvector('english', COALESCE(s.transcript, '') || ' ' || COALESCE(s.summary, '')) "
        "@@ plainto_tsquery('english', :q)",
    ]
    params: Dict[str, Any] = {"q": query, "k": int(limit)}
    if job_id is not None:
        filters.append("s.job_id = :job_id")
        params["job_id"] = int(job_id)

    stmt = text(
        f"""
        SELECT
          s.id AS session_id,
          s.title AS title,
          s.phase AS phase,
          s.recorded_at AS recorded_at,
          s.duration_secs AS duration_secs,
          j.builder_name AS builder_name,
          j.subdivision AS subdivision,
          j.lot_number AS lot_number,
          ts_headline('english', COALESCE(s.transcript, ''), plainto_tsquery('english', :q),
            'MaxWords=40,MinWords=15,StartSel=**,StopSel=**') AS headline,
          ts_rank(to_tsvector('english', COALESCE(s.transcript, '') || ' ' || COALESCE(s.summary, '')),
            plainto_tsquery('english', :q)) AS rank
        FROM sessions s
        LEFT JOIN jobs j ON j.id = s.job_id
        WHERE {" AND ".join(filters)}
        ORDER BY rank DESC
        LIMIT :k
        """
    )

    rows = db.execute(stmt, params).mappings().all()
    return [
        {
            "session_id": int(r["session_id"]),
            "title": r["title"],
            "phase": r["phase"],
            "builder": r["builder_name"],
            "subdivision": r["subdivision"],
            "lot": r["lot_number"],
            "date": r["recorded_at"],
            "duration": r["duration_secs"],
            "headline": r["headline"],
            "rank": round(_safe_float(r["rank"]), 3),
        }
        for r in rows
    ]


def search_action_items(
    db: Session,
    query: str,
    *,
    job_id: Optional[int] = None,
    limit: int = 20,
) -> List[Dict[str, Any]]:
    q = (
        db.query(ActionItem, Job)
        .outerjoin(Job, Job.id == ActionItem.job_id)
        .filter(ActionItem.deleted_at.is_(None))
        .filter(ActionItem.description.ilike(f"%{query}%"))
    )
    if job_id is not None:
        q = q.filter(ActionItem.job_id == job_id)

    out: List[Dict[str, Any]] = []
    for item, job in q.order_by(ActionItem.created_at.desc(), ActionItem.id.desc()).limit(limit).all():
        out.append(
            {
                "id": item.id,
                "session_id": item.session_id,
                "job_id": item.job_id,
                "description": item.description,
                "priority": item.priority,
                "due": item.due,
                "completed": item.completed,
                "builder": job.builder_name if job else None,
                "subdivision": job.subdivision if job else None,
                "lot": job.lot_number if job else None,
            }
        )
    return out


def _clip(s: str, max_chars: int) -> str:
    s = (s or "").strip()
    if len(s) <= max_chars:
        return s
    return s[:max_chars].rstrip() + "..."


def hybrid_search(
    db: Session,
    query: str,
    *,
    search_type: str = "all",
    job_id: Optional[int] = None,
    limit: int = 20,
) -> HybridSearchResult:
    """
    Vector, lexical and action-item results side by side. Nothing is merged or
    re-ranked across the three lists.
    """
    if search_type not in SEARCH_TYPES:
        raise ValueError(f"Unknown search type {search_type!r}")

    result = HybridSearchResult(query=query)

    if search_type != "actions":
        hits = search_chunks(
            db,
            query,
            job_id=job_id,
            limit=limit,
            chunk_type=_TYPE_TO_CHUNK_TYPE.get(search_type),
        )
        result.vector_results = [
            {
                "chunk_id": h["chunk_id"],
                "session_id": h["session_id"],
                "job_id": h["job_id"],
                "type": h["chunk_type"],
                "content": _clip(h["content"], 300),
                "flagged": h["is_flagged"],
                "builder": h["builder_name"],
                "subdivision": h["subdivision"],
                "lot": h["lot_number"],
                "date": h["recorded_at"],
                "similarity": round(h["similarity"], 3),
            }
            for h in hits
        ]

    if search_type in ("all", "transcripts", "summaries"):
        result.text_results = text_search_sessions(db, query, job_id=job_id, limit=limit)

    if search_type in ("all", "actions"):
        result.action_results = search_action_items(db, query, job_id=job_id)

    return result
