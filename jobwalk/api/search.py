from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from jobwalk.api.errors import to_http
from jobwalk.core.errors import JobwalkError
from jobwalk.db.session import get_db
from jobwalk.services.kb_search import SEARCH_TYPES, hybrid_search

router = APIRouter(tags=["search"])


@router.get("/search")
def search(
    q: str | None = Query(default=None),
    type: str = Query(default="all"),
    job_id: int | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=50),
    db: Session = Depends(get_db),
):
    query = (q or "").strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query parameter q is required")
    if type not in SEARCH_TYPES:
        raise HTTPException(status_code=400, detail=f"type must be one of {', '.join(SEARCH_TYPES)}")

    try:
        result = hybrid_search(db, query, search_type=type, job_id=job_id, limit=limit)
    except JobwalkError as e:
        raise to_http(e)

    return {
        "ok": True,
        "query": result.query,
        "type": type,
        "vector_results": result.vector_results,
        "text_results": result.text_results,
        "action_results": result.action_results,
    }
