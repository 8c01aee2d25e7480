from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from jobwalk.db.session import get_db
from jobwalk.services.notifications import (
    get_counts,
    get_unread,
    list_notifications,
    mark_all_read,
    mark_read,
    serialize_notification,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


class MarkReadRequest(BaseModel):
    ids: list[int] = Field(default_factory=list)


class MarkReadResponse(BaseModel):
    ok: bool
    updated: int


class CountsResponse(BaseModel):
    ok: bool
    total: int
    unread: int


@router.get("")
def notifications(
    db: Session = Depends(get_db),
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    if unread_only:
        rows = get_unread(db, limit=limit)
    else:
        rows = list_notifications(db, limit=limit, offset=offset)
    return {"ok": True, "items": [serialize_notification(n) for n in rows]}


@router.get("/counts", response_model=CountsResponse)
def counts(db: Session = Depends(get_db)) -> CountsResponse:
    return CountsResponse(ok=True, **get_counts(db))


@router.post("/read", response_model=MarkReadResponse)
def read(req: MarkReadRequest, db: Session = Depends(get_db)) -> MarkReadResponse:
    return MarkReadResponse(ok=True, updated=mark_read(db, req.ids))


@router.post("/read-all", response_model=MarkReadResponse)
def read_all(db: Session = Depends(get_db)) -> MarkReadResponse:
    return MarkReadResponse(ok=True, updated=mark_all_read(db))
