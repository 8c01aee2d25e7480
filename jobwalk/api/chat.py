from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from jobwalk.api.errors import to_http
from jobwalk.core.errors import JobwalkError
from jobwalk.db.session import get_db
from jobwalk.services.kb_chat import ask

router = APIRouter(tags=["chat"])


class ChatRequest(BaseModel):
    message: str
    job_id: int | None = None
    history: list[dict[str, Any]] = Field(default_factory=list)


class ChatResponse(BaseModel):
    ok: bool
    reply: str
    sources: list[dict[str, Any]]


@router.post("/chat", response_model=ChatResponse)
def chat(req: ChatRequest, db: Session = Depends(get_db)) -> ChatResponse:
    if not req.message.strip():
        raise HTTPException(status_code=400, detail="message is required")

    try:
        out = ask(db, req.message, job_id=req.job_id, history=req.history)
    except JobwalkError as e:
        raise to_http(e)

    return ChatResponse(ok=True, reply=out.reply, sources=out.sources)
