from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from jobwalk.db.session import get_db
from jobwalk.models.action_item import ActionItem

router = APIRouter(prefix="/actions", tags=["actions"])


class ActionUpdateRequest(BaseModel):
    completed: bool


class ActionResponse(BaseModel):
    ok: bool
    id: int
    completed: bool
    completed_at: datetime | None = None


@router.patch("/{action_id}", response_model=ActionResponse)
def update_action(action_id: int, req: ActionUpdateRequest, db: Session = Depends(get_db)) -> ActionResponse:
    item = (
        db.query(ActionItem)
        .filter(ActionItem.id == action_id, ActionItem.deleted_at.is_(None))
        .first()
    )
    if not item:
        raise HTTPException(status_code=404, detail="Action item not found")

    item.set_completed(req.completed, datetime.now(timezone.utc))
    db.commit()
    db.refresh(item)
    return ActionResponse(ok=True, id=item.id, completed=item.completed, completed_at=item.completed_at)
