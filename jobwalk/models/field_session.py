from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from jobwalk.core.errors import InvalidTransition
from jobwalk.db.base_class import Base


class SessionStatus(str, enum.Enum):
    UPLOADED = "uploaded"
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    COMPLETE = "complete"
    ERROR = "error"


# Forward-only, except error -> uploaded which is the retry reset.
ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.UPLOADED: frozenset({SessionStatus.TRANSCRIBING, SessionStatus.ERROR}),
    SessionStatus.TRANSCRIBING: frozenset({SessionStatus.SUMMARIZING, SessionStatus.ERROR}),
    SessionStatus.SUMMARIZING: frozenset({SessionStatus.COMPLETE, SessionStatus.ERROR}),
    SessionStatus.COMPLETE: frozenset(),
    SessionStatus.ERROR: frozenset({SessionStatus.UPLOADED}),
}


class FieldSession(Base):
    """
    One recorded field walk.

    Status only moves through transition_to() / reset_for_retry().
    """

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_id: Mapped[int | None] = mapped_column(
        ForeignKey("jobs.id", ondelete="SET NULL"), nullable=True, index=True
    )

    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phase: Mapped[str | None] = mapped_column(String(50), nullable=True)
    voice_tag: Mapped[str | None] = mapped_column(String(255), nullable=True)

    audio_path: Mapped[str] = mapped_column(Text, nullable=False)
    duration_secs: Mapped[int | None] = mapped_column(Integer, nullable=True)

    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON string
    discrepancies_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON string
    command_meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON string

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=SessionStatus.UPLOADED.value)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    recorded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    emailed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_duration_secs: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_sessions_status", "status"),)

    @property
    def status_enum(self) -> SessionStatus:
        return SessionStatus(self.status)

    def transition_to(self, target: SessionStatus, *, error_message: str | None = None) -> None:
        current = self.status_enum
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(current.value, target.value)
        self.status = target.value
        if target is SessionStatus.ERROR:
            self.error_message = error_message or "Unknown error"

    def reset_for_retry(self) -> None:
        """error -> uploaded, clearing the stored failure message."""
        self.transition_to(SessionStatus.UPLOADED)
        self.error_message = None
