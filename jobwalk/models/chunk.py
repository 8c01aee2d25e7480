from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.sql import func

from pgvector.sqlalchemy import Vector

from jobwalk.core.config import settings
from jobwalk.db.base_class import Base

CHUNK_TYPES = ("transcript", "summary", "plan_analysis")


class Chunk(Base):
    """
    One retrievable unit of indexed text plus its embedding.

    Rows are immutable once written; removal is a soft delete.
    job_id is denormalized from the session so retrieval can filter without a join.
    """
    __tablename__ = "chunks"

    id = Column(Integer, primary_key=True, index=True)

    session_id = Column(
        Integer,
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_id = Column(
        Integer,
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    chunk_type = Column(String(32), nullable=False, default="transcript")
    content = Column(Text, nullable=False)
    is_flagged = Column(Boolean, nullable=False, default=False)

    # every stored and query vector shares this dimension
    embedding = Column(Vector(settings.embed_dim), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_chunks_session", "session_id"),
        Index("idx_chunks_job_type", "job_id", "chunk_type"),
    )
