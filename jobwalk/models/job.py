from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from jobwalk.db.base_class import Base


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    builder_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    subdivision: Mapped[str | None] = mapped_column(String(200), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    phase: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # active|inactive
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # rolling synthesis across every walk of this job
    job_intel: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_jobs_subdivision_lot", "subdivision", "lot_number"),)

    def label(self) -> str:
        parts = [p for p in (self.builder_name, self.subdivision) if p]
        if self.lot_number:
            parts.append(f"Lot {self.lot_number}")
        return " — ".join(parts) or f"Job #{self.id}"
