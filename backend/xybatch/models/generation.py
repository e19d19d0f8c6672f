"""Generation model — one row per image-generation job."""
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, Text, Integer, DateTime, JSON, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from xybatch.database import Base


class Generation(Base):
    __tablename__ = "generations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Weak reference: deleting the workflow keeps the history row.
    workflow_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending | running | completed | failed
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    params: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    result_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # XY grid placement (null for single generations)
    batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    x_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    y_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    x_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    y_value: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    running_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    workflow = relationship("Workflow", back_populates="generations")

    __table_args__ = (
        Index("ix_generations_workflow_id", "workflow_id"),
        Index("ix_generations_status", "status"),
        Index("ix_generations_batch_id", "batch_id"),
        Index("ix_generations_started_at", "started_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")

    def __repr__(self) -> str:
        return f"<Generation {self.id[:8]} ({self.status})>"
