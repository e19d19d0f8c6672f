"""Workflow model — a stored generation configuration (provider, default params, node graph)."""
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, Text, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from xybatch.database import Base


class Workflow(Base):
    __tablename__ = "workflows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)  # comfy_stack | doubao_seedream | qwen_image | nano_banana
    default_params: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # group -> field -> value
    # Node-graph providers only: remote workflow id and node id -> {class_type, inputs}
    remote_workflow_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    node_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # No cascade: generations outlive the workflow (FK is SET NULL).
    generations = relationship("Generation", back_populates="workflow", passive_deletes=True, lazy="dynamic")

    __table_args__ = (
        Index("ix_workflows_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Workflow {self.name!r} ({self.id[:8]})>"
