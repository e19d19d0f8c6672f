"""Shared / common schemas: enums and base responses."""
from datetime import datetime
from enum import Enum
from pydantic import BaseModel

from xybatch.services.generation_lifecycle import GenerationStatus

__all__ = [
    "GenerationStatus",
    "StatusFilter",
    "ExportFormat",
    "MessageResponse",
    "HealthResponse",
]


# ── Enums ──────────────────────────────────────────────────────────────

class StatusFilter(str, Enum):
    """Status filter accepted by bulk operations; ``all`` disables filtering."""
    ALL = "all"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def as_status(self) -> str | None:
        return None if self is StatusFilter.ALL else self.value


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"
    XLSX = "xlsx"


# ── Common Responses ───────────────────────────────────────────────────

class MessageResponse(BaseModel):
    message: str
    detail: str | None = None


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
