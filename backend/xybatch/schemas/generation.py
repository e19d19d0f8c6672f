"""Generation, XY batch and queue schemas."""
from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field

from xybatch.schemas.common import ExportFormat, GenerationStatus, StatusFilter


class XYBatchRequest(BaseModel):
    """Axis configuration for an XY sweep."""
    workflow_id: str = Field(description="Stored workflow supplying provider and base default params")
    x_field: str = Field(default="", description="Parameter swept along the X axis")
    x_node: str | None = Field(default=None, description="Node holding the X input; required for node-graph workflows")
    x_values: list[str] = Field(default_factory=list)
    y_field: str = Field(default="", description="Parameter swept along the Y axis")
    y_node: str | None = Field(default=None, description="Node holding the Y input; required for node-graph workflows")
    y_values: list[str] = Field(default_factory=list)
    default_params: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="group -> field -> value, layered over the workflow's stored defaults",
    )


class BatchJobEntry(BaseModel):
    """Join key between a matrix position and its durable generation row."""
    generation_id: str
    x_index: int
    y_index: int
    x_value: str
    y_value: str


class BatchDescriptor(BaseModel):
    batch_id: str
    workflow_id: str | None = None
    x_field: str
    y_field: str
    x_node: str | None = None
    y_node: str | None = None
    total_combinations: int
    x_count: int
    y_count: int
    jobs: list[BatchJobEntry]
    preflight_failures: int = 0


class GenerateRequest(BaseModel):
    """Single generation from a workflow plus parameter overrides."""
    workflow_id: str
    params: dict[str, dict[str, Any]] = Field(default_factory=dict)


class GenerateResponse(BaseModel):
    generation_id: str
    status: GenerationStatus


class MultiWorkflowBatchRequest(BaseModel):
    """Run several stored workflows once each, with shared overrides."""
    workflow_ids: list[str] = Field(default_factory=list)
    params: dict[str, dict[str, Any]] = Field(default_factory=dict)


class WorkflowJobEntry(BaseModel):
    generation_id: str
    workflow_id: str
    workflow_name: str
    status: GenerationStatus


class MultiWorkflowBatchResponse(BaseModel):
    batch_id: str
    jobs: list[WorkflowJobEntry]
    preflight_failures: int = 0


class GenerationResponse(BaseModel):
    id: str
    workflow_id: str | None
    status: GenerationStatus
    provider: str | None
    params: dict | None
    result_url: str | None
    error_message: str | None
    batch_id: str | None
    x_index: int | None
    y_index: int | None
    x_value: str | None
    y_value: str | None
    started_at: datetime
    running_at: datetime | None
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class GenerationListResponse(BaseModel):
    generations: list[GenerationResponse]
    total: int
    has_more: bool


class GenerationLookupRequest(BaseModel):
    ids: list[str] = Field(default_factory=list, max_length=1000)


class BatchDeleteRequest(BaseModel):
    generation_ids: list[str]
    status_filter: StatusFilter = StatusFilter.ALL


class BatchDeleteResponse(BaseModel):
    message: str
    deleted_count: int


class QueueStatusResponse(BaseModel):
    pending: int
    running: int
    completed: int
    failed: int
    batches: int
    is_draining: bool
    concurrency: int
    batch_delay: float


class BatchExportRequest(BaseModel):
    batch: BatchDescriptor
    format: ExportFormat = ExportFormat.CSV
