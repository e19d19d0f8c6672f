"""Workflow schemas."""
from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field


class WorkflowCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    provider: str = Field(..., min_length=1, description="comfy_stack, doubao_seedream, qwen_image or nano_banana")
    default_params: dict[str, dict[str, Any]] = Field(default_factory=dict)
    remote_workflow_id: str | None = Field(default=None, max_length=100)
    node_data: dict[str, dict[str, Any]] | None = Field(
        default=None,
        description="node id -> {class_type, inputs}; required for node-graph providers",
    )


class WorkflowUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    provider: str | None = Field(default=None, min_length=1)
    default_params: dict[str, dict[str, Any]] | None = None
    remote_workflow_id: str | None = Field(default=None, max_length=100)
    node_data: dict[str, dict[str, Any]] | None = None


class WorkflowResponse(BaseModel):
    id: str
    name: str
    description: str | None
    provider: str
    default_params: dict | None
    remote_workflow_id: str | None = None
    node_data: dict | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
