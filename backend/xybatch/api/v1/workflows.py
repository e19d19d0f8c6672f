"""Workflow CRUD endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from xybatch.api.deps import get_providers
from xybatch.database import get_db
from xybatch.models import Workflow
from xybatch.providers.registry import ProviderRegistry, normalize_provider_name
from xybatch.schemas.common import MessageResponse
from xybatch.schemas.workflow import WorkflowCreate, WorkflowResponse, WorkflowUpdate

router = APIRouter()
logger = logging.getLogger(__name__)


def _check_provider(
    providers: ProviderRegistry,
    provider: str,
    remote_workflow_id: str | None,
    node_data: dict | None,
) -> str:
    """Return the normalized provider name, or raise 400."""
    if provider not in providers:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported provider '{provider}'. Available: {', '.join(providers.names())}",
        )
    adapter = providers.get(provider)
    if adapter.uses_node_graph and (not remote_workflow_id or not node_data):
        raise HTTPException(
            status_code=400,
            detail=f"{adapter.display_name} workflows need remote_workflow_id and node_data",
        )
    return normalize_provider_name(provider)


@router.post("", response_model=WorkflowResponse, status_code=201)
def create_workflow(
    payload: WorkflowCreate,
    db: Session = Depends(get_db),
    providers: ProviderRegistry = Depends(get_providers),
):
    provider = _check_provider(providers, payload.provider, payload.remote_workflow_id, payload.node_data)
    workflow = Workflow(
        name=payload.name,
        description=payload.description,
        provider=provider,
        default_params=payload.default_params,
        remote_workflow_id=payload.remote_workflow_id,
        node_data=payload.node_data,
    )
    db.add(workflow)
    db.commit()
    db.refresh(workflow)
    logger.info("Created workflow %s (%s)", workflow.id[:8], workflow.provider)
    return workflow


@router.get("", response_model=list[WorkflowResponse])
def list_workflows(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return (
        db.query(Workflow)
        .order_by(Workflow.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/{workflow_id}", response_model=WorkflowResponse)
def get_workflow(workflow_id: str, db: Session = Depends(get_db)):
    workflow = db.get(Workflow, workflow_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow


@router.put("/{workflow_id}", response_model=WorkflowResponse)
def update_workflow(
    workflow_id: str,
    payload: WorkflowUpdate,
    db: Session = Depends(get_db),
    providers: ProviderRegistry = Depends(get_providers),
):
    """Update the given fields; existing generations keep their params snapshot."""
    workflow = db.get(Workflow, workflow_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name") is None:
        changes.pop("name", None)
    if changes.get("provider") is None:
        changes.pop("provider", None)

    provider = _check_provider(
        providers,
        changes.get("provider", workflow.provider),
        changes.get("remote_workflow_id", workflow.remote_workflow_id),
        changes.get("node_data", workflow.node_data),
    )
    if "provider" in changes:
        changes["provider"] = provider
    if "default_params" in changes and changes["default_params"] is None:
        changes["default_params"] = {}

    for field, value in changes.items():
        setattr(workflow, field, value)
    db.commit()
    db.refresh(workflow)
    logger.info("Updated workflow %s (%s)", workflow_id[:8], ", ".join(sorted(changes)) or "no changes")
    return workflow


@router.delete("/{workflow_id}", response_model=MessageResponse)
def delete_workflow(workflow_id: str, db: Session = Depends(get_db)):
    """Delete a workflow; its generations are kept with a null workflow_id."""
    workflow = db.get(Workflow, workflow_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    db.delete(workflow)
    db.commit()
    logger.info("Deleted workflow %s", workflow_id[:8])
    return MessageResponse(message="Workflow deleted", detail=workflow_id)
