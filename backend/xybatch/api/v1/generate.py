"""Generation submission endpoints — XY batch sweep, multi-workflow batch and single generation.

The handlers are ``async`` because enqueueing starts the queue's drain task
on the running event loop; row inserts run in a worker thread.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from xybatch.api.deps import get_orchestrator
from xybatch.schemas.common import GenerationStatus
from xybatch.schemas.generation import (
    BatchDescriptor,
    GenerateRequest,
    GenerateResponse,
    MultiWorkflowBatchRequest,
    MultiWorkflowBatchResponse,
    XYBatchRequest,
)
from xybatch.services.batch_orchestrator import (
    BatchConfigError,
    BatchOrchestrator,
    BatchPreflightError,
    WorkflowNotFoundError,
)

router = APIRouter()


@router.post("/generate/xy-batch", response_model=BatchDescriptor)
async def start_xy_batch(
    request: XYBatchRequest,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Expand the X/Y axes and queue one generation per cell."""
    try:
        return await orchestrator.submit_batch(request)
    except BatchConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except BatchPreflightError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except WorkflowNotFoundError:
        raise HTTPException(status_code=404, detail="Workflow not found")


@router.post("/generate/batch", response_model=MultiWorkflowBatchResponse)
async def start_workflow_batch(
    request: MultiWorkflowBatchRequest,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Queue one generation for each listed workflow."""
    try:
        return await orchestrator.submit_workflows(request)
    except BatchConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except BatchPreflightError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except WorkflowNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Workflow not found: {exc.workflow_id}")


@router.post("/generate", response_model=GenerateResponse)
async def start_generation(
    request: GenerateRequest,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Queue a single generation from a workflow plus parameter overrides."""
    try:
        generation = await orchestrator.submit_single(request)
    except BatchConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except WorkflowNotFoundError:
        raise HTTPException(status_code=404, detail="Workflow not found")

    return GenerateResponse(
        generation_id=generation.id,
        status=GenerationStatus(generation.status),
    )
