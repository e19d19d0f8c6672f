"""Generation history endpoints — list, bulk lookup, fetch and delete."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from xybatch.api.deps import get_store
from xybatch.config import get_settings
from xybatch.schemas.common import GenerationStatus, MessageResponse
from xybatch.schemas.generation import (
    BatchDeleteRequest,
    BatchDeleteResponse,
    GenerationListResponse,
    GenerationLookupRequest,
    GenerationResponse,
)
from xybatch.services.generation_store import GenerationNotFoundError, GenerationStore

router = APIRouter()


@router.get("/generations", response_model=GenerationListResponse)
def list_generations(
    limit: int | None = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    workflow_id: str | None = None,
    status: GenerationStatus | None = None,
    batch_id: str | None = None,
    store: GenerationStore = Depends(get_store),
):
    """Most recent generations first, optionally filtered."""
    if limit is None:
        limit = get_settings().RECENT_GENERATIONS_LIMIT
    status_value = status.value if status else None

    rows = store.list_recent(
        limit=limit,
        workflow_id=workflow_id,
        status=status_value,
        batch_id=batch_id,
        offset=offset,
    )
    total = store.count(workflow_id=workflow_id, status=status_value, batch_id=batch_id)
    return GenerationListResponse(
        generations=[GenerationResponse.model_validate(r) for r in rows],
        total=total,
        has_more=offset + len(rows) < total,
    )


@router.post("/generations/lookup", response_model=list[GenerationResponse])
def lookup_generations(
    request: GenerationLookupRequest,
    store: GenerationStore = Depends(get_store),
):
    """Bulk read by id, in request order; unknown ids are omitted."""
    return [GenerationResponse.model_validate(r) for r in store.list_by_ids(request.ids)]


@router.post("/generations/batch-delete", response_model=BatchDeleteResponse)
def batch_delete_generations(
    request: BatchDeleteRequest,
    store: GenerationStore = Depends(get_store),
):
    """Delete the listed generations, optionally only those in one status."""
    if not request.generation_ids:
        raise HTTPException(status_code=400, detail="No generation ids provided")
    deleted = store.delete_many(request.generation_ids, status=request.status_filter.as_status())
    return BatchDeleteResponse(
        message=f"Deleted {deleted} generation(s)",
        deleted_count=deleted,
    )


@router.get("/generations/{generation_id}", response_model=GenerationResponse)
def get_generation(generation_id: str, store: GenerationStore = Depends(get_store)):
    try:
        return GenerationResponse.model_validate(store.require(generation_id))
    except GenerationNotFoundError:
        raise HTTPException(status_code=404, detail="Generation not found")


@router.delete("/generations/{generation_id}", response_model=MessageResponse)
def delete_generation(generation_id: str, store: GenerationStore = Depends(get_store)):
    if not store.delete(generation_id):
        raise HTTPException(status_code=404, detail="Generation not found")
    return MessageResponse(message="Generation deleted", detail=generation_id)
