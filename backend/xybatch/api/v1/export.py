"""Export endpoints — download an XY batch as a CSV, JSON or Excel grid."""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from xybatch.api.deps import get_store
from xybatch.schemas.generation import BatchExportRequest
from xybatch.services.export_service import (
    IMAGE_FORMATS,
    MEDIA_TYPES,
    build_grid,
    export_grid,
    fetch_cell_images,
)
from xybatch.services.generation_store import GenerationStore
from xybatch.services.http_client_manager import get_http_client

router = APIRouter()


@router.post("/export/xy-batch")
async def export_xy_batch(
    request: BatchExportRequest,
    store: GenerationStore = Depends(get_store),
):
    """Render the batch grid from the current state of its generations."""
    batch = request.batch
    if not batch.jobs:
        raise HTTPException(status_code=400, detail="Batch has no jobs")

    generations = await asyncio.to_thread(store.list_by_ids, [job.generation_id for job in batch.jobs])
    grid = build_grid(batch, generations)
    fmt = request.format.value

    images = None
    if fmt in IMAGE_FORMATS:
        images = await fetch_cell_images(grid, get_http_client("export"))
    content = export_grid(grid, fmt, images)
    return Response(
        content=content,
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{batch.batch_id}.{fmt}"'},
    )
