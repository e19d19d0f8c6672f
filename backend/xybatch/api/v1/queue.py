"""Task queue status endpoint."""
from dataclasses import asdict

from fastapi import APIRouter, Depends

from xybatch.api.deps import get_queue
from xybatch.schemas.generation import QueueStatusResponse
from xybatch.services.task_queue import TaskQueue

router = APIRouter()


@router.get("/queue/status", response_model=QueueStatusResponse)
def queue_status(queue: TaskQueue = Depends(get_queue)):
    return QueueStatusResponse(**asdict(queue.stats()))
