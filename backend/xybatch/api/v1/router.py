"""Aggregate API v1 router — mounts all sub-routers."""
from fastapi import APIRouter
from xybatch.api.v1 import export, generate, generations, providers, queue, workflows

router = APIRouter(prefix="/api/v1")

router.include_router(workflows.router, prefix="/workflows", tags=["Workflows"])
router.include_router(generate.router, tags=["Generation"])
router.include_router(generations.router, tags=["Generations"])
router.include_router(export.router, tags=["Export"])
router.include_router(queue.router, tags=["Queue"])
router.include_router(providers.router, tags=["Providers"])
