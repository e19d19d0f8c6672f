"""Request dependencies resolving the services built in the lifespan."""
from fastapi import Request

from xybatch.providers.registry import ProviderRegistry
from xybatch.services.batch_orchestrator import BatchOrchestrator
from xybatch.services.generation_store import GenerationStore
from xybatch.services.task_queue import TaskQueue


def get_store(request: Request) -> GenerationStore:
    return request.app.state.store


def get_queue(request: Request) -> TaskQueue:
    return request.app.state.queue


def get_orchestrator(request: Request) -> BatchOrchestrator:
    return request.app.state.orchestrator


def get_providers(request: Request) -> ProviderRegistry:
    return request.app.state.providers
