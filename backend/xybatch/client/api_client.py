"""Async HTTP client for the XY batch API.

Thin wrapper over ``httpx.AsyncClient`` that speaks the service's pydantic
schemas. Non-2xx responses raise :class:`ApiClientError` carrying the status
code and the server's ``detail``.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from xybatch.schemas.common import StatusFilter
from xybatch.schemas.generation import (
    BatchDeleteResponse,
    BatchDescriptor,
    GenerateRequest,
    GenerateResponse,
    GenerationListResponse,
    GenerationResponse,
    MultiWorkflowBatchRequest,
    MultiWorkflowBatchResponse,
    QueueStatusResponse,
    XYBatchRequest,
)
from xybatch.schemas.workflow import WorkflowCreate, WorkflowResponse, WorkflowUpdate

logger = logging.getLogger(__name__)


class ApiClientError(Exception):
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("error")
        if detail:
            return str(detail)
    return str(data)


class XYBatchClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def __aenter__(self) -> "XYBatchClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        if response.is_error:
            detail = _error_detail(response)
            logger.debug("%s %s failed (%d): %s", method, path, response.status_code, detail)
            raise ApiClientError(response.status_code, detail)
        return response

    # ── Workflows ──────────────────────────────────────────────────────

    async def create_workflow(self, payload: WorkflowCreate) -> WorkflowResponse:
        response = await self._request("POST", "/api/v1/workflows", json=payload.model_dump(mode="json"))
        return WorkflowResponse.model_validate(response.json())

    async def list_workflows(self) -> list[WorkflowResponse]:
        response = await self._request("GET", "/api/v1/workflows")
        return [WorkflowResponse.model_validate(w) for w in response.json()]

    async def update_workflow(self, workflow_id: str, payload: WorkflowUpdate) -> WorkflowResponse:
        response = await self._request(
            "PUT", f"/api/v1/workflows/{workflow_id}", json=payload.model_dump(mode="json", exclude_unset=True),
        )
        return WorkflowResponse.model_validate(response.json())

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._request("DELETE", f"/api/v1/workflows/{workflow_id}")

    # ── Generation ─────────────────────────────────────────────────────

    async def start_xy_batch(self, request: XYBatchRequest) -> BatchDescriptor:
        response = await self._request(
            "POST", "/api/v1/generate/xy-batch", json=request.model_dump(mode="json"),
        )
        return BatchDescriptor.model_validate(response.json())

    async def start_workflow_batch(self, request: MultiWorkflowBatchRequest) -> MultiWorkflowBatchResponse:
        response = await self._request(
            "POST", "/api/v1/generate/batch", json=request.model_dump(mode="json"),
        )
        return MultiWorkflowBatchResponse.model_validate(response.json())

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        response = await self._request("POST", "/api/v1/generate", json=request.model_dump(mode="json"))
        return GenerateResponse.model_validate(response.json())

    # ── Generation history ─────────────────────────────────────────────

    async def lookup_generations(self, ids: list[str]) -> list[GenerationResponse]:
        if not ids:
            return []
        response = await self._request("POST", "/api/v1/generations/lookup", json={"ids": ids})
        return [GenerationResponse.model_validate(g) for g in response.json()]

    async def list_generations(
        self,
        limit: int | None = None,
        offset: int = 0,
        workflow_id: str | None = None,
        status: str | None = None,
        batch_id: str | None = None,
    ) -> GenerationListResponse:
        params: dict[str, Any] = {"offset": offset}
        if limit is not None:
            params["limit"] = limit
        if workflow_id:
            params["workflow_id"] = workflow_id
        if status:
            params["status"] = status
        if batch_id:
            params["batch_id"] = batch_id
        response = await self._request("GET", "/api/v1/generations", params=params)
        return GenerationListResponse.model_validate(response.json())

    async def get_generation(self, generation_id: str) -> GenerationResponse:
        response = await self._request("GET", f"/api/v1/generations/{generation_id}")
        return GenerationResponse.model_validate(response.json())

    async def delete_generation(self, generation_id: str) -> None:
        await self._request("DELETE", f"/api/v1/generations/{generation_id}")

    async def batch_delete(
        self,
        generation_ids: list[str],
        status_filter: StatusFilter = StatusFilter.ALL,
    ) -> BatchDeleteResponse:
        response = await self._request(
            "POST",
            "/api/v1/generations/batch-delete",
            json={"generation_ids": generation_ids, "status_filter": status_filter.value},
        )
        return BatchDeleteResponse.model_validate(response.json())

    # ── Export / queue ─────────────────────────────────────────────────

    async def export_batch(self, batch: BatchDescriptor, fmt: str = "csv") -> str | bytes:
        """Text for csv/json, raw workbook bytes for xlsx."""
        response = await self._request(
            "POST",
            "/api/v1/export/xy-batch",
            json={"batch": batch.model_dump(mode="json"), "format": fmt},
        )
        return response.content if fmt == "xlsx" else response.text

    async def queue_status(self) -> QueueStatusResponse:
        response = await self._request("GET", "/api/v1/queue/status")
        return QueueStatusResponse.model_validate(response.json())
