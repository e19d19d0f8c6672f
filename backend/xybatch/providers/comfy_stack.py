"""ComfyStack (Infini-AI hosted ComfyUI) adapter.

Unlike the flat-parameter providers, a ComfyStack job is a whole node graph::

    {"workflow_id": "<remote workflow id>", "nodes": {node_id: {"inputs": {...}}}}

The adapter submits the graph, then polls the task-info endpoint until the
task succeeds, fails, or the poll budget runs out.

Task status codes: 1 queued, 2 running, 3 succeeded, 4 failed, 5 forbidden.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Mapping

import httpx

from xybatch.providers.base import (
    PreflightError,
    ProviderAdapter,
    ProviderError,
    response_error_message,
)
from xybatch.services.http_client_manager import get_http_client
from xybatch.services.node_graph import clear_stale_images

logger = logging.getLogger(__name__)

COMFY_PROMPT_URL = "https://cloud.infini-ai.com/api/maas/comfy_task_api/prompt"
COMFY_TASK_INFO_URL = "https://cloud.infini-ai.com/api/maas/comfy_task_api/get_task_info"

# Signed result URLs stay valid for 30 minutes
URL_EXPIRE_SECONDS = 1800

TASK_SUCCEEDED = 3
TASK_FAILED = 4
TASK_FORBIDDEN = 5

_ESCAPED_UNICODE = re.compile(r"\\u([0-9a-fA-F]{4})")


def decode_result_url(url: str) -> str:
    """Result URLs sometimes arrive with literal ``\\uXXXX`` escapes."""
    return _ESCAPED_UNICODE.sub(lambda m: chr(int(m.group(1), 16)), url)


class ComfyStackAdapter(ProviderAdapter):
    name = "comfy_stack"
    display_name = "ComfyStack"
    uses_node_graph = True

    def __init__(
        self,
        api_key: str = "",
        poll_interval: float = 10.0,
        max_polls: int = 60,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__(api_key)
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._sleep = sleep

    def preflight(self, params: dict[str, Any]) -> None:
        if not str(params.get("workflow_id") or "").strip():
            raise PreflightError("ComfyStack: workflow id must not be empty")
        nodes = params.get("nodes")
        if not isinstance(nodes, Mapping) or not nodes:
            raise PreflightError("ComfyStack: node data must not be empty")
        for node_id, node in nodes.items():
            if not isinstance(node, Mapping):
                raise PreflightError(f"ComfyStack: node {node_id} is not an object")

    def build_request(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "workflow_id": str(params["workflow_id"]).strip(),
            "prompt": clear_stale_images(dict(params["nodes"])),
        }

    async def generate(self, params: dict[str, Any]) -> str:
        api_key = self.require_api_key("INFINI_AI_API_KEY")
        body = self.build_request(params)
        logger.info("Submitting ComfyStack task (workflow=%s, %d nodes)", body["workflow_id"], len(body["prompt"]))

        client = get_http_client(self.name)
        resp = await client.post(
            COMFY_PROMPT_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json=body,
        )
        if resp.is_error:
            raise ProviderError(response_error_message(resp))

        data = resp.json()
        if not isinstance(data, dict):
            raise ProviderError("Empty API response")
        if data.get("code") != 0:
            raise ProviderError(f"API returned an error: {data.get('msg') or 'unknown error'}")
        prompt_id = (data.get("data") or {}).get("prompt_id")
        if not prompt_id:
            raise ProviderError("API response has no prompt_id")

        logger.info("ComfyStack task %s submitted", prompt_id)
        files = await self._poll_task(client, api_key, str(prompt_id))
        return decode_result_url(files[0])

    async def _poll_task(self, client: httpx.AsyncClient, api_key: str, prompt_id: str) -> list[str]:
        for attempt in range(1, self.max_polls + 1):
            try:
                resp = await client.post(
                    COMFY_TASK_INFO_URL,
                    headers={"Authorization": f"Bearer {api_key}"},
                    json={"comfy_task_ids": [prompt_id], "url_expire_period": URL_EXPIRE_SECONDS},
                )
                resp.raise_for_status()
                infos = ((resp.json() or {}).get("data") or {}).get("comfy_task_info") or []
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("ComfyStack status poll %d/%d failed: %s", attempt, self.max_polls, exc)
                if attempt == self.max_polls:
                    raise ProviderError(f"Could not fetch task status: {exc}") from exc
                await self._sleep(self.poll_interval)
                continue

            if not infos:
                raise ProviderError(f"No task info returned for {prompt_id}")
            info = infos[0]
            status = info.get("status")
            logger.debug("ComfyStack task %s: status %s (%s%%)", prompt_id, status, info.get("progress_num", 0))

            if status == TASK_SUCCEEDED:
                files = [f for f in info.get("final_files") or [] if f]
                if not files:
                    raise ProviderError("Task succeeded but returned no image")
                return files
            if status == TASK_FAILED:
                raise ProviderError(f"Image generation failed: {info.get('errMsg') or 'unknown error'}")
            if status == TASK_FORBIDDEN:
                raise ProviderError("Insufficient permissions to run this workflow")

            await self._sleep(self.poll_interval)

        raise ProviderError("ComfyStack task timed out, please try again later")
