"""Nano Banana (Gemini 2.5 Flash image edit, via PPInfra) adapter.

Image-to-image: needs a prompt and at least one input image. The endpoint
may answer synchronously with image URLs or hand back a task id, in which
case the adapter polls the status endpoint until the task finishes, fails,
or the poll budget runs out. That whole wait counts as one queue slot.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from xybatch.providers.base import ProviderAdapter, ProviderError, response_error_message
from xybatch.services.http_client_manager import get_http_client

logger = logging.getLogger(__name__)

NANO_BANANA_API_URL = "https://api.ppinfra.com/v3/gemini-2.5-flash-image-preview-image-edit"
NANO_BANANA_STATUS_URL = f"{NANO_BANANA_API_URL}/status"


def _extract_image_urls(payload: dict[str, Any]) -> list[str]:
    """Image URLs may sit at the top level or under ``result`` / ``data``."""
    for container in (payload, payload.get("result"), payload.get("data")):
        if isinstance(container, dict):
            urls = container.get("image_urls")
            if isinstance(urls, list) and urls:
                return [str(u) for u in urls]
    return []


class NanoBananaAdapter(ProviderAdapter):
    name = "nano_banana"
    display_name = "Nano Banana"
    max_prompt_length = 1000
    requires_images = True

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

    def build_request(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "prompt": str(params["prompt"]).strip(),
            "image_urls": self.image_urls(params),
        }

    async def generate(self, params: dict[str, Any]) -> str:
        api_key = self.require_api_key("PPINFRA_API_KEY")
        body = self.build_request(params)
        logger.info("Submitting nano-banana task (%d input image(s))", len(body["image_urls"]))

        client = get_http_client(self.name)
        resp = await client.post(
            NANO_BANANA_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json=body,
        )
        if resp.is_error:
            raise ProviderError(response_error_message(resp))

        result = resp.json()
        task_id = result.get("task_id") or result.get("id")
        if task_id:
            urls = await self._poll_task(client, api_key, str(task_id))
        else:
            urls = _extract_image_urls(result)
            if not urls:
                raise ProviderError(f"Unexpected API response, no image URL found: {result}")
        return urls[0]

    async def _poll_task(self, client: httpx.AsyncClient, api_key: str, task_id: str) -> list[str]:
        for attempt in range(1, self.max_polls + 1):
            try:
                resp = await client.post(
                    NANO_BANANA_STATUS_URL,
                    headers={"Authorization": f"Bearer {api_key}"},
                    json={"task_id": task_id},
                )
                resp.raise_for_status()
                data = resp.json()
            except httpx.HTTPError as exc:
                # Status-endpoint hiccups are tolerated until the budget runs out
                logger.warning("Nano Banana status poll %d/%d failed: %s", attempt, self.max_polls, exc)
                if attempt == self.max_polls:
                    raise ProviderError(f"Could not fetch task status: {exc}") from exc
                await self._sleep(self.poll_interval)
                continue

            status = data.get("status")
            logger.debug("Nano Banana task %s: %s (%s%%)", task_id, status, data.get("progress", 0))
            if status == "completed":
                urls = _extract_image_urls(data)
                if not urls:
                    raise ProviderError("Task completed but returned no image URL")
                return urls
            if status in ("failed", "error"):
                reason = data.get("error") or data.get("message") or "unknown error"
                raise ProviderError(f"Image generation failed: {reason}")

            await self._sleep(self.poll_interval)

        raise ProviderError("Nano Banana task timed out, please try again later")
