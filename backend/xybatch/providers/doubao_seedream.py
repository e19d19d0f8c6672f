"""Doubao Seedream (Volcengine Ark) text-to-image adapter."""
from __future__ import annotations

import logging
from typing import Any

from xybatch.providers.base import (
    ProviderAdapter,
    ProviderError,
    coerce_int,
    response_error_message,
)
from xybatch.services.http_client_manager import get_http_client

logger = logging.getLogger(__name__)

DOUBAO_SEEDREAM_API_URL = "https://ark.cn-beijing.volces.com/api/v3/images/generations"
DOUBAO_SEEDREAM_MODEL = "doubao-seedream-4-0-250828"


class DoubaoSeedreamAdapter(ProviderAdapter):
    name = "doubao_seedream"
    display_name = "Doubao Seedream"
    supported_sizes = ("1024x1024", "1024x1792", "1792x1024", "1664x2496")
    default_size = "1024x1024"

    def build_request(self, params: dict[str, Any]) -> dict[str, Any]:
        prompt = str(params["prompt"]).strip()
        negative = str(params.get("negative_prompt") or "").strip()
        # The endpoint has no negative-prompt field; fold it into the prompt.
        if negative:
            prompt = f"{prompt}, negative: {negative}"

        body: dict[str, Any] = {
            "model": DOUBAO_SEEDREAM_MODEL,
            "prompt": prompt,
            "response_format": "url",
            "size": self.resolve_size(params),
            "watermark": False,
        }
        seed = coerce_int(params.get("seed"), "seed")
        if seed:
            body["seed"] = seed
        return body

    async def generate(self, params: dict[str, Any]) -> str:
        api_key = self.require_api_key("ARK_API_KEY")
        body = self.build_request(params)
        logger.info("Calling doubao-seedream (size=%s, seed=%s)", body["size"], body.get("seed"))

        client = get_http_client(self.name)
        resp = await client.post(
            DOUBAO_SEEDREAM_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json=body,
        )
        if resp.is_error:
            raise ProviderError(response_error_message(resp))

        data = resp.json().get("data") or []
        url = data[0].get("url") if data else None
        if not url:
            raise ProviderError("No image URL found in the API response")
        return url
