"""Qwen-Image (DashScope) text-to-image adapter."""
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

QWEN_IMAGE_API_URL = (
    "https://dashscope.aliyuncs.com/api/v1/services/aigc/multimodal-generation/generation"
)


class QwenImageAdapter(ProviderAdapter):
    name = "qwen_image"
    display_name = "Qwen Image"
    supported_sizes = ("1664*928", "1472*1140", "1328*1328", "1140*1472", "928*1664")
    default_size = "1328*1328"

    def build_request(self, params: dict[str, Any]) -> dict[str, Any]:
        parameters: dict[str, Any] = {
            "size": self.resolve_size(params),
            "n": 1,
            "prompt_extend": True,
            "watermark": False,
        }
        negative = str(params.get("negative_prompt") or "").strip()
        if negative:
            parameters["negative_prompt"] = negative
        seed = coerce_int(params.get("seed"), "seed")
        if seed:
            parameters["seed"] = seed

        return {
            "model": "qwen-image",
            "input": {
                "messages": [
                    {"role": "user", "content": [{"text": str(params["prompt"]).strip()}]},
                ],
            },
            "parameters": parameters,
        }

    async def generate(self, params: dict[str, Any]) -> str:
        api_key = self.require_api_key("DASHSCOPE_API_KEY")
        body = self.build_request(params)
        logger.info(
            "Calling qwen-image (size=%s, seed=%s)",
            body["parameters"]["size"], body["parameters"].get("seed"),
        )

        client = get_http_client(self.name)
        resp = await client.post(
            QWEN_IMAGE_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json=body,
        )
        if resp.is_error:
            raise ProviderError(response_error_message(resp))

        try:
            url = resp.json()["output"]["choices"][0]["message"]["content"][0]["image"]
        except (KeyError, IndexError, TypeError):
            url = None
        if not url:
            raise ProviderError("No image URL found in the API response")
        return url
