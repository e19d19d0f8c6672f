"""Provider adapter contract shared by every image-generation backend.

An adapter is the one seam the task queue talks to::

    adapter.preflight(params)        # raises PreflightError, no I/O
    url = await adapter.generate(params)   # raises ProviderError / httpx errors

``params`` is the flat job parameter set produced by the axis expander
(``prompt``, ``negative_prompt``, ``size``, ``seed``, ``image_urls`` ...).
Values coming from an axis are strings, so adapters coerce numbers
themselves.

No retry logic lives here; a failed call fails the job.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

logger = logging.getLogger(__name__)

MAX_SEED = 2147483647


class ProviderError(Exception):
    """The provider call failed (non-success response, malformed payload, timeout)."""


class PreflightError(Exception):
    """The job's parameters can never satisfy the provider's minimum requirements."""


def coerce_int(value: Any, name: str) -> int | None:
    """Turn an axis/default value into an int, or None when empty."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise PreflightError(f"'{name}' must be an integer, got {value!r}")
    try:
        return int(str(value).strip())
    except ValueError:
        try:
            as_float = float(str(value).strip())
        except ValueError:
            raise PreflightError(f"'{name}' must be an integer, got {value!r}") from None
        if not as_float.is_integer():
            raise PreflightError(f"'{name}' must be an integer, got {value!r}")
        return int(as_float)


def response_error_message(response: httpx.Response) -> str:
    """Best-effort human-readable error from a failed provider response."""
    prefix = f"API call failed ({response.status_code} {response.reason_phrase})"
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip()
        return f"{prefix}: {text}" if text else prefix

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            code = error.get("code") or response.status_code
            return f"API call failed: {error['message']} ({code})"
        if isinstance(error, str) and error:
            return f"API call failed: {error}"
        if data.get("message"):
            code = data.get("code")
            return f"API call failed: {data['message']}" + (f" ({code})" if code else "")
        if data.get("detail"):
            return f"API call failed: {data['detail']}"
    return f"{prefix}: {data}"


class ProviderAdapter(ABC):
    """Base class for image-generation providers."""

    name: str = ""
    display_name: str = ""
    supported_sizes: tuple[str, ...] = ()
    default_size: str | None = None
    max_prompt_length: int = 800
    max_negative_prompt_length: int = 500
    requires_images: bool = False
    # Jobs carry a whole node graph instead of flat params
    uses_node_graph: bool = False

    def __init__(self, api_key: str = ""):
        self.api_key = api_key

    # ── Pre-flight ─────────────────────────────────────────────────────

    def preflight(self, params: dict[str, Any]) -> None:
        """Validate *params* without touching the network."""
        prompt = str(params.get("prompt") or "").strip()
        if not prompt:
            raise PreflightError(f"{self.display_name or self.name}: prompt must not be empty")
        if len(prompt) > self.max_prompt_length:
            raise PreflightError(
                f"{self.display_name or self.name}: prompt exceeds "
                f"{self.max_prompt_length} characters"
            )

        negative = str(params.get("negative_prompt") or "")
        if len(negative) > self.max_negative_prompt_length:
            raise PreflightError(
                f"{self.display_name or self.name}: negative prompt exceeds "
                f"{self.max_negative_prompt_length} characters"
            )

        if self.supported_sizes:
            size = self.resolve_size(params)
            if size not in self.supported_sizes:
                raise PreflightError(
                    f"Model {self.name} does not support size {size}. "
                    f"Supported sizes: {', '.join(self.supported_sizes)}"
                )

        seed = coerce_int(params.get("seed"), "seed")
        if seed is not None and not 0 <= seed <= MAX_SEED:
            raise PreflightError(f"'seed' must be between 0 and {MAX_SEED}")

        if self.requires_images and not self.image_urls(params):
            raise PreflightError(
                f"{self.display_name or self.name}: at least one input image is required"
            )

    # ── Helpers ────────────────────────────────────────────────────────

    def resolve_size(self, params: dict[str, Any]) -> str | None:
        size = params.get("size")
        return str(size).strip() if size else self.default_size

    @staticmethod
    def image_urls(params: dict[str, Any]) -> list[str]:
        urls = params.get("image_urls") or []
        if isinstance(urls, str):
            urls = [urls]
        return [str(u).strip() for u in urls if u and str(u).strip()]

    def require_api_key(self, env_name: str) -> str:
        if not self.api_key:
            raise ProviderError(f"{env_name} is not configured")
        return self.api_key

    # ── Generation ─────────────────────────────────────────────────────

    @abstractmethod
    async def generate(self, params: dict[str, Any]) -> str:
        """Run the generation and return the result image URL."""

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "supported_sizes": list(self.supported_sizes),
            "default_size": self.default_size,
            "requires_images": self.requires_images,
            "uses_node_graph": self.uses_node_graph,
        }
