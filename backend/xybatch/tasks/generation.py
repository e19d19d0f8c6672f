"""Per-job unit of work executed by the task queue.

``run_generation_job`` walks one Generation row through its lifecycle:

  1. provider pre-flight — on failure the row goes straight to ``failed``
     and never shows as ``running``;
  2. ``pending -> running``;
  3. the provider call — success marks ``completed`` with the result URL,
     any provider error marks ``failed`` with a readable message.

Provider errors are swallowed here (they are recorded on the row). Store
errors are not: they propagate to the queue, which logs them, and the row
keeps its last known state.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable

import httpx

from xybatch.providers.base import PreflightError, ProviderAdapter
from xybatch.services.generation_store import GenerationStore

logger = logging.getLogger(__name__)


def friendly_error(exc: BaseException) -> str:
    """Build the user-facing error message stored on a failed row."""
    if isinstance(exc, httpx.TimeoutException):
        return f"Request to the image provider timed out. The provider may be overloaded. ({exc})"
    if isinstance(exc, httpx.ConnectError):
        return f"Could not connect to the image provider. Check your network and provider status. ({exc})"
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        if code in (401, 403):
            return f"Authentication failed for the image provider. Check its API key. ({exc})"
        if code == 429:
            return f"Rate limit exceeded by the image provider. Try again later or lower the queue concurrency. ({exc})"
    message = str(exc).strip()
    return message or type(exc).__name__


async def run_generation_job(
    store: GenerationStore,
    adapter: ProviderAdapter,
    generation_id: str,
    params: dict[str, Any],
) -> str | None:
    """Run one generation end to end. Returns the result URL, or None on failure."""
    short_id = generation_id[:8]

    try:
        adapter.preflight(params)
    except PreflightError as exc:
        logger.warning("Generation %s failed pre-flight: %s", short_id, exc)
        store.mark_failed(generation_id, str(exc))
        return None

    store.mark_running(generation_id)
    logger.info("Generation %s running on %s", short_id, adapter.name)

    try:
        result_url = await adapter.generate(params)
    except Exception as exc:
        logger.exception("Generation %s failed: %s", short_id, exc)
        store.mark_failed(generation_id, friendly_error(exc))
        return None

    store.mark_completed(generation_id, result_url)
    logger.info("Generation %s completed", short_id)
    return result_url


def make_generation_task(
    store: GenerationStore,
    adapter: ProviderAdapter,
    generation_id: str,
    params: dict[str, Any],
) -> Callable[[], Awaitable[str | None]]:
    """Bind a job into the zero-argument form the task queue consumes."""
    return functools.partial(run_generation_job, store, adapter, generation_id, params)
