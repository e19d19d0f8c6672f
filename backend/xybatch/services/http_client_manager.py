"""Pooled outbound HTTP clients, one per provider (plus one for export downloads).

A client is bound to the event loop that created it; asking from another
loop (e.g. the next test case) replaces it.
"""
from __future__ import annotations

import asyncio
import logging

import httpx

from xybatch.config import get_settings

logger = logging.getLogger(__name__)

# Synchronous image endpoints can take well over a minute to answer;
# task-based ones (submit + status polls) answer quickly.
_SYNC_PROVIDER_TIMEOUT = httpx.Timeout(180.0, connect=15.0)
_TASK_PROVIDER_TIMEOUT = httpx.Timeout(60.0, connect=15.0)

_TIMEOUTS: dict[str, httpx.Timeout] = {
    "doubao_seedream": _SYNC_PROVIDER_TIMEOUT,
    "qwen_image": _SYNC_PROVIDER_TIMEOUT,
    "nano_banana": _TASK_PROVIDER_TIMEOUT,
    "comfy_stack": _TASK_PROVIDER_TIMEOUT,
}

_LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=10)

# name -> (loop id, client)
_pool: dict[str, tuple[int, httpx.AsyncClient]] = {}


def _timeout_for(name: str) -> httpx.Timeout:
    if name == "export":
        return httpx.Timeout(get_settings().EXPORT_IMAGE_TIMEOUT_SECONDS, connect=10.0)
    return _TIMEOUTS.get(name, _TASK_PROVIDER_TIMEOUT)


def get_http_client(name: str) -> httpx.AsyncClient:
    """Pooled client for *name*, created on first use in the running loop."""
    loop_id = id(asyncio.get_running_loop())
    entry = _pool.get(name)
    if entry is not None and entry[0] == loop_id and not entry[1].is_closed:
        return entry[1]

    client = httpx.AsyncClient(timeout=_timeout_for(name), limits=_LIMITS, follow_redirects=True)
    _pool[name] = (loop_id, client)
    logger.debug("Created HTTP client '%s'", name)
    return client


async def close_all_clients() -> None:
    """Close every pooled client; called on application shutdown."""
    clients = [client for _, client in _pool.values()]
    _pool.clear()
    for client in clients:
        if client.is_closed:
            continue
        try:
            await client.aclose()
        except RuntimeError as exc:
            # client created on a loop that is already gone
            logger.debug("Error closing HTTP client: %s", exc)
    logger.info("Closed %d HTTP client(s)", len(clients))
