"""Tests for the pooled outbound HTTP clients."""
from unittest.mock import patch

import pytest

from xybatch.config import Settings
from xybatch.services import http_client_manager
from xybatch.services.http_client_manager import close_all_clients, get_http_client


@pytest.fixture(autouse=True)
async def empty_pool():
    await close_all_clients()
    yield
    await close_all_clients()


@pytest.mark.asyncio
async def test_client_reused_within_a_loop():
    first = get_http_client("nano_banana")
    assert get_http_client("nano_banana") is first
    assert get_http_client("qwen_image") is not first


@pytest.mark.asyncio
async def test_closed_client_is_replaced():
    first = get_http_client("comfy_stack")
    await first.aclose()
    assert get_http_client("comfy_stack") is not first


@pytest.mark.asyncio
async def test_provider_timeouts():
    assert get_http_client("qwen_image").timeout.read == 180.0
    assert get_http_client("comfy_stack").timeout.read == 60.0
    assert get_http_client("unknown").timeout.connect == 15.0


@pytest.mark.asyncio
async def test_export_timeout_from_settings():
    settings = Settings(EXPORT_IMAGE_TIMEOUT_SECONDS=12.5)
    with patch.object(http_client_manager, "get_settings", return_value=settings):
        client = get_http_client("export")
    assert client.timeout.read == 12.5
    assert client.timeout.connect == 10.0


@pytest.mark.asyncio
async def test_close_all_clients():
    clients = [get_http_client("doubao_seedream"), get_http_client("export")]
    await close_all_clients()
    assert all(c.is_closed for c in clients)
    assert get_http_client("doubao_seedream") is not clients[0]
