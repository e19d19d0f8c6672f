"""Test configuration and fixtures."""
import asyncio
from typing import Any

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from xybatch.database import create_tables, make_engine
from xybatch.models import Workflow
from xybatch.providers.base import ProviderAdapter, ProviderError
from xybatch.providers.comfy_stack import ComfyStackAdapter
from xybatch.providers.registry import ProviderRegistry
from xybatch.services.generation_store import GenerationStore
from xybatch.services.task_queue import TaskQueue


class FakeAdapter(ProviderAdapter):
    """In-memory provider: returns a URL derived from the params, or fails on demand."""

    name = "fake"
    display_name = "Fake"
    supported_sizes = ("512x512", "1024x1024")
    default_size = "1024x1024"

    def __init__(self, fail_when: dict[str, Any] | None = None, gate: asyncio.Event | None = None):
        super().__init__(api_key="test")
        self.fail_when = fail_when or {}
        self.gate = gate
        self.calls: list[dict[str, Any]] = []

    async def generate(self, params: dict[str, Any]) -> str:
        self.calls.append(dict(params))
        if self.gate is not None:
            await self.gate.wait()
        for key, value in self.fail_when.items():
            if str(params.get(key)) == str(value):
                raise ProviderError(f"provider rejected {key}={value}")
        return f"https://img.test/{params.get('seed', 'x')}-{params.get('steps', 'x')}.png"


class FakeNodeAdapter(ComfyStackAdapter):
    """ComfyStack pre-flight, but generation reads the sampler node locally."""

    name = "fake_nodes"
    display_name = "Fake Nodes"

    def __init__(self):
        super().__init__(api_key="test")
        self.calls: list[dict[str, Any]] = []

    async def generate(self, params: dict[str, Any]) -> str:
        self.calls.append(params)
        sampler = params["nodes"]["3"]["inputs"]
        return f"https://img.test/node-{sampler['seed']}-{sampler['steps']}.png"


class RecordingQueue(TaskQueue):
    """Queue that only records tasks; nothing runs."""

    def __init__(self):
        super().__init__(concurrency=1, batch_delay=0)
        self.recorded: list = []

    def enqueue(self, tasks) -> int:
        tasks = list(tasks)
        self.recorded.extend(tasks)
        return len(tasks)


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of a test."""
    eng = make_engine("sqlite:///:memory:", poolclass=StaticPool)
    create_tables(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(session_factory):
    return GenerationStore(session_factory)


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def registry(fake_adapter, node_adapter):
    return ProviderRegistry([fake_adapter, node_adapter])


@pytest.fixture
def workflow(db_session):
    wf = Workflow(
        name="Portrait",
        provider="fake",
        default_params={"prompt_node": {"prompt": "a lighthouse at dusk", "size": "1024x1024"}},
    )
    db_session.add(wf)
    db_session.commit()
    db_session.refresh(wf)
    return wf


@pytest.fixture
def adapter_factory():
    """Build extra FakeAdapter instances (e.g. with a gate or failure rule)."""
    return FakeAdapter


@pytest.fixture
def recording_queue():
    return RecordingQueue()


NODE_DATA = {
    "3": {"class_type": "KSampler", "inputs": {"seed": 5, "steps": 20, "cfg": 2.5}},
    "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "a lighthouse at dusk"}},
    "58": {"class_type": "EmptyLatentImage", "inputs": {"width": 1328, "height": 1328}},
}


@pytest.fixture
def node_adapter():
    return FakeNodeAdapter()


@pytest.fixture
def node_workflow(db_session):
    wf = Workflow(
        name="Qwen graph",
        provider="fake_nodes",
        remote_workflow_id="wf-remote",
        node_data=NODE_DATA,
        default_params={},
    )
    db_session.add(wf)
    db_session.commit()
    db_session.refresh(wf)
    return wf
