"""HTTP-level tests against the FastAPI app with an in-memory database."""
import csv
import io
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook
from PIL import Image

from xybatch.main import create_app


@pytest.fixture
def client(session_factory, registry, recording_queue):
    app = create_app(session_factory=session_factory, providers=registry, queue=recording_queue)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def workflow_id(client):
    resp = client.post("/api/v1/workflows", json={
        "name": "Portrait",
        "provider": "fake",
        "default_params": {"prompt_node": {"prompt": "a lighthouse", "size": "1024x1024"}},
    })
    assert resp.status_code == 201
    return resp.json()["id"]


def xy_payload(workflow_id: str, **overrides) -> dict:
    payload = {
        "workflow_id": workflow_id,
        "x_field": "seed",
        "x_values": ["1", "2"],
        "y_field": "steps",
        "y_values": ["10", "20", "30"],
    }
    payload.update(overrides)
    return payload


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestWorkflows:
    def test_crud(self, client, workflow_id):
        assert client.get(f"/api/v1/workflows/{workflow_id}").json()["name"] == "Portrait"
        assert [w["id"] for w in client.get("/api/v1/workflows").json()] == [workflow_id]
        assert client.delete(f"/api/v1/workflows/{workflow_id}").status_code == 200
        assert client.get(f"/api/v1/workflows/{workflow_id}").status_code == 404

    def test_unknown_provider_rejected(self, client):
        resp = client.post("/api/v1/workflows", json={"name": "X", "provider": "midjourney"})
        assert resp.status_code == 400
        assert "fake" in resp.json()["detail"]

    def test_node_provider_needs_graph(self, client):
        resp = client.post("/api/v1/workflows", json={"name": "G", "provider": "fake_nodes"})
        assert resp.status_code == 400
        assert "node_data" in resp.json()["detail"]

    def test_update(self, client, workflow_id):
        resp = client.put(f"/api/v1/workflows/{workflow_id}", json={
            "name": "Portrait v2",
            "default_params": {"prompt_node": {"prompt": "a harbor", "size": "512x512"}},
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "Portrait v2"
        assert body["default_params"]["prompt_node"]["prompt"] == "a harbor"
        assert body["provider"] == "fake"
        assert client.get(f"/api/v1/workflows/{workflow_id}").json()["name"] == "Portrait v2"

    def test_update_validates_provider(self, client, workflow_id):
        resp = client.put(f"/api/v1/workflows/{workflow_id}", json={"provider": "fake_nodes"})
        assert resp.status_code == 400
        resp = client.put(f"/api/v1/workflows/{workflow_id}", json={"provider": "midjourney"})
        assert resp.status_code == 400
        assert client.get(f"/api/v1/workflows/{workflow_id}").json()["provider"] == "fake"

    def test_update_unknown(self, client):
        assert client.put("/api/v1/workflows/nope", json={"name": "x"}).status_code == 404


class TestXYBatch:
    def test_enqueues_every_cell(self, client, workflow_id, recording_queue):
        resp = client.post("/api/v1/generate/xy-batch", json=xy_payload(workflow_id))
        assert resp.status_code == 200
        batch = resp.json()
        assert batch["total_combinations"] == 6
        assert (batch["x_count"], batch["y_count"]) == (2, 3)
        assert len(recording_queue.recorded) == 6

        ids = [j["generation_id"] for j in batch["jobs"]]
        rows = client.post("/api/v1/generations/lookup", json={"ids": ids}).json()
        assert [r["id"] for r in rows] == ids
        assert all(r["status"] == "pending" for r in rows)
        assert rows[5]["x_value"] == "2" and rows[5]["y_value"] == "30"

    def test_blank_axis_is_400(self, client, workflow_id):
        resp = client.post("/api/v1/generate/xy-batch", json=xy_payload(workflow_id, x_values=[" ", ""]))
        assert resp.status_code == 400

    def test_unknown_workflow_is_404(self, client):
        resp = client.post("/api/v1/generate/xy-batch", json=xy_payload("nope"))
        assert resp.status_code == 404

    def test_all_preflight_failures_is_422(self, client, workflow_id):
        resp = client.post("/api/v1/generate/xy-batch", json=xy_payload(
            workflow_id, default_params={"prompt_node": {"prompt": ""}},
        ))
        assert resp.status_code == 422
        assert client.get("/api/v1/generations").json()["total"] == 0


class TestSingleGenerate:
    def test_generate(self, client, workflow_id, recording_queue):
        resp = client.post("/api/v1/generate", json={"workflow_id": workflow_id, "params": {"s": {"seed": 4}}})
        assert resp.status_code == 200
        assert resp.json()["status"] == "pending"
        assert len(recording_queue.recorded) == 1


class TestWorkflowBatch:
    def test_one_job_per_workflow(self, client, workflow_id, recording_queue):
        other = client.post("/api/v1/workflows", json={
            "name": "Graph",
            "provider": "fake_nodes",
            "remote_workflow_id": "wf-remote",
            "node_data": {"3": {"class_type": "KSampler", "inputs": {"seed": 1, "steps": 20}}},
        }).json()["id"]

        resp = client.post("/api/v1/generate/batch", json={"workflow_ids": [workflow_id, other]})
        assert resp.status_code == 200
        body = resp.json()
        assert [j["workflow_name"] for j in body["jobs"]] == ["Portrait", "Graph"]
        assert all(j["status"] == "pending" for j in body["jobs"])
        assert len(recording_queue.recorded) == 2

    def test_errors(self, client, workflow_id):
        assert client.post("/api/v1/generate/batch", json={"workflow_ids": []}).status_code == 400
        resp = client.post("/api/v1/generate/batch", json={"workflow_ids": [workflow_id, "gone"]})
        assert resp.status_code == 404
        assert "gone" in resp.json()["detail"]
        assert client.get("/api/v1/generations").json()["total"] == 0


class TestGenerations:
    @pytest.fixture
    def batch(self, client, workflow_id):
        return client.post("/api/v1/generate/xy-batch", json=xy_payload(workflow_id)).json()

    def test_list_and_paging(self, client, batch):
        page = client.get("/api/v1/generations", params={"limit": 4}).json()
        assert page["total"] == 6
        assert len(page["generations"]) == 4
        assert page["has_more"] is True

        rest = client.get("/api/v1/generations", params={"limit": 4, "offset": 4}).json()
        assert len(rest["generations"]) == 2
        assert rest["has_more"] is False

        filtered = client.get("/api/v1/generations", params={"status": "completed"}).json()
        assert filtered["total"] == 0

    def test_get_and_delete(self, client, batch):
        gid = batch["jobs"][0]["generation_id"]
        assert client.get(f"/api/v1/generations/{gid}").json()["batch_id"] == batch["batch_id"]
        assert client.delete(f"/api/v1/generations/{gid}").status_code == 200
        assert client.get(f"/api/v1/generations/{gid}").status_code == 404
        assert client.delete(f"/api/v1/generations/{gid}").status_code == 404

    def test_batch_delete_with_filter(self, client, batch, store):
        ids = [j["generation_id"] for j in batch["jobs"]]
        store.mark_failed(ids[0], "x")

        resp = client.post("/api/v1/generations/batch-delete", json={
            "generation_ids": ids, "status_filter": "failed",
        })
        assert resp.json()["deleted_count"] == 1

        resp = client.post("/api/v1/generations/batch-delete", json={"generation_ids": ids})
        assert resp.json()["deleted_count"] == 5

    def test_workflow_delete_keeps_generations(self, client, batch, workflow_id):
        client.delete(f"/api/v1/workflows/{workflow_id}")
        rows = client.get("/api/v1/generations").json()
        assert rows["total"] == 6
        assert all(r["workflow_id"] is None for r in rows["generations"])


class TestExportAndQueue:
    def test_export_csv(self, client, workflow_id, store):
        batch = client.post("/api/v1/generate/xy-batch", json=xy_payload(workflow_id)).json()
        first = batch["jobs"][0]["generation_id"]
        store.mark_running(first)
        store.mark_completed(first, "https://img.test/1-10.png")

        resp = client.post("/api/v1/export/xy-batch", json={"batch": batch, "format": "csv"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        rows = list(csv.reader(io.StringIO(resp.text)))
        assert rows[0] == ["steps \\ seed", "1", "2"]
        assert rows[1] == ["10", "https://img.test/1-10.png", "pending"]
        assert len(rows) == 4

    def test_export_xlsx_embeds_images(self, client, workflow_id, store):
        batch = client.post("/api/v1/generate/xy-batch", json=xy_payload(workflow_id)).json()
        first = batch["jobs"][0]["generation_id"]
        store.mark_running(first)
        store.mark_completed(first, "https://img.test/1-10.png")

        png = io.BytesIO()
        Image.new("RGB", (8, 8), "red").save(png, format="PNG")
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, content=png.getvalue())

        image_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        with patch("xybatch.api.v1.export.get_http_client", return_value=image_client):
            resp = client.post("/api/v1/export/xy-batch", json={"batch": batch, "format": "xlsx"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/vnd.openxmlformats")
        assert f'{batch["batch_id"]}.xlsx' in resp.headers["content-disposition"]
        assert resp.content[:2] == b"PK"
        assert requested == ["https://img.test/1-10.png"]

        ws = load_workbook(io.BytesIO(resp.content))["XY Batch"]
        assert ws["A1"].value == "steps \\ seed"
        assert ws["B2"].value is None
        assert ws["C2"].value == "pending"

    def test_queue_status(self, client):
        body = client.get("/api/v1/queue/status").json()
        assert body["concurrency"] == 1
        assert body["is_draining"] is False

    def test_providers(self, client):
        assert [p["name"] for p in client.get("/api/v1/providers").json()] == ["fake", "fake_nodes"]
