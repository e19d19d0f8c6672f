"""Tests for batch grid export."""
import csv
import io
import json

import httpx
import pytest
from openpyxl import load_workbook
from PIL import Image

from xybatch.schemas.generation import BatchDescriptor, BatchJobEntry
from xybatch.services.export_service import (
    IMAGE_ROW_HEIGHT,
    build_grid,
    build_workbook,
    export_grid,
    fetch_cell_images,
    to_csv,
    to_json,
)


@pytest.fixture
def batch_with_rows(store):
    """2x2 batch: one completed, one failed, one pending, one deleted."""
    rows = [store.create(batch_id="xy-batch-t") for _ in range(4)]
    store.mark_running(rows[0].id)
    store.mark_completed(rows[0].id, "https://img.test/a.png")
    store.mark_failed(rows[1].id, "bad seed")
    store.delete(rows[3].id)

    jobs = []
    for k, row in enumerate(rows):
        x_index, y_index = k % 2, k // 2
        jobs.append(BatchJobEntry(
            generation_id=row.id,
            x_index=x_index,
            y_index=y_index,
            x_value=["1", "2"][x_index],
            y_value=["10", "20"][y_index],
        ))
    batch = BatchDescriptor(
        batch_id="xy-batch-t",
        x_field="seed",
        y_field="steps",
        total_combinations=4,
        x_count=2,
        y_count=2,
        jobs=jobs,
    )
    return batch, store.list_by_ids([r.id for r in rows])


class TestBuildGrid:
    def test_cells_placed_by_position(self, batch_with_rows):
        batch, generations = batch_with_rows
        grid = build_grid(batch, generations)
        assert grid.x_values == ["1", "2"]
        assert grid.y_values == ["10", "20"]
        assert grid.cell(0, 0).display == "https://img.test/a.png"
        assert grid.cell(1, 0).display == "failed: bad seed"
        assert grid.cell(0, 1).display == "pending"
        assert grid.cell(1, 1).display == "missing"


class TestFormats:
    def test_csv_rows_are_y_columns_are_x(self, batch_with_rows):
        grid = build_grid(*batch_with_rows)
        rows = list(csv.reader(io.StringIO(to_csv(grid))))
        assert rows[0] == ["steps \\ seed", "1", "2"]
        assert rows[1] == ["10", "https://img.test/a.png", "failed: bad seed"]
        assert rows[2] == ["20", "pending", "missing"]

    def test_json(self, batch_with_rows):
        grid = build_grid(*batch_with_rows)
        data = json.loads(to_json(grid))
        assert data["batch_id"] == "xy-batch-t"
        assert data["rows"][0][0]["result_url"] == "https://img.test/a.png"
        assert data["rows"][0][1]["error_message"] == "bad seed"
        assert data["rows"][1][1]["status"] == "missing"

    def test_unknown_format(self, batch_with_rows):
        with pytest.raises(ValueError):
            export_grid(build_grid(*batch_with_rows), "parquet")


def png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (16, 16), "blue").save(buf, format="PNG")
    return buf.getvalue()


class TestExcel:
    def test_completed_cell_embeds_image(self, batch_with_rows):
        grid = build_grid(*batch_with_rows)
        ws = build_workbook(grid, {"https://img.test/a.png": png_bytes()}).active

        assert ws.title == "XY Batch"
        assert ws["A1"].value == "steps \\ seed"
        assert ws["A1"].font.bold
        assert len(ws._images) == 1
        assert ws["B2"].value is None
        assert ws.row_dimensions[2].height == IMAGE_ROW_HEIGHT
        assert ws["C2"].value == "failed: bad seed"
        assert ws["B3"].value == "pending"
        assert ws["C3"].value == "missing"

    def test_unreadable_image_keeps_url(self, batch_with_rows):
        grid = build_grid(*batch_with_rows)
        ws = build_workbook(grid, {"https://img.test/a.png": b"not an image"}).active
        assert len(ws._images) == 0
        assert ws["B2"].value == "https://img.test/a.png"

    def test_export_grid_returns_workbook_bytes(self, batch_with_rows):
        data = export_grid(build_grid(*batch_with_rows), "xlsx")
        assert isinstance(data, bytes)
        ws = load_workbook(io.BytesIO(data))["XY Batch"]
        assert ws["B2"].value == "https://img.test/a.png"
        assert ws["A3"].value == "20"

    @pytest.mark.asyncio
    async def test_fetch_cell_images_skips_failed_downloads(self, batch_with_rows, store):
        batch, generations = batch_with_rows
        second = next(g for g in generations if g.status == "pending")
        store.mark_running(second.id)
        store.mark_completed(second.id, "https://img.test/gone.png")
        grid = build_grid(batch, store.list_by_ids([j.generation_id for j in batch.jobs]))

        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            if request.url.path == "/gone.png":
                return httpx.Response(404)
            return httpx.Response(200, content=png_bytes())

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            images = await fetch_cell_images(grid, client)

        assert sorted(requested) == ["/a.png", "/gone.png"]
        assert list(images) == ["https://img.test/a.png"]
