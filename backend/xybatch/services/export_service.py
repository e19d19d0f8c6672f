"""Export service — render an XY batch as a grid.

Rows are Y values, columns are X values. A cell holds the result URL of a
completed generation, otherwise its status (with the error message for
failed ones). Cells whose generation row no longer exists read ``missing``.

CSV and JSON are text. The Excel workbook embeds each completed cell's
image in place of its URL; images are downloaded up front with
:func:`fetch_cell_images`, and a cell whose download failed keeps its text.
"""
from __future__ import annotations

import asyncio
import csv
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx
from openpyxl import Workbook
from openpyxl.drawing.image import Image as XLImage
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from xybatch.models import Generation
from xybatch.schemas.generation import BatchDescriptor
from xybatch.services.generation_lifecycle import GenerationStatus

logger = logging.getLogger(__name__)

MISSING = "missing"


@dataclass
class GridCell:
    generation_id: str
    status: str
    result_url: str | None = None
    error_message: str | None = None

    @property
    def display(self) -> str:
        if self.status == GenerationStatus.COMPLETED.value and self.result_url:
            return self.result_url
        if self.status == GenerationStatus.FAILED.value and self.error_message:
            return f"failed: {self.error_message}"
        return self.status


@dataclass
class BatchGrid:
    batch_id: str
    x_field: str
    y_field: str
    x_values: list[str]
    y_values: list[str]
    cells: list[list[GridCell | None]] = field(default_factory=list)

    def cell(self, x_index: int, y_index: int) -> GridCell | None:
        return self.cells[y_index][x_index]


def build_grid(batch: BatchDescriptor, generations: Iterable[Generation]) -> BatchGrid:
    """Place each batch job's generation at its (y, x) position."""
    by_id = {g.id: g for g in generations}
    x_values = [""] * batch.x_count
    y_values = [""] * batch.y_count
    cells: list[list[GridCell | None]] = [[None] * batch.x_count for _ in range(batch.y_count)]

    for job in batch.jobs:
        if not (0 <= job.x_index < batch.x_count and 0 <= job.y_index < batch.y_count):
            logger.warning("Batch %s: job %s outside the grid", batch.batch_id, job.generation_id[:8])
            continue
        x_values[job.x_index] = job.x_value
        y_values[job.y_index] = job.y_value
        generation = by_id.get(job.generation_id)
        if generation is None:
            cells[job.y_index][job.x_index] = GridCell(job.generation_id, MISSING)
        else:
            cells[job.y_index][job.x_index] = GridCell(
                generation_id=generation.id,
                status=generation.status,
                result_url=generation.result_url,
                error_message=generation.error_message,
            )

    return BatchGrid(
        batch_id=batch.batch_id,
        x_field=batch.x_field,
        y_field=batch.y_field,
        x_values=x_values,
        y_values=y_values,
        cells=cells,
    )


# ── Format converters ──────────────────────────────────────────────────

def to_csv(grid: BatchGrid) -> str:
    """Header row ``y_field \\ x_field, x1, x2, ...`` then one row per Y value."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([f"{grid.y_field} \\ {grid.x_field}", *grid.x_values])
    for y_value, row in zip(grid.y_values, grid.cells):
        writer.writerow([y_value, *(c.display if c else "" for c in row)])
    return buf.getvalue()


def to_json(grid: BatchGrid) -> str:
    data: dict[str, Any] = {
        "batch_id": grid.batch_id,
        "x_field": grid.x_field,
        "y_field": grid.y_field,
        "x_values": grid.x_values,
        "y_values": grid.y_values,
        "rows": [
            [
                None if c is None else {
                    "generation_id": c.generation_id,
                    "status": c.status,
                    "result_url": c.result_url,
                    "error_message": c.error_message,
                }
                for c in row
            ]
            for row in grid.cells
        ],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


# ── Excel ──────────────────────────────────────────────────────────────

IMAGE_PX = 200
IMAGE_ROW_HEIGHT = 150  # points
HEADER_FILL = PatternFill(fill_type="solid", fgColor="FFE0E0E0")


async def _download(client: httpx.AsyncClient, url: str) -> bytes | None:
    try:
        resp = await client.get(url)
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Could not download %s for export: %s", url, exc)
        return None
    return resp.content


async def fetch_cell_images(grid: BatchGrid, client: httpx.AsyncClient) -> dict[str, bytes]:
    """Download the result image of every completed cell; url -> bytes."""
    urls = list(dict.fromkeys(
        c.result_url
        for row in grid.cells for c in row
        if c is not None and c.status == GenerationStatus.COMPLETED.value and c.result_url
    ))
    contents = await asyncio.gather(*(_download(client, url) for url in urls))
    images = {url: data for url, data in zip(urls, contents) if data}
    logger.info("Fetched %d/%d image(s) for batch %s", len(images), len(urls), grid.batch_id)
    return images


def _embed(ws, anchor: str, data: bytes) -> bool:
    try:
        image = XLImage(io.BytesIO(data))
    except (OSError, ValueError) as exc:
        logger.warning("Skipping unreadable image at %s: %s", anchor, exc)
        return False
    image.width = IMAGE_PX
    image.height = IMAGE_PX
    ws.add_image(image, anchor)
    return True


def build_workbook(grid: BatchGrid, images: dict[str, bytes] | None = None) -> Workbook:
    """Same layout as the CSV; completed cells show their image when available."""
    images = images or {}
    wb = Workbook()
    ws = wb.active
    ws.title = "XY Batch"

    ws.append([f"{grid.y_field} \\ {grid.x_field}", *grid.x_values])
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.fill = HEADER_FILL
    ws.column_dimensions["A"].width = 15
    for col in range(2, len(grid.x_values) + 2):
        ws.column_dimensions[get_column_letter(col)].width = 25

    for row_offset, (y_value, row) in enumerate(zip(grid.y_values, grid.cells)):
        row_num = row_offset + 2
        ws.cell(row=row_num, column=1, value=y_value)
        for col_offset, c in enumerate(row):
            col_num = col_offset + 2
            data = images.get(c.result_url) if c is not None and c.result_url else None
            if data and _embed(ws, f"{get_column_letter(col_num)}{row_num}", data):
                ws.row_dimensions[row_num].height = IMAGE_ROW_HEIGHT
                continue
            ws.cell(row=row_num, column=col_num, value=c.display if c else "")
    return wb


def to_xlsx(grid: BatchGrid, images: dict[str, bytes] | None = None) -> bytes:
    buf = io.BytesIO()
    build_workbook(grid, images).save(buf)
    return buf.getvalue()


EXPORTERS = {
    "csv": to_csv,
    "json": to_json,
    "xlsx": to_xlsx,
}

MEDIA_TYPES = {
    "csv": "text/csv",
    "json": "application/json",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

# Formats whose exporter takes the downloaded images
IMAGE_FORMATS = frozenset({"xlsx"})


def export_grid(grid: BatchGrid, fmt: str, images: dict[str, bytes] | None = None) -> str | bytes:
    if fmt not in EXPORTERS:
        raise ValueError(f"Unsupported export format: {fmt}")
    if fmt in IMAGE_FORMATS:
        data = EXPORTERS[fmt](grid, images)
    else:
        data = EXPORTERS[fmt](grid)
    logger.info("Exported batch %s as %s", grid.batch_id, fmt)
    return data
