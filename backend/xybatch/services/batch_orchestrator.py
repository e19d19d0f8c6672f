"""XY batch orchestration — validate, expand, persist, enqueue.

``enqueue_batch`` is the entry point for an XY sweep:

  1. validate the axis configuration (``BatchConfigError``, nothing stored);
  2. resolve the workflow and its provider adapter;
  3. expand the X/Y axes into one parameter set per cell. Flat-parameter
     providers get the axis expander's output; node-graph providers get a
     copy of the workflow's nodes with each axis written into its
     ``node.inputs[field]``;
  4. pre-flight every cell against the adapter. If every cell fails the whole
     batch is rejected (``BatchPreflightError``, nothing stored);
  5. insert every row in one transaction (cells that failed pre-flight are
     stored ``failed``), then enqueue one task per remaining row.

Each entry point is split in two: ``prepare_*`` does the blocking work
(workflow lookup, row inserts) and returns the tasks; the ``enqueue_*``
variants hand them to the queue from the calling loop, and the async
``submit_*`` variants run the blocking part in a worker thread first.

The descriptor carries the batch id and the (generation_id, x, y) join keys
the client uses to rebuild the grid from generation rows.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy.orm import sessionmaker

from xybatch.models import Generation, Workflow
from xybatch.providers.base import PreflightError, ProviderAdapter
from xybatch.providers.registry import ProviderRegistry, UnknownProviderError
from xybatch.schemas.common import GenerationStatus
from xybatch.schemas.generation import (
    BatchDescriptor,
    BatchJobEntry,
    GenerateRequest,
    MultiWorkflowBatchRequest,
    MultiWorkflowBatchResponse,
    WorkflowJobEntry,
    XYBatchRequest,
)
from xybatch.services.axis_expander import (
    clean_axis_values,
    expand_axis_combinations,
    merge_default_params,
    resolve_job_params,
)
from xybatch.services.generation_store import GenerationStore, NewGeneration
from xybatch.services.node_graph import NodeGraphError, build_node_params, require_input
from xybatch.services.task_queue import Task, TaskQueue
from xybatch.tasks.generation import make_generation_task

logger = logging.getLogger(__name__)

WorkflowLoader = Callable[[str], Workflow | None]


class BatchConfigError(Exception):
    """The axis configuration cannot produce any job."""


class BatchPreflightError(Exception):
    """Every job of the batch failed provider pre-flight."""

    def __init__(self, message: str, failures: list[str] | None = None):
        self.failures = failures or []
        super().__init__(message)


class WorkflowNotFoundError(Exception):
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


def make_workflow_loader(session_factory: sessionmaker) -> WorkflowLoader:
    """Return a loader reading detached Workflow rows from *session_factory*."""
    def load(workflow_id: str) -> Workflow | None:
        db = session_factory()
        try:
            workflow = db.get(Workflow, workflow_id)
            if workflow is not None:
                db.expunge(workflow)
            return workflow
        finally:
            db.close()
    return load


def new_batch_id(prefix: str = "xy-batch") -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def preflight_error(adapter: ProviderAdapter, params: dict[str, Any]) -> str | None:
    """Run the adapter's pre-flight; the failure message, or None when it passes."""
    try:
        adapter.preflight(params)
    except PreflightError as exc:
        return str(exc) or "Pre-flight check failed"
    return None


class BatchOrchestrator:
    def __init__(
        self,
        store: GenerationStore,
        queue: TaskQueue,
        providers: ProviderRegistry,
        workflow_loader: WorkflowLoader,
    ):
        self.store = store
        self.queue = queue
        self.providers = providers
        self.workflow_loader = workflow_loader

    # ── Helpers ────────────────────────────────────────────────────────

    def _resolve(self, workflow_id: str) -> tuple[Workflow, ProviderAdapter]:
        workflow = self.workflow_loader(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        try:
            adapter = self.providers.get(workflow.provider)
        except UnknownProviderError as exc:
            raise BatchConfigError(str(exc)) from exc
        return workflow, adapter

    @staticmethod
    def _validate_axes(request: XYBatchRequest) -> tuple[list[str], list[str]]:
        if not request.x_field.strip():
            raise BatchConfigError("X axis field is required")
        if not request.y_field.strip():
            raise BatchConfigError("Y axis field is required")
        xs = clean_axis_values(request.x_values)
        ys = clean_axis_values(request.y_values)
        if not xs:
            raise BatchConfigError("X axis has no values")
        if not ys:
            raise BatchConfigError("Y axis has no values")
        return xs, ys

    @staticmethod
    def _node_graph(workflow: Workflow, adapter: ProviderAdapter) -> dict[str, Any]:
        if not workflow.remote_workflow_id or not workflow.node_data:
            raise BatchConfigError(
                f"Workflow '{workflow.name}' has no remote workflow id or node data for {adapter.display_name}"
            )
        return workflow.node_data

    def _node_job_params(
        self,
        workflow: Workflow,
        adapter: ProviderAdapter,
        defaults: Mapping[str, Mapping[str, Any]],
        axes: Iterable[tuple[str, str, str]] = (),
    ) -> dict[str, Any]:
        nodes = build_node_params(self._node_graph(workflow, adapter), defaults, axes)
        return {"workflow_id": workflow.remote_workflow_id, "nodes": nodes}

    def _job_params(
        self,
        workflow: Workflow,
        adapter: ProviderAdapter,
        overrides: Mapping[str, Mapping[str, Any]] | None,
    ) -> dict[str, Any]:
        """Parameters of a single, non-swept job."""
        defaults = merge_default_params(workflow.default_params, overrides)
        if adapter.uses_node_graph:
            return self._node_job_params(workflow, adapter, defaults)
        return resolve_job_params(defaults)

    def _node_axes(self, request: XYBatchRequest, workflow: Workflow, adapter: ProviderAdapter) -> tuple[str, str]:
        graph = self._node_graph(workflow, adapter)
        x_node = (request.x_node or "").strip()
        y_node = (request.y_node or "").strip()
        if not x_node:
            raise BatchConfigError(f"X axis node is required for {adapter.display_name} workflows")
        if not y_node:
            raise BatchConfigError(f"Y axis node is required for {adapter.display_name} workflows")
        try:
            require_input(graph, x_node, request.x_field.strip(), "X")
            require_input(graph, y_node, request.y_field.strip(), "Y")
        except NodeGraphError as exc:
            raise BatchConfigError(str(exc)) from exc
        return x_node, y_node

    def _insert_and_build_tasks(
        self,
        entries: list[NewGeneration],
        adapters: list[ProviderAdapter],
    ) -> tuple[list[Generation], list[Task]]:
        """Insert every row in one transaction; tasks only for rows left pending."""
        rows = self.store.create_many(entries)
        tasks = [
            make_generation_task(self.store, adapter, row.id, entry.params)
            for row, entry, adapter in zip(rows, entries, adapters)
            if entry.error_message is None
        ]
        return rows, tasks

    # ── XY sweep ───────────────────────────────────────────────────────

    def prepare_batch(self, request: XYBatchRequest) -> tuple[BatchDescriptor, list[Task]]:
        """Validate, expand and persist an XY sweep; returns the descriptor and its tasks."""
        xs, ys = self._validate_axes(request)
        workflow, adapter = self._resolve(request.workflow_id)

        defaults = merge_default_params(workflow.default_params, request.default_params)
        x_field = request.x_field.strip()
        y_field = request.y_field.strip()

        if adapter.uses_node_graph:
            x_node, y_node = self._node_axes(request, workflow, adapter)
            combinations = expand_axis_combinations(x_field, xs, y_field, ys)
        else:
            x_node, y_node = request.x_node, request.y_node
            combinations = expand_axis_combinations(x_field, xs, y_field, ys, defaults)

        checked: list[tuple[Any, dict[str, Any], str | None]] = []
        for combo in combinations:
            if adapter.uses_node_graph:
                params = self._node_job_params(workflow, adapter, defaults, [
                    (x_node, x_field, combo.x_value),
                    (y_node, y_field, combo.y_value),
                ])
            else:
                params = combo.job_params()
            checked.append((combo, params, preflight_error(adapter, params)))

        failures = [error for _, _, error in checked if error is not None]
        if failures and len(failures) == len(checked):
            raise BatchPreflightError(
                f"All {len(checked)} jobs failed pre-flight: {failures[0]}",
                failures=failures,
            )

        batch_id = new_batch_id()
        entries = [
            NewGeneration(
                workflow_id=workflow.id,
                provider=adapter.name,
                params=params,
                batch_id=batch_id,
                x_index=combo.x_index,
                y_index=combo.y_index,
                x_value=combo.x_value,
                y_value=combo.y_value,
                error_message=error,
            )
            for combo, params, error in checked
        ]
        rows, tasks = self._insert_and_build_tasks(entries, [adapter] * len(entries))

        jobs: list[BatchJobEntry] = []
        for (combo, _, _), row in zip(checked, rows):
            combo.generation_id = row.id
            jobs.append(BatchJobEntry(
                generation_id=row.id,
                x_index=combo.x_index,
                y_index=combo.y_index,
                x_value=combo.x_value,
                y_value=combo.y_value,
            ))

        logger.info(
            "Batch %s: %d jobs (%dx%d) on %s, %d failed pre-flight",
            batch_id, len(jobs), len(xs), len(ys), adapter.name, len(failures),
        )
        descriptor = BatchDescriptor(
            batch_id=batch_id,
            workflow_id=workflow.id,
            x_field=x_field,
            y_field=y_field,
            x_node=x_node,
            y_node=y_node,
            total_combinations=len(jobs),
            x_count=len(xs),
            y_count=len(ys),
            jobs=jobs,
            preflight_failures=len(failures),
        )
        return descriptor, tasks

    def enqueue_batch(self, request: XYBatchRequest) -> BatchDescriptor:
        """Create and enqueue one generation per XY cell.

        Must be called from within a running event loop (the queue starts its
        drain task on it).
        """
        descriptor, tasks = self.prepare_batch(request)
        self.queue.enqueue(tasks)
        return descriptor

    async def submit_batch(self, request: XYBatchRequest) -> BatchDescriptor:
        descriptor, tasks = await asyncio.to_thread(self.prepare_batch, request)
        self.queue.enqueue(tasks)
        return descriptor

    # ── Single generation ──────────────────────────────────────────────

    def prepare_single(self, request: GenerateRequest) -> tuple[Generation, list[Task]]:
        """Persist one generation from a workflow plus overrides.

        A pre-flight failure is recorded on the row rather than raised.
        """
        workflow, adapter = self._resolve(request.workflow_id)
        params = self._job_params(workflow, adapter, request.params)
        error = preflight_error(adapter, params)

        entry = NewGeneration(workflow_id=workflow.id, provider=adapter.name, params=params, error_message=error)
        rows, tasks = self._insert_and_build_tasks([entry], [adapter])
        if error is None:
            logger.info("Generation %s queued on %s", rows[0].id[:8], adapter.name)
        else:
            logger.warning("Generation %s failed pre-flight: %s", rows[0].id[:8], error)
        return rows[0], tasks

    def enqueue_single(self, request: GenerateRequest) -> str:
        """Create one generation and enqueue it; returns its id."""
        generation, tasks = self.prepare_single(request)
        self.queue.enqueue(tasks)
        return generation.id

    async def submit_single(self, request: GenerateRequest) -> Generation:
        generation, tasks = await asyncio.to_thread(self.prepare_single, request)
        self.queue.enqueue(tasks)
        return generation

    # ── Several workflows, one job each ────────────────────────────────

    def prepare_workflows(
        self, request: MultiWorkflowBatchRequest,
    ) -> tuple[MultiWorkflowBatchResponse, list[Task]]:
        """Persist one generation per workflow; every workflow must exist.

        Repeated ids run once. Rejected like an XY sweep when every job
        fails pre-flight.
        """
        workflow_ids = list(dict.fromkeys(w.strip() for w in request.workflow_ids if w and w.strip()))
        if not workflow_ids:
            raise BatchConfigError("At least one workflow id is required")

        resolved = [self._resolve(workflow_id) for workflow_id in workflow_ids]
        planned = []
        for workflow, adapter in resolved:
            params = self._job_params(workflow, adapter, request.params)
            planned.append((workflow, adapter, params, preflight_error(adapter, params)))

        failures = [error for *_, error in planned if error is not None]
        if len(failures) == len(planned):
            raise BatchPreflightError(
                f"All {len(planned)} jobs failed pre-flight: {failures[0]}",
                failures=failures,
            )

        batch_id = new_batch_id("batch")
        entries = [
            NewGeneration(
                workflow_id=workflow.id,
                provider=adapter.name,
                params=params,
                batch_id=batch_id,
                error_message=error,
            )
            for workflow, adapter, params, error in planned
        ]
        rows, tasks = self._insert_and_build_tasks(entries, [adapter for _, adapter, _, _ in planned])

        jobs = [
            WorkflowJobEntry(
                generation_id=row.id,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                status=GenerationStatus(row.status),
            )
            for (workflow, *_), row in zip(planned, rows)
        ]
        logger.info(
            "Batch %s: %d workflow job(s), %d failed pre-flight",
            batch_id, len(jobs), len(failures),
        )
        return MultiWorkflowBatchResponse(batch_id=batch_id, jobs=jobs, preflight_failures=len(failures)), tasks

    def enqueue_workflows(self, request: MultiWorkflowBatchRequest) -> MultiWorkflowBatchResponse:
        response, tasks = self.prepare_workflows(request)
        self.queue.enqueue(tasks)
        return response

    async def submit_workflows(self, request: MultiWorkflowBatchRequest) -> MultiWorkflowBatchResponse:
        response, tasks = await asyncio.to_thread(self.prepare_workflows, request)
        self.queue.enqueue(tasks)
        return response
