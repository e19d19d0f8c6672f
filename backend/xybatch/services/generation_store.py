"""Generation store — durable record of one row per generation job.

Every public method opens its own short-lived session, so the store can be
shared by concurrently running queue tasks: each task owns exactly one row
and status changes are applied as single conditional UPDATE statements
(``... WHERE id = :id AND status IN (:allowed)``). That keeps the state
machine's terminality and the one-time ``completed_at`` stamp atomic without
any cross-task locking.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from xybatch.models import Generation
from xybatch.services.generation_lifecycle import (
    ACTIVE_STATUSES,
    GenerationStatus,
    InvalidTransitionError,
    allowed_sources,
)

logger = logging.getLogger(__name__)

# Fields owned by the state machine; ``update()`` refuses to touch them.
_LIFECYCLE_FIELDS = frozenset({"status", "completed_at", "running_at", "result_url", "error_message"})


class GenerationStoreError(Exception):
    """A read or write against the generation table failed."""


class GenerationNotFoundError(Exception):
    def __init__(self, generation_id: str):
        self.generation_id = generation_id
        super().__init__(f"Generation {generation_id} not found")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NewGeneration:
    """Column values for a row about to be inserted.

    A non-empty ``error_message`` stores the row already ``failed``: the job
    was rejected before it could ever run.
    """
    workflow_id: str | None = None
    provider: str | None = None
    params: dict[str, Any] | None = None
    batch_id: str | None = None
    x_index: int | None = None
    y_index: int | None = None
    x_value: str | None = None
    y_value: str | None = None
    error_message: str | None = None


class GenerationStore:
    """CRUD and lifecycle transitions for :class:`Generation` rows."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            raise GenerationStoreError(str(exc)) from exc
        finally:
            db.close()

    # ── Create ─────────────────────────────────────────────────────────

    def create(
        self,
        workflow_id: str | None = None,
        *,
        provider: str | None = None,
        params: dict[str, Any] | None = None,
        batch_id: str | None = None,
        x_index: int | None = None,
        y_index: int | None = None,
        x_value: str | None = None,
        y_value: str | None = None,
    ) -> Generation:
        """Insert a new row in ``pending`` and return it (detached)."""
        entry = NewGeneration(
            workflow_id=workflow_id,
            provider=provider,
            params=params,
            batch_id=batch_id,
            x_index=x_index,
            y_index=y_index,
            x_value=x_value,
            y_value=y_value,
        )
        return self.create_many([entry])[0]

    def create_many(self, entries: list[NewGeneration]) -> list[Generation]:
        """Insert every entry in one transaction; all rows or none.

        Returns the detached rows in the order of *entries*.
        """
        if not entries:
            return []
        with self._session() as db:
            rows = []
            for entry in entries:
                row = self._new_row(entry)
                db.add(row)
                rows.append(row)
            db.commit()
            for row in rows:
                db.refresh(row)
                db.expunge(row)
        failed = sum(1 for entry in entries if entry.error_message)
        if len(entries) > 1:
            logger.debug("Inserted %d generation rows (%d already failed)", len(entries), failed)
        return rows

    @staticmethod
    def _new_row(entry: NewGeneration) -> Generation:
        fields = asdict(entry)
        if entry.error_message:
            return Generation(status=GenerationStatus.FAILED.value, completed_at=_now(), **fields)
        return Generation(status=GenerationStatus.PENDING.value, **fields)

    # ── Read ───────────────────────────────────────────────────────────

    def get(self, generation_id: str) -> Generation | None:
        with self._session() as db:
            generation = db.get(Generation, generation_id)
            if generation is not None:
                db.expunge(generation)
            return generation

    def require(self, generation_id: str) -> Generation:
        generation = self.get(generation_id)
        if generation is None:
            raise GenerationNotFoundError(generation_id)
        return generation

    def list_by_ids(self, ids: list[str]) -> list[Generation]:
        """Bulk read; result follows the order of *ids*, unknown ids are skipped."""
        if not ids:
            return []
        with self._session() as db:
            rows = db.scalars(select(Generation).where(Generation.id.in_(ids))).all()
            for row in rows:
                db.expunge(row)
        by_id = {row.id: row for row in rows}
        return [by_id[i] for i in dict.fromkeys(ids) if i in by_id]

    def _filtered(self, stmt, workflow_id: str | None, status: str | None, batch_id: str | None):
        if workflow_id:
            stmt = stmt.where(Generation.workflow_id == workflow_id)
        if status:
            stmt = stmt.where(Generation.status == GenerationStatus(status).value)
        if batch_id:
            stmt = stmt.where(Generation.batch_id == batch_id)
        return stmt

    def list_recent(
        self,
        limit: int = 50,
        workflow_id: str | None = None,
        status: str | None = None,
        batch_id: str | None = None,
        offset: int = 0,
    ) -> list[Generation]:
        """Newest first, optionally filtered."""
        stmt = self._filtered(select(Generation), workflow_id, status, batch_id)
        stmt = stmt.order_by(Generation.started_at.desc()).offset(offset).limit(limit)
        with self._session() as db:
            rows = db.scalars(stmt).all()
            for row in rows:
                db.expunge(row)
            return list(rows)

    def count(
        self,
        workflow_id: str | None = None,
        status: str | None = None,
        batch_id: str | None = None,
    ) -> int:
        stmt = self._filtered(select(func.count(Generation.id)), workflow_id, status, batch_id)
        with self._session() as db:
            return db.scalar(stmt) or 0

    # ── Write ──────────────────────────────────────────────────────────

    def update(self, generation_id: str, **fields: Any) -> None:
        """Update non-lifecycle columns of a row.

        Status and the result/error/timestamp columns only change through
        the ``mark_*`` transitions.
        """
        forbidden = _LIFECYCLE_FIELDS & fields.keys()
        if forbidden:
            raise ValueError(f"Use the mark_* transitions to change {sorted(forbidden)}")
        if not fields:
            return
        with self._session() as db:
            result = db.execute(
                update(Generation).where(Generation.id == generation_id).values(**fields)
            )
            db.commit()
        if result.rowcount == 0:
            raise GenerationNotFoundError(generation_id)

    def _transition(self, generation_id: str, target: GenerationStatus, **fields: Any) -> None:
        with self._session() as db:
            result = db.execute(
                update(Generation)
                .where(
                    Generation.id == generation_id,
                    Generation.status.in_(allowed_sources(target)),
                )
                .values(status=target.value, **fields)
            )
            if result.rowcount == 0:
                db.rollback()
                current = db.scalar(select(Generation.status).where(Generation.id == generation_id))
                if current is None:
                    raise GenerationNotFoundError(generation_id)
                raise InvalidTransitionError(generation_id, current, target.value)
            db.commit()
        logger.debug("Generation %s -> %s", generation_id[:8], target.value)

    def mark_running(self, generation_id: str) -> None:
        self._transition(generation_id, GenerationStatus.RUNNING, running_at=_now())

    def mark_completed(self, generation_id: str, result_url: str) -> None:
        self._transition(
            generation_id,
            GenerationStatus.COMPLETED,
            result_url=result_url,
            completed_at=_now(),
        )

    def mark_failed(self, generation_id: str, error_message: str) -> None:
        self._transition(
            generation_id,
            GenerationStatus.FAILED,
            error_message=error_message,
            completed_at=_now(),
        )

    def fail_active(self, error_message: str) -> int:
        """Fail every pending/running row in one statement; returns the count."""
        with self._session() as db:
            result = db.execute(
                update(Generation)
                .where(Generation.status.in_([s.value for s in ACTIVE_STATUSES]))
                .values(
                    status=GenerationStatus.FAILED.value,
                    error_message=error_message,
                    completed_at=_now(),
                )
            )
            db.commit()
            return result.rowcount or 0

    # ── Delete ─────────────────────────────────────────────────────────

    def delete(self, generation_id: str) -> bool:
        with self._session() as db:
            result = db.execute(delete(Generation).where(Generation.id == generation_id))
            db.commit()
            return bool(result.rowcount)

    def delete_many(self, ids: list[str], status: str | None = None) -> int:
        """Delete the given rows, optionally only those currently in *status*."""
        if not ids:
            return 0
        stmt = delete(Generation).where(Generation.id.in_(ids))
        if status:
            stmt = stmt.where(Generation.status == GenerationStatus(status).value)
        with self._session() as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount or 0
