"""Startup cleanup run from the FastAPI lifespan.

The task queue lives in memory, so after a restart nothing can still be
working on a ``pending`` or ``running`` row. Those rows are marked failed so
clients never poll phantom active jobs forever.
"""
from __future__ import annotations

import logging

from xybatch.services.generation_store import GenerationStore, GenerationStoreError

logger = logging.getLogger(__name__)

ORPHANED_MESSAGE = (
    "Job was interrupted by a server restart. "
    "Please start a new generation."
)


def reconcile_orphaned_generations(store: GenerationStore) -> int:
    """Mark any generations stuck in pending/running as failed.

    Returns the number of rows cleaned up.
    """
    try:
        count = store.fail_active(ORPHANED_MESSAGE)
    except GenerationStoreError as exc:
        logger.warning("Could not clean up orphaned generations: %s", exc)
        return 0
    if count:
        logger.info("Cleaned up %d orphaned generation(s)", count)
    return count
