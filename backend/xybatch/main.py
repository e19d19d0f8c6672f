"""FastAPI application entry point and lifespan management.

Configures CORS, registers API routers, and owns the lifespan of the
process-wide services: the generation store, the task queue, the provider
registry and the batch orchestrator are built on startup and hung off
``app.state`` for the request dependencies in ``xybatch.api.deps``.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from xybatch.api.v1.router import router as v1_router
from xybatch.config import get_settings
from xybatch.database import SessionLocal, create_tables
from xybatch.providers.registry import ProviderRegistry, build_default_registry
from xybatch.schemas.common import HealthResponse
from xybatch.services.batch_orchestrator import BatchOrchestrator, make_workflow_loader
from xybatch.services.generation_store import GenerationStore
from xybatch.services.http_client_manager import close_all_clients
from xybatch.services.task_queue import TaskQueue
from xybatch.utils.startup import reconcile_orphaned_generations

logger = logging.getLogger(__name__)


def _setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Suppress noisy third-party HTTP loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: tables, services, orphan cleanup. Shutdown: queue and HTTP clients."""
    settings = get_settings()
    _setup_logging(settings.LOG_LEVEL)

    # A caller-supplied session factory owns its own schema
    if getattr(app.state, "session_factory", None) is None:
        db_path = settings.database_path
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        create_tables()
        logger.info("Database tables ready")
        app.state.session_factory = SessionLocal

    store = GenerationStore(app.state.session_factory)
    if getattr(app.state, "queue", None) is None:
        app.state.queue = TaskQueue(
            concurrency=settings.QUEUE_CONCURRENCY,
            batch_delay=settings.QUEUE_BATCH_DELAY_SECONDS,
        )
    if getattr(app.state, "providers", None) is None:
        app.state.providers = build_default_registry(settings)

    app.state.store = store
    app.state.orchestrator = BatchOrchestrator(
        store=store,
        queue=app.state.queue,
        providers=app.state.providers,
        workflow_loader=make_workflow_loader(app.state.session_factory),
    )

    # Nothing survives a restart in the in-memory queue
    reconcile_orphaned_generations(store)
    logger.info(
        "Task queue ready (concurrency=%d, batch_delay=%.1fs), providers: %s",
        app.state.queue.concurrency, app.state.queue.batch_delay,
        ", ".join(app.state.providers.names()),
    )

    yield  # Application runs here

    dropped = await app.state.queue.shutdown()
    if dropped:
        logger.warning("%d queued generation(s) will be failed on next startup", dropped)
    await close_all_clients()
    logger.info("Shutting down")


def create_app(
    session_factory: sessionmaker | None = None,
    providers: ProviderRegistry | None = None,
    queue: TaskQueue | None = None,
) -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory
    app.state.providers = providers
    app.state.queue = queue

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)},
        )

    # Health check
    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="healthy",
            version=settings.APP_VERSION,
            timestamp=datetime.now(timezone.utc),
        )

    # Mount API routes
    app.include_router(v1_router)

    return app


app = create_app()
