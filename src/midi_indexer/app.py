"""FastAPI application factory.

The HTTP surface is a thin shell: it owns the IndexerRuntime's lifetime and
exposes health and pipeline status.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response, status
from sqlalchemy import text

from midi_indexer.core import timezone  # noqa: F401
from midi_indexer.core.config import Settings, configure_logging
from midi_indexer.runtime import IndexerRuntime

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    - Startup: configure logging, build the runtime, start workers
    - Shutdown: stop workers, close HTTP client and database pool
    """
    settings: Settings = app.state.settings
    configure_logging(settings)

    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        runtime = IndexerRuntime.from_settings(settings)
        app.state.runtime = runtime

    runtime.start()
    logger.info(
        "application.startup",
        contract_address=settings.midi_contract_address,
        db_url=settings.database_url.split("@")[-1],
    )

    yield

    logger.info("application.shutdown")
    await runtime.stop()


def create_app(settings: Settings | None = None, runtime: IndexerRuntime | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use (loaded from the environment if omitted)
        runtime: Pre-built runtime (built from settings at startup if omitted)

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="MIDI Indexer",
        description="Keeps the MIDI token database in sync with on-chain mints",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()  # type: ignore[call-arg]
    if runtime is not None:
        app.state.runtime = runtime

    @app.get("/health")
    async def health_check(request: Request, response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with request.app.state.runtime.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    @app.get("/status")
    async def pipeline_status(request: Request):
        """Indexing pipeline counters."""
        runtime: IndexerRuntime = request.app.state.runtime
        max_attempts = runtime.retry_queue.policy.max_attempts

        async with await runtime.uow_factory() as uow:
            indexed = await uow.midi.count()
            devices = await uow.devices.count()
            queued = await uow.queue.count()
            parked = await uow.queue.count(min_attempts=max_attempts)
            dead_letters = await uow.dead_letters.count()
            last_block = await uow.system_state.get_last_processed_block()

        return {
            "indexed_tokens": indexed,
            "devices": devices,
            "queue": {"total": queued, "parked": parked, "max_attempts": max_attempts},
            "dead_letters": dead_letters,
            "last_processed_block": last_block,
            "pending_dispatch": runtime.dispatch_queue.qsize(),
            "workers": sorted(
                name for name, task in runtime.tasks.items() if not task.done()
            ),
        }

    return app


# Create app instance for uvicorn
app = create_app()
