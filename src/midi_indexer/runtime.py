"""Indexer runtime: the one object that owns connections and background tasks.

Built once at startup from Settings and handed to the HTTP shell or the CLI. No
module-level singletons: the chain client, the session factory and every worker
task hang off an IndexerRuntime instance.
"""

import asyncio
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from midi_indexer.core.config import Settings
from midi_indexer.core.database import setup_db_session
from midi_indexer.services.blockchain.midi_contract import MidiContractClient, MintTransfer
from midi_indexer.services.indexing.pipeline import IndexingPipeline
from midi_indexer.services.metadata.resolver import MetadataResolver
from midi_indexer.services.reconciliation import ReconciliationSweep
from midi_indexer.services.retry_queue import RetryPolicy, RetryQueue
from midi_indexer.uow import create_uow_factory
from midi_indexer.workers.event_listener import (
    MintEventListener,
    run_event_listener,
    run_mint_dispatcher,
)
from midi_indexer.workers.queue_drain_worker import run_queue_drain_worker
from midi_indexer.workers.reconciliation_worker import run_reconciliation_worker

logger = structlog.get_logger()

RESTART_DELAY = 1  # Fixed 1 second delay between restarts


def create_resilient_worker(
    coro_factory: Callable[[], Awaitable[Any]],
    worker_name: str,
    shutdown_event: asyncio.Event,
    tasks: dict[str, asyncio.Task],
) -> asyncio.Task:
    """Start a worker that is restarted after a crash.

    Args:
        coro_factory: Zero-argument callable returning the worker coroutine
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown
        tasks: Registry updated with the current task for ``worker_name``

    Returns:
        Initial task handle (replaced in ``tasks`` on restart)
    """

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_factory())
            new_task.add_done_callback(on_worker_done)
            tasks[worker_name] = new_task

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_factory())
    task.add_done_callback(on_worker_done)
    tasks[worker_name] = task
    return task


class IndexerRuntime:
    """Owns the chain client, database handle and the pipeline's workers."""

    def __init__(
        self,
        settings: Settings,
        chain: MidiContractClient,
        session_factory: async_sessionmaker[AsyncSession],
        resolver: MetadataResolver | None = None,
    ):
        self.settings = settings
        self.chain = chain
        self.session_factory = session_factory
        self.uow_factory = create_uow_factory(session_factory)

        self.resolver = resolver or MetadataResolver(
            chain=chain,
            gateway_url=settings.metadata_gateway_url,
            timeout=settings.metadata_fetch_timeout_seconds,
        )
        self.retry_queue = RetryQueue(self.uow_factory, RetryPolicy.from_settings(settings))
        self.pipeline = IndexingPipeline(self.resolver, self.uow_factory, self.retry_queue)
        self.sweep = ReconciliationSweep.from_settings(
            settings, chain, self.pipeline, self.uow_factory, self.retry_queue
        )

        self.dispatch_queue: asyncio.Queue[MintTransfer] = asyncio.Queue()
        self.listener = MintEventListener(
            chain=chain,
            uow_factory=self.uow_factory,
            dispatch_queue=self.dispatch_queue,
            log_batch_size=settings.log_batch_size,
        )

        self.shutdown_event = asyncio.Event()
        self.tasks: dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "IndexerRuntime":
        """Build the runtime with a real RPC connection and database pool."""
        chain = MidiContractClient.from_settings(settings)
        session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
        return cls(settings=settings, chain=chain, session_factory=session_factory)

    def start(self) -> None:
        """Start listener, dispatcher, queue drain and reconciliation workers."""
        settings = self.settings
        self.shutdown_event.clear()

        workers: dict[str, Callable[[], Awaitable[Any]]] = {
            "event_listener": lambda: run_event_listener(
                self.listener, settings.listener_poll_interval_seconds
            ),
            "mint_dispatcher": lambda: run_mint_dispatcher(self.dispatch_queue, self.pipeline),
            "queue_drain": lambda: run_queue_drain_worker(
                self.pipeline,
                self.retry_queue,
                settings.queue_drain_interval_seconds,
                settings.queue_drain_batch_size,
            ),
            "reconciliation": lambda: run_reconciliation_worker(
                self.sweep,
                settings.reconcile_interval_seconds,
                settings.reconcile_on_startup,
            ),
        }

        for name, coro_factory in workers.items():
            create_resilient_worker(coro_factory, name, self.shutdown_event, self.tasks)

        logger.info("runtime.started", workers=list(workers))

    async def stop(self) -> None:
        """Cancel workers and release HTTP and database resources."""
        logger.info("runtime.stopping")
        self.shutdown_event.set()

        tasks = list(self.tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.tasks.clear()

        await self.resolver.aclose()
        engine = self.session_factory.kw.get("bind")
        if engine is not None:
            await engine.dispose()

        logger.info("runtime.stopped")
