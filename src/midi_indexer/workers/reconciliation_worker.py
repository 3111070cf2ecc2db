"""Reconciliation worker: runs the sweep on a long fixed period."""

import asyncio

import structlog

from midi_indexer.services.reconciliation import ReconciliationSweep

logger = structlog.get_logger(__name__)


async def run_reconciliation_worker(
    sweep: ReconciliationSweep,
    interval_seconds: float,
    run_on_startup: bool = True,
) -> None:
    """Main sweep loop.

    A failed sweep is logged and the next one happens on schedule; the period is
    long enough that there is no point retrying sooner.

    Args:
        sweep: Configured ReconciliationSweep
        interval_seconds: Period between sweeps
        run_on_startup: Sweep once immediately instead of waiting a full period
    """
    logger.info(
        "worker.started",
        worker_type="reconciliation",
        interval_seconds=interval_seconds,
        run_on_startup=run_on_startup,
    )

    first = True
    try:
        while True:
            if not (first and run_on_startup):
                await asyncio.sleep(interval_seconds)
            first = False

            try:
                await sweep.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "worker.error",
                    worker_type="reconciliation",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker_type="reconciliation")
        raise
