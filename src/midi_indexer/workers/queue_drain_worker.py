"""Queue drain worker.

Every QUEUE_DRAIN_INTERVAL_MS pulls a bounded batch of due entries from the retry
queue and re-attempts them one after another. Sequential processing bounds the
load one tick puts on the metadata gateway and the database.
"""

import asyncio
from dataclasses import dataclass

import structlog

from midi_indexer.services.indexing.pipeline import IndexingPipeline
from midi_indexer.services.retry_queue import RetryQueue

logger = structlog.get_logger(__name__)

ERROR_BACKOFF_SECONDS = 5


@dataclass
class DrainResult:
    """Outcome of one drain tick."""

    fetched: int = 0
    succeeded: int = 0
    failed: int = 0


async def drain_queue_once(
    pipeline: IndexingPipeline,
    retry_queue: RetryQueue,
    batch_size: int = 10,
) -> DrainResult:
    """Retry one batch of queued tokens sequentially.

    Args:
        pipeline: Indexing pipeline
        retry_queue: Queue to fetch due entries from
        batch_size: Maximum entries per tick

    Returns:
        DrainResult with counts for the tick
    """
    entries = await retry_queue.fetch_batch(batch_size)
    result = DrainResult(fetched=len(entries))

    for entry in entries:
        try:
            succeeded = await pipeline.retry(entry)
        except Exception as e:
            # Recording the failed retry itself failed; move on to the next entry
            logger.error(
                "queue_drain.entry_error",
                token_id=entry.id,
                attempts=entry.attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            succeeded = False

        if succeeded:
            result.succeeded += 1
        else:
            result.failed += 1

    if entries:
        logger.info(
            "queue_drain.tick",
            fetched=result.fetched,
            succeeded=result.succeeded,
            failed=result.failed,
        )
    return result


async def run_queue_drain_worker(
    pipeline: IndexingPipeline,
    retry_queue: RetryQueue,
    interval_seconds: float,
    batch_size: int = 10,
) -> None:
    """Main drain loop: wait one period, drain one batch, repeat.

    Args:
        pipeline: Indexing pipeline
        retry_queue: Retry queue manager
        interval_seconds: Period between ticks
        batch_size: Entries per tick
    """
    logger.info(
        "worker.started",
        worker_type="queue_drain",
        interval_seconds=interval_seconds,
        batch_size=batch_size,
    )

    try:
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await drain_queue_once(pipeline, retry_queue, batch_size)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker_type="queue_drain",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker_type="queue_drain")
        raise
