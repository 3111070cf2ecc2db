"""Indexing pipeline: resolve metadata, persist the token, route failures.

``index_by_id`` is the single path used by the live listener, the queue drain and
the reconciliation sweep. It is safe to run concurrently for the same id: every
write underneath is an idempotent upsert.
"""

from typing import Awaitable, Callable

import structlog

from midi_indexer.models.queue_entry import QueueEntry
from midi_indexer.services.exceptions import IndexingError, RecordIndexError
from midi_indexer.services.indexing.record_indexer import RecordIndexer
from midi_indexer.services.metadata.resolver import MetadataResolver
from midi_indexer.services.retry_queue import RetryQueue
from midi_indexer.uow import UnitOfWork

logger = structlog.get_logger()


def describe_error(error: Exception) -> str:
    """Error message stored on queue entries."""
    if isinstance(error, IndexingError):
        return str(error)
    return f"{type(error).__name__}: {error}"


class IndexingPipeline:
    """Resolver -> record indexer, with failures converted into queue entries."""

    def __init__(
        self,
        resolver: MetadataResolver,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        retry_queue: RetryQueue,
        record_indexer: RecordIndexer | None = None,
    ):
        self.resolver = resolver
        self.uow_factory = uow_factory
        self.retry_queue = retry_queue
        self.record_indexer = record_indexer or RecordIndexer()

    async def index_by_id(self, token_id: int, operator: str) -> bool:
        """Resolve and persist one token.

        Metadata is fetched before the database transaction opens. The token
        write and the removal of any queue entry or dead letter for the id share
        one transaction.

        Args:
            token_id: On-chain token id
            operator: Minting operator address, stored as the token's creator

        Returns:
            True if the token row was created, False if it was already indexed

        Raises:
            ResolutionError: Metadata fetch/parse failed
            RecordIndexError: Device/token persistence failed
            Exception: Opaque chain or database errors propagate unchanged
        """
        metadata = await self.resolver.resolve(token_id)

        async with await self.uow_factory() as uow:
            created = await self.record_indexer.index(uow, token_id, metadata, operator)
            dequeued = await uow.queue.delete(token_id)
            await uow.dead_letters.delete(token_id)

        logger.info(
            "pipeline.indexed",
            token_id=token_id,
            operator=operator,
            created=created,
            dequeued=dequeued,
        )
        return created

    async def index_or_enqueue(self, token_id: int, operator: str) -> bool:
        """Index a token; on any failure record it in the retry queue.

        Returns:
            True if indexing succeeded, False if the token was queued

        Raises:
            Exception: Only if writing the queue entry itself fails
        """
        try:
            await self.index_by_id(token_id, operator)
            return True
        except Exception as e:
            error = describe_error(e)
            logger.warning(
                "pipeline.index_failed",
                token_id=token_id,
                operator=operator,
                error=error,
                error_type=type(e).__name__,
                malformed_upstream=isinstance(e, RecordIndexError) and e.is_malformed_upstream,
            )
            await self.retry_queue.enqueue(token_id, error, operator)
            return False

    async def retry(self, entry: QueueEntry) -> bool:
        """Re-attempt a queued token with its stored operator.

        On success the queue entry is deleted inside ``index_by_id``; on failure
        the entry's attempt count is incremented and its next attempt scheduled.

        Returns:
            True if indexing succeeded
        """
        try:
            await self.index_by_id(entry.id, entry.operator)
            return True
        except Exception as e:
            error = describe_error(e)
            logger.warning(
                "pipeline.retry_failed",
                token_id=entry.id,
                attempts=entry.attempts + 1,
                error=error,
                error_type=type(e).__name__,
            )
            await self.retry_queue.update(entry.id, entry.attempts + 1, error)
            return False
