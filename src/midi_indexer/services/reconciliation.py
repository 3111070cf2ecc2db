"""Reconciliation sweep: detect and repair drift between chain and database.

This module provides the ReconciliationSweep which:
1. Queries contract.currentTokenId() to determine the expected id range [1, current]
2. Skips the run when the indexed token count already matches
3. Subtracts indexed ids, queued ids and recently dead-lettered ids
4. Finds each remaining id's minting operator in the historical mint log
5. Drives indexing for ids with a minter; dead-letters ids without one
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, Iterable, Protocol

import structlog

from midi_indexer.core.config import Settings
from midi_indexer.core.timezone import utc_now
from midi_indexer.services.indexing.pipeline import IndexingPipeline
from midi_indexer.services.retry_queue import RetryQueue
from midi_indexer.uow import UnitOfWork

logger = structlog.get_logger()

NO_MINT_EVENT = "no-mint-event"


class MintHistory(Protocol):
    async def current_token_id(self) -> int: ...

    async def fetch_mint_operators(
        self, from_block: int, batch_size: int = 1000
    ) -> dict[int, str]: ...


@dataclass
class SweepResult:
    """Result of a reconciliation sweep."""

    current_token_id: int  # Value from currentTokenId()
    total_in_db: int  # Indexed tokens before the sweep
    missing_ids: list[int] = field(default_factory=list)  # Untracked ids found
    indexed_count: int = 0  # Missing ids indexed successfully
    queued_count: int = 0  # Missing ids that failed and went to the retry queue
    dead_lettered_ids: list[int] = field(default_factory=list)  # No mint event found
    errors: list[str] = field(default_factory=list)  # Non-fatal errors

    @property
    def in_sync(self) -> bool:
        return self.current_token_id == self.total_in_db


def compute_missing(
    current_token_id: int,
    indexed_ids: Iterable[int],
    tracked_ids: Iterable[int],
) -> list[int]:
    """Return ids in ``[1, current_token_id]`` that are neither indexed nor tracked.

    Example:
        >>> compute_missing(5, [1, 3], [4])
        [2, 5]
    """
    known = set(indexed_ids) | set(tracked_ids)
    return [token_id for token_id in range(1, current_token_id + 1) if token_id not in known]


class ReconciliationSweep:
    """Periodic full-range audit of on-chain tokens against the database."""

    def __init__(
        self,
        chain: MintHistory,
        pipeline: IndexingPipeline,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        retry_queue: RetryQueue,
        queue_fetch_limit: int = 1000,
        mint_scan_start_block: int = 0,
        log_batch_size: int = 1000,
        dead_letter_revisit: timedelta = timedelta(days=7),
    ):
        """Initialize the sweep.

        Args:
            chain: MIDI contract client (counter + mint history)
            pipeline: Indexing pipeline used to re-drive missing ids
            uow_factory: Unit of Work factory
            retry_queue: Retry queue, consulted for already-tracked ids
            queue_fetch_limit: Maximum number of queued ids considered tracked
            mint_scan_start_block: First block of the historical mint log scan
            log_batch_size: Blocks per eth_getLogs request
            dead_letter_revisit: Minimum delay before a dead-lettered id is retried
        """
        self.chain = chain
        self.pipeline = pipeline
        self.uow_factory = uow_factory
        self.retry_queue = retry_queue
        self.queue_fetch_limit = queue_fetch_limit
        self.mint_scan_start_block = mint_scan_start_block
        self.log_batch_size = log_batch_size
        self.dead_letter_revisit = dead_letter_revisit

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        chain: MintHistory,
        pipeline: IndexingPipeline,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        retry_queue: RetryQueue,
    ) -> "ReconciliationSweep":
        return cls(
            chain=chain,
            pipeline=pipeline,
            uow_factory=uow_factory,
            retry_queue=retry_queue,
            queue_fetch_limit=settings.reconcile_queue_fetch_limit,
            mint_scan_start_block=settings.mint_scan_start_block,
            log_batch_size=settings.log_batch_size,
            dead_letter_revisit=timedelta(seconds=settings.dead_letter_revisit_seconds),
        )

    async def find_missing(self) -> SweepResult:
        """Compute the set of untracked on-chain ids without acting on them."""
        current_token_id = await self.chain.current_token_id()

        async with await self.uow_factory() as uow:
            total_in_db = await uow.midi.count()
            result = SweepResult(current_token_id=current_token_id, total_in_db=total_in_db)

            if result.in_sync:
                return result

            indexed_ids = await uow.midi.list_ids()
            deferred_ids = await uow.dead_letters.get_ids_seen_since(
                utc_now() - self.dead_letter_revisit
            )

        queued_ids = await self.retry_queue.fetch_ids(self.queue_fetch_limit)

        result.missing_ids = compute_missing(
            current_token_id, indexed_ids, queued_ids | deferred_ids
        )
        logger.info(
            "reconcile.drift_detected",
            current_token_id=current_token_id,
            total_in_db=total_in_db,
            queued=len(queued_ids),
            deferred_dead_letters=len(deferred_ids),
            missing_count=len(result.missing_ids),
        )
        return result

    async def run_once(self, dry_run: bool = False) -> SweepResult:
        """Run one sweep.

        Args:
            dry_run: Only compute missing ids; do not index or dead-letter anything

        Returns:
            SweepResult with statistics and details

        Raises:
            BlockchainConnectionError: Reading the token counter failed
        """
        start_time = utc_now()
        result = await self.find_missing()

        if result.in_sync:
            logger.info("reconcile.in_sync", current_token_id=result.current_token_id)
            return result

        if not result.missing_ids or dry_run:
            logger.info(
                "reconcile.nothing_to_drive",
                missing_count=len(result.missing_ids),
                dry_run=dry_run,
            )
            return result

        try:
            operators = await self.chain.fetch_mint_operators(
                self.mint_scan_start_block, self.log_batch_size
            )
        except Exception as e:
            result.errors.append(f"Failed to scan mint history: {e}")
            logger.error(
                "reconcile.mint_history_failed",
                error=str(e),
                error_type=type(e).__name__,
                from_block=self.mint_scan_start_block,
            )
            return result

        for token_id in result.missing_ids:
            operator = operators.get(token_id)

            try:
                if operator is None:
                    async with await self.uow_factory() as uow:
                        await uow.dead_letters.record(token_id, NO_MINT_EVENT)
                    result.dead_lettered_ids.append(token_id)
                    logger.error(
                        "reconcile.minter_not_found",
                        token_id=token_id,
                        from_block=self.mint_scan_start_block,
                    )
                    continue

                if await self.pipeline.index_or_enqueue(token_id, operator):
                    result.indexed_count += 1
                else:
                    result.queued_count += 1

            except Exception as e:
                # Keep sweeping the remaining ids
                result.errors.append(f"Failed to reconcile token {token_id}: {e}")
                logger.error(
                    "reconcile.token_error",
                    token_id=token_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        duration = (utc_now() - start_time).total_seconds()
        logger.info(
            "reconcile.completed",
            current_token_id=result.current_token_id,
            total_in_db=result.total_in_db,
            missing_count=len(result.missing_ids),
            indexed_count=result.indexed_count,
            queued_count=result.queued_count,
            dead_lettered=len(result.dead_lettered_ids),
            error_count=len(result.errors),
            duration_seconds=duration,
        )
        return result
