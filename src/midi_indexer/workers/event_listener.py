"""Mint event listener and dispatcher.

The listener polls ``TransferSingle`` logs from the last processed block to the
chain head and puts mint transfers on an in-process queue. It never indexes
anything itself, so a slow metadata gateway cannot hold up event intake.

A single dispatcher task consumes that queue and runs each mint through
``IndexingPipeline.index_or_enqueue``; failures end up in the retry queue.
"""

import asyncio
from typing import Awaitable, Callable, Protocol

import structlog

from midi_indexer.services.blockchain.midi_contract import MintTransfer, is_mint
from midi_indexer.services.indexing.pipeline import IndexingPipeline
from midi_indexer.uow import UnitOfWork

logger = structlog.get_logger(__name__)

ERROR_BACKOFF_SECONDS = 5


class MintLogSource(Protocol):
    async def get_block_number(self) -> int: ...

    async def fetch_mint_transfers(
        self, from_block: int, to_block: int, batch_size: int = 1000
    ) -> list[MintTransfer]: ...


class MintEventListener:
    """Turns new mint logs into dispatch queue items."""

    def __init__(
        self,
        chain: MintLogSource,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        dispatch_queue: "asyncio.Queue[MintTransfer]",
        log_batch_size: int = 1000,
    ):
        self.chain = chain
        self.uow_factory = uow_factory
        self.dispatch_queue = dispatch_queue
        self.log_batch_size = log_batch_size

    def handle_transfer(self, transfer: MintTransfer) -> bool:
        """Queue a transfer for indexing if it is a mint.

        Returns:
            True if the transfer was queued
        """
        if not is_mint(transfer):
            logger.debug(
                "listener.non_mint_ignored",
                token_id=transfer.token_id,
                from_address=transfer.from_address,
                tx_hash=transfer.tx_hash,
            )
            return False

        logger.info(
            "listener.mint_detected",
            token_id=transfer.token_id,
            operator=transfer.operator,
            to_address=transfer.to_address,
            block_number=transfer.block_number,
            tx_hash=transfer.tx_hash,
        )
        self.dispatch_queue.put_nowait(transfer)
        return True

    async def poll_once(self) -> int:
        """Fetch mint logs since the stored cursor and queue them.

        On the very first poll the cursor is initialized at the current head;
        anything minted before that is picked up by the reconciliation sweep.

        Returns:
            Number of transfers queued for indexing
        """
        head = await self.chain.get_block_number()

        async with await self.uow_factory() as uow:
            cursor = await uow.system_state.get_last_processed_block()

        if cursor is None:
            async with await self.uow_factory() as uow:
                await uow.system_state.set_last_processed_block(head)
            logger.info("listener.cursor_initialized", block_number=head)
            return 0

        if head <= cursor:
            return 0

        transfers = await self.chain.fetch_mint_transfers(
            cursor + 1, head, batch_size=self.log_batch_size
        )
        queued = sum(1 for transfer in transfers if self.handle_transfer(transfer))

        async with await self.uow_factory() as uow:
            await uow.system_state.set_last_processed_block(head)

        logger.debug(
            "listener.polled",
            from_block=cursor + 1,
            to_block=head,
            logs=len(transfers),
            queued=queued,
        )
        return queued


async def dispatch_transfer(pipeline: IndexingPipeline, transfer: MintTransfer) -> None:
    """Index one mint; never raises for a single event."""
    try:
        await pipeline.index_or_enqueue(transfer.token_id, transfer.operator)
    except Exception as e:
        # Indexing failed and so did writing the queue entry. The sweep will
        # rediscover the token.
        logger.error(
            "dispatcher.enqueue_failed",
            token_id=transfer.token_id,
            operator=transfer.operator,
            error_type=type(e).__name__,
            error_message=str(e),
        )


async def run_mint_dispatcher(
    dispatch_queue: "asyncio.Queue[MintTransfer]",
    pipeline: IndexingPipeline,
) -> None:
    """Consume the dispatch queue until cancelled."""
    logger.info("worker.started", worker_type="mint_dispatcher")

    try:
        while True:
            transfer = await dispatch_queue.get()
            try:
                await dispatch_transfer(pipeline, transfer)
            finally:
                dispatch_queue.task_done()

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker_type="mint_dispatcher")
        raise


async def run_event_listener(listener: MintEventListener, poll_interval_seconds: float) -> None:
    """Main listener loop: poll, sleep, repeat.

    Args:
        listener: Configured MintEventListener
        poll_interval_seconds: Delay between polls
    """
    logger.info(
        "worker.started",
        worker_type="event_listener",
        poll_interval=poll_interval_seconds,
    )

    try:
        while True:
            try:
                await listener.poll_once()
                await asyncio.sleep(poll_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                # RPC or database hiccup - log and retry after a short pause
                logger.error(
                    "worker.error",
                    worker_type="event_listener",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker_type="event_listener")
        raise
