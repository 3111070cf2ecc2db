"""Retry queue manager.

Durable store of failed indexing attempts. Each operation runs in its own unit of
work so queue bookkeeping survives the failure of the indexing transaction that
triggered it.

Policy:
- One entry per token id; re-enqueue bumps ``attempts`` instead of duplicating.
- After a failed retry the entry waits ``base * 2**(attempts-1)`` seconds (capped).
- Entries reaching ``max_attempts`` are parked: still tracked (the sweep skips
  them) but no longer handed out by ``fetch_batch``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable

import structlog

from midi_indexer.core.config import Settings
from midi_indexer.core.timezone import utc_now
from midi_indexer.models.queue_entry import QueueEntry
from midi_indexer.uow import UnitOfWork

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff and attempt cap for queued tokens."""

    max_attempts: int = 10
    backoff_base_seconds: int = 300
    backoff_max_seconds: int = 21600

    def backoff(self, attempts: int) -> timedelta:
        """Delay before the next retry after ``attempts`` failed retries."""
        if attempts <= 0:
            return timedelta(0)
        seconds = self.backoff_base_seconds * 2 ** (attempts - 1)
        return timedelta(seconds=min(seconds, self.backoff_max_seconds))

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.queue_max_attempts,
            backoff_base_seconds=settings.queue_backoff_base_seconds,
            backoff_max_seconds=settings.queue_backoff_max_seconds,
        )


class RetryQueue:
    """Retry queue operations on top of the queue table."""

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        policy: RetryPolicy | None = None,
    ):
        self.uow_factory = uow_factory
        self.policy = policy or RetryPolicy()

    async def enqueue(self, token_id: int, error: str, operator: str) -> None:
        """Record a failed indexing attempt (UPSERT on token id).

        A new entry starts with attempts=0 and is due immediately; an existing
        entry gets attempts + 1 and the latest error.
        """
        async with await self.uow_factory() as uow:
            await uow.queue.upsert(token_id, error, operator)

        logger.info("queue.enqueued", token_id=token_id, operator=operator, error=error)

    async def fetch_batch(self, limit: int, now: datetime | None = None) -> list[QueueEntry]:
        """Return up to ``limit`` due, non-parked entries, oldest first."""
        async with await self.uow_factory() as uow:
            return await uow.queue.get_due(
                limit=limit,
                now=now or utc_now(),
                max_attempts=self.policy.max_attempts,
            )

    async def update(self, token_id: int, attempts: int, error: str) -> None:
        """Record a failed retry and schedule the next one.

        Args:
            token_id: Queued token id
            attempts: New attempt count (previous count + 1)
            error: Latest error message
        """
        next_attempt_at = utc_now() + self.policy.backoff(attempts)

        async with await self.uow_factory() as uow:
            updated = await uow.queue.record_failure(token_id, attempts, error, next_attempt_at)

        if not updated:
            logger.warning("queue.update_missing_entry", token_id=token_id, attempts=attempts)
            return

        if self.policy.is_exhausted(attempts):
            logger.warning(
                "queue.entry_parked",
                token_id=token_id,
                attempts=attempts,
                max_attempts=self.policy.max_attempts,
                error=error,
            )
        else:
            logger.info(
                "queue.retry_scheduled",
                token_id=token_id,
                attempts=attempts,
                next_attempt_at=next_attempt_at.isoformat(),
            )

    async def fetch_ids(self, limit: int) -> set[int]:
        """Return ids already tracked by the queue (parked entries included)."""
        async with await self.uow_factory() as uow:
            return await uow.queue.get_ids(limit)

    async def remove(self, token_id: int) -> bool:
        async with await self.uow_factory() as uow:
            removed = await uow.queue.delete(token_id)

        if removed:
            logger.info("queue.removed", token_id=token_id)
        return removed
