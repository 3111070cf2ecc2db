"""QueueEntry repository.

Retry queue persistence keyed by token id. Enqueue is an UPSERT, so repeated
failures for the same token collapse into one row with a growing attempt count.
"""

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from midi_indexer.core.database import dialect_insert
from midi_indexer.core.timezone import utc_now
from midi_indexer.models.queue_entry import QueueEntry

MAX_ERROR_LENGTH = 1000


class QueueRepository:
    """Repository for QueueEntry entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, token_id: int) -> QueueEntry | None:
        """Retrieve the queue entry for a token, if any."""
        result = await self.session.execute(select(QueueEntry).where(QueueEntry.id == token_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def upsert(self, token_id: int, error: str, operator: str) -> None:
        """Create a queue entry or register another failure on the existing one.

        Query explanation:
        - INSERT: new entry with attempts=0, due immediately
        - ON CONFLICT (id): entry for this token already queued
        - DO UPDATE: attempts + 1, latest error and operator

        Args:
            token_id: On-chain token id
            error: Error message of the failed attempt (truncated to 1000 characters)
            operator: Minting operator address to retry with
        """
        now = utc_now()
        error = error[:MAX_ERROR_LENGTH]
        stmt = dialect_insert(self.session, QueueEntry).values(
            id=token_id,
            operator=operator,
            error=error,
            attempts=0,
            next_attempt_at=now,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "operator": operator,
                "error": error,
                "attempts": QueueEntry.__table__.c.attempts + 1,  # type: ignore[attr-defined]
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def get_due(
        self, limit: int, now: datetime, max_attempts: int | None = None
    ) -> list[QueueEntry]:
        """Retrieve entries whose backoff window has elapsed, oldest first.

        Args:
            limit: Maximum number of entries to return
            now: Reference time for ``next_attempt_at``
            max_attempts: Entries with this many attempts or more are parked and skipped

        Returns:
            Entries ordered by created_at, then id
        """
        stmt = select(QueueEntry).where(QueueEntry.next_attempt_at <= now)  # type: ignore[arg-type]
        if max_attempts is not None:
            stmt = stmt.where(QueueEntry.attempts < max_attempts)  # type: ignore[arg-type]
        stmt = stmt.order_by(QueueEntry.created_at.asc(), QueueEntry.id.asc()).limit(limit)  # type: ignore[attr-defined]
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_ids(self, limit: int) -> set[int]:
        """Return ids of queued tokens (parked entries included), oldest first."""
        result = await self.session.execute(
            select(QueueEntry.id)  # type: ignore[arg-type]
            .order_by(QueueEntry.created_at.asc(), QueueEntry.id.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return set(result.scalars().all())

    async def record_failure(
        self, token_id: int, attempts: int, error: str, next_attempt_at: datetime
    ) -> bool:
        """Store the outcome of a failed retry.

        Returns:
            True if the entry existed and was updated
        """
        result = await self.session.execute(
            update(QueueEntry)
            .where(QueueEntry.id == token_id)  # type: ignore[arg-type]
            .values(
                attempts=attempts,
                error=error[:MAX_ERROR_LENGTH],
                next_attempt_at=next_attempt_at,
                updated_at=utc_now(),
            )
        )
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def delete(self, token_id: int) -> bool:
        """Delete the entry for a token (idempotent).

        Returns:
            True if an entry was deleted, False if none existed
        """
        result = await self.session.execute(delete(QueueEntry).where(QueueEntry.id == token_id))  # type: ignore[arg-type]
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def count(self, min_attempts: int | None = None) -> int:
        """Count queue entries, optionally only those with at least ``min_attempts``."""
        stmt = select(func.count()).select_from(QueueEntry)
        if min_attempts is not None:
            stmt = stmt.where(QueueEntry.attempts >= min_attempts)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return result.scalar() or 0
