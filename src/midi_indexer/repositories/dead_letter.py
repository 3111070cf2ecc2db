"""DeadLetter repository."""

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from midi_indexer.core.database import dialect_insert
from midi_indexer.core.timezone import utc_now
from midi_indexer.models.dead_letter import DeadLetter


class DeadLetterRepository:
    """Repository for DeadLetter entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, token_id: int) -> DeadLetter | None:
        result = await self.session.execute(select(DeadLetter).where(DeadLetter.id == token_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def record(self, token_id: int, reason: str) -> None:
        """Record a sighting of an unattributable id (UPSERT).

        The first sighting creates the row; later ones bump ``sightings`` and
        ``last_seen_at`` while ``first_seen_at`` is preserved.
        """
        now = utc_now()
        stmt = dialect_insert(self.session, DeadLetter).values(
            id=token_id,
            reason=reason,
            sightings=1,
            first_seen_at=now,
            last_seen_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "reason": reason,
                "sightings": DeadLetter.__table__.c.sightings + 1,  # type: ignore[attr-defined]
                "last_seen_at": now,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def get_ids_seen_since(self, since: datetime) -> set[int]:
        """Return ids last seen after ``since`` (not yet due for a revisit)."""
        result = await self.session.execute(
            select(DeadLetter.id).where(DeadLetter.last_seen_at > since)  # type: ignore[arg-type]
        )
        return set(result.scalars().all())

    async def delete(self, token_id: int) -> bool:
        """Delete the dead letter for a token (idempotent)."""
        result = await self.session.execute(delete(DeadLetter).where(DeadLetter.id == token_id))  # type: ignore[arg-type]
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(DeadLetter))
        return result.scalar() or 0
