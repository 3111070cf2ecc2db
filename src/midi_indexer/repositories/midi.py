"""MidiToken repository.

Provides the idempotent token write and the id queries used by reconciliation.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from midi_indexer.core.database import dialect_insert
from midi_indexer.core.timezone import utc_now
from midi_indexer.models.midi import MidiToken


class MidiTokenRepository:
    """Repository for MidiToken entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, token_id: int) -> MidiToken | None:
        """Retrieve token by on-chain token id.

        Args:
            token_id: On-chain token id

        Returns:
            MidiToken if indexed, None otherwise
        """
        result = await self.session.execute(select(MidiToken).where(MidiToken.id == token_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def create(
        self,
        token_id: int,
        metadata: dict,
        device_id: int,
        created_by: str,
    ) -> bool:
        """Insert the token record unless one already exists for ``token_id``.

        INSERT ... ON CONFLICT (id) DO NOTHING: token records are never mutated,
        so a second write for the same id (live event racing the drain or the
        sweep) leaves the first one in place.

        Args:
            token_id: On-chain token id (primary key)
            metadata: Resolved metadata document
            device_id: Referenced device row
            created_by: Minting operator address

        Returns:
            True if a row was inserted, False if the token was already indexed
        """
        stmt = dialect_insert(self.session, MidiToken).values(
            id=token_id,
            token_metadata=metadata,
            device_id=device_id,
            created_by=created_by,
            created_at=utc_now(),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
        result = await self.session.execute(stmt)
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def list_ids(self) -> list[int]:
        """Return all indexed token ids in ascending order."""
        result = await self.session.execute(select(MidiToken.id).order_by(MidiToken.id.asc()))  # type: ignore[attr-defined]
        return list(result.scalars().all())

    async def count(self) -> int:
        """Return the number of indexed tokens."""
        result = await self.session.execute(select(func.count()).select_from(MidiToken))
        return result.scalar() or 0
