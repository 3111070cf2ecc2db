"""SystemState repository.

Provides data access methods for the SystemState key-value store.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from midi_indexer.core.database import dialect_insert
from midi_indexer.core.timezone import utc_now
from midi_indexer.models.system_state import SystemState

LAST_PROCESSED_BLOCK = "last_processed_block"


class SystemStateRepository:
    """Repository for SystemState key-value store.

    Provides UPSERT behavior (INSERT ... ON CONFLICT DO UPDATE) for setting state.
    State values are stored as JSON and automatically serialized/deserialized.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_state(self, key: str) -> Any | None:
        """Retrieve state value for a key.

        Args:
            key: State key (e.g., "last_processed_block")

        Returns:
            Deserialized state value if found, None otherwise
        """
        result = await self.session.execute(select(SystemState).where(SystemState.key == key))  # type: ignore[arg-type]
        state = result.scalar_one_or_none()
        return state.state_value if state else None

    async def set_state(self, key: str, value: Any) -> None:
        """Set state value for a key (UPSERT).

        Args:
            key: State key (alphanumeric + underscores only)
            value: State value (must be JSON-serializable)
        """
        now = utc_now()
        stmt = dialect_insert(self.session, SystemState).values(
            key=key,
            state_value=value,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"state_value": value, "updated_at": now},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def get_last_processed_block(self) -> int | None:
        """Return the mint listener's block cursor, or None before the first poll."""
        value = await self.get_state(LAST_PROCESSED_BLOCK)
        return None if value is None else int(value)

    async def set_last_processed_block(self, block_number: int) -> None:
        await self.set_state(LAST_PROCESSED_BLOCK, block_number)
