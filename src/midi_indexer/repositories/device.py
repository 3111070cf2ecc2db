"""Device repository.

Provides lookup by name and an atomic create-if-absent.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from midi_indexer.core.database import dialect_insert
from midi_indexer.core.timezone import utc_now
from midi_indexer.models.device import Device


class DeviceRepository:
    """Repository for Device entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_name(self, name: str) -> Device | None:
        """Retrieve device by exact (case-sensitive) name.

        Args:
            name: Device name as found in metadata ``properties.device``

        Returns:
            Device if found, None otherwise
        """
        result = await self.session.execute(select(Device).where(Device.name == name))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_or_create(self, name: str, manufacturer: str = "") -> Device:
        """Return the device with ``name``, creating it if it does not exist.

        Uses INSERT ... ON CONFLICT (name) DO NOTHING followed by a SELECT, so two
        concurrent indexers racing on a new device name both end up with the same
        row instead of one of them hitting a unique violation.

        Args:
            name: Device name (unique)
            manufacturer: Manufacturer, only used when the row is created

        Returns:
            The existing or newly created device
        """
        stmt = dialect_insert(self.session, Device).values(
            name=name,
            manufacturer=manufacturer,
            created_at=utc_now(),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["name"])
        await self.session.execute(stmt)

        device = await self.get_by_name(name)
        if device is None:
            raise LookupError(f"Device {name!r} missing after insert")
        return device

    async def count(self) -> int:
        """Return total number of devices."""
        result = await self.session.execute(select(func.count()).select_from(Device))
        return result.scalar() or 0
