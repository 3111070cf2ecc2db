"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from midi_indexer.models.dead_letter import DeadLetter
from midi_indexer.models.device import Device
from midi_indexer.models.midi import MidiToken
from midi_indexer.models.queue_entry import QueueEntry
from midi_indexer.models.system_state import SystemState

__all__ = [
    "DeadLetter",
    "Device",
    "MidiToken",
    "QueueEntry",
    "SystemState",
]
