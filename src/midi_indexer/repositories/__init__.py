"""Repository layer for the MIDI indexer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from midi_indexer.repositories.dead_letter import DeadLetterRepository
from midi_indexer.repositories.device import DeviceRepository
from midi_indexer.repositories.midi import MidiTokenRepository
from midi_indexer.repositories.queue import QueueRepository
from midi_indexer.repositories.system_state import SystemStateRepository

__all__ = [
    "DeadLetterRepository",
    "DeviceRepository",
    "MidiTokenRepository",
    "QueueRepository",
    "SystemStateRepository",
]
