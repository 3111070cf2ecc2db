"""Background workers for the indexing pipeline."""

from midi_indexer.workers.event_listener import (
    MintEventListener,
    run_event_listener,
    run_mint_dispatcher,
)
from midi_indexer.workers.queue_drain_worker import drain_queue_once, run_queue_drain_worker
from midi_indexer.workers.reconciliation_worker import run_reconciliation_worker

__all__ = [
    "MintEventListener",
    "drain_queue_once",
    "run_event_listener",
    "run_mint_dispatcher",
    "run_queue_drain_worker",
    "run_reconciliation_worker",
]
