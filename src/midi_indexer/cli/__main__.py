"""CLI entry point for midi_indexer.cli module.

Enables execution via: python -m midi_indexer.cli
"""

from midi_indexer.cli.reconcile import main

if __name__ == "__main__":
    main()
