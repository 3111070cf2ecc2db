"""CLI command for running one reconciliation sweep.

Usage:
    python -m midi_indexer.cli.reconcile [OPTIONS]

Examples:
    # Find and re-index missing tokens
    python -m midi_indexer.cli.reconcile

    # Only report missing token ids
    python -m midi_indexer.cli.reconcile --dry-run

    # Verbose logging
    python -m midi_indexer.cli.reconcile -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from midi_indexer.core import timezone  # noqa: F401
from midi_indexer.core.config import Settings, configure_logging
from midi_indexer.runtime import IndexerRuntime
from midi_indexer.services.exceptions import ServiceError
from midi_indexer.services.reconciliation import SweepResult

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Reconcile indexed MIDI tokens against on-chain state",
        epilog="Uses contract.currentTokenId() and the mint log to find untracked tokens",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report missing token ids without indexing them",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def print_summary(result: SweepResult, dry_run: bool) -> None:
    print("\n" + "=" * 60)
    print("Reconciliation Summary")
    print("=" * 60)
    print(f"On-chain token counter: {result.current_token_id}")
    print(f"Tokens in database: {result.total_in_db}")
    print(f"Missing (untracked) tokens: {len(result.missing_ids)}")

    if result.missing_ids:
        preview = ", ".join(str(token_id) for token_id in result.missing_ids[:20])
        if len(result.missing_ids) > 20:
            preview += ", ..."
        print(f"  ids: {preview}")

    if not dry_run:
        print(f"Indexed: {result.indexed_count}")
        print(f"Queued for retry: {result.queued_count}")
        print(f"Dead-lettered (no mint event): {len(result.dead_lettered_ids)}")

    if result.errors:
        print(f"\nErrors encountered: {len(result.errors)}")
        for error in result.errors[:5]:
            print(f"  - {error}")
        if len(result.errors) > 5:
            print(f"  ... and {len(result.errors) - 5} more errors")

    if dry_run:
        print("\n[DRY RUN] No tokens were indexed")

    print("=" * 60 + "\n")


def exit_code_for(result: SweepResult, dry_run: bool) -> int:
    """Exit code: 0 (success), 1 (failure), 2 (partial success)."""
    if dry_run or not result.missing_ids:
        return 1 if result.errors else 0
    if result.errors or result.dead_lettered_ids or result.queued_count:
        return 2 if result.indexed_count > 0 else 1
    return 0


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (partial success)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info(
        "cli.started",
        dry_run=args.dry_run,
        contract_address=settings.midi_contract_address,
    )

    runtime = IndexerRuntime.from_settings(settings)

    try:
        result = await runtime.sweep.run_once(dry_run=args.dry_run)
        print_summary(result, args.dry_run)
        return exit_code_for(result, args.dry_run)

    except ServiceError as e:
        logger.error("cli.sweep_error", error=str(e), error_type=type(e).__name__)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nReconciliation interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    finally:
        await runtime.stop()


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
