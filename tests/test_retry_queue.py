"""Retry queue tests.

Tests cover:
- Enqueue UPSERT: attempts 0 on first failure, +1 on each repeat
- Exponential backoff with a cap
- Due-entry selection (oldest first, backoff respected, limit)
- Parking after max_attempts
- fetch_ids / remove bookkeeping
"""

from datetime import timedelta

import pytest

from midi_indexer.core.timezone import utc_now
from midi_indexer.services.retry_queue import RetryPolicy, RetryQueue

OPERATOR = "0x1234567890123456789012345678901234567890"
OTHER_OPERATOR = "0x9999999999999999999999999999999999999999"


def test_backoff_doubles_and_caps():
    policy = RetryPolicy(max_attempts=10, backoff_base_seconds=300, backoff_max_seconds=21600)

    assert policy.backoff(0) == timedelta(0)
    assert policy.backoff(1) == timedelta(seconds=300)
    assert policy.backoff(2) == timedelta(seconds=600)
    assert policy.backoff(3) == timedelta(seconds=1200)
    assert policy.backoff(10) == timedelta(seconds=21600)


def test_is_exhausted():
    policy = RetryPolicy(max_attempts=3)

    assert not policy.is_exhausted(2)
    assert policy.is_exhausted(3)
    assert policy.is_exhausted(4)


@pytest.mark.asyncio
async def test_enqueue_creates_entry_with_zero_attempts(retry_queue, uow_factory):
    await retry_queue.enqueue(5, "fetch-not-ok: token 5", OPERATOR)

    async with await uow_factory() as uow:
        entry = await uow.queue.get_by_id(5)

    assert entry is not None
    assert entry.attempts == 0
    assert entry.error == "fetch-not-ok: token 5"
    assert entry.operator == OPERATOR


@pytest.mark.asyncio
async def test_enqueue_existing_entry_increments_attempts(retry_queue, uow_factory):
    """Test re-enqueue of an already queued token.

    Scenario:
    1. Token 5 fails (attempts=0)
    2. Token 5 fails again with a new error and operator
    3. Still one row; attempts=1; latest error and operator stored
    """
    await retry_queue.enqueue(5, "fetch-not-ok: token 5", OPERATOR)
    await retry_queue.enqueue(5, "parse-error: token 5", OTHER_OPERATOR)

    async with await uow_factory() as uow:
        entry = await uow.queue.get_by_id(5)
        total = await uow.queue.count()

    assert total == 1
    assert entry.attempts == 1
    assert entry.error == "parse-error: token 5"
    assert entry.operator == OTHER_OPERATOR


@pytest.mark.asyncio
async def test_enqueue_truncates_long_errors(retry_queue, uow_factory):
    await retry_queue.enqueue(1, "x" * 5000, OPERATOR)

    async with await uow_factory() as uow:
        entry = await uow.queue.get_by_id(1)

    assert len(entry.error) == 1000


@pytest.mark.asyncio
async def test_fetch_batch_oldest_first_with_limit(retry_queue):
    for token_id in (5, 2, 9):
        await retry_queue.enqueue(token_id, "fetch-failed", OPERATOR)

    batch = await retry_queue.fetch_batch(2)

    assert [entry.id for entry in batch] == [5, 2]


@pytest.mark.asyncio
async def test_update_schedules_next_attempt(retry_queue, uow_factory):
    """Test that a failed retry pushes the entry out by the backoff delay.

    Scenario:
    1. Token 3 is enqueued (due immediately)
    2. update() records attempt 1 (backoff 60s with the test policy)
    3. Not due now; due two minutes from now
    """
    await retry_queue.enqueue(3, "fetch-failed", OPERATOR)
    assert [entry.id for entry in await retry_queue.fetch_batch(10)] == [3]

    await retry_queue.update(3, 1, "fetch-not-ok: token 3")

    async with await uow_factory() as uow:
        entry = await uow.queue.get_by_id(3)

    assert entry.attempts == 1
    assert entry.error == "fetch-not-ok: token 3"
    assert entry.next_attempt_at > utc_now() + timedelta(seconds=30)

    assert await retry_queue.fetch_batch(10) == []
    later = await retry_queue.fetch_batch(10, now=utc_now() + timedelta(minutes=2))
    assert [entry.id for entry in later] == [3]


@pytest.mark.asyncio
async def test_exhausted_entries_are_parked(retry_queue, uow_factory):
    """Entries at max_attempts stay tracked but are never handed out again."""
    await retry_queue.enqueue(4, "fetch-failed", OPERATOR)
    await retry_queue.update(4, 3, "fetch-failed")

    far_future = utc_now() + timedelta(days=30)
    assert await retry_queue.fetch_batch(10, now=far_future) == []
    assert await retry_queue.fetch_ids(100) == {4}

    async with await uow_factory() as uow:
        assert await uow.queue.count(min_attempts=3) == 1


@pytest.mark.asyncio
async def test_update_missing_entry_is_noop(retry_queue, uow_factory):
    await retry_queue.update(42, 1, "fetch-failed")

    async with await uow_factory() as uow:
        assert await uow.queue.count() == 0


@pytest.mark.asyncio
async def test_fetch_ids_and_remove(retry_queue):
    await retry_queue.enqueue(1, "fetch-failed", OPERATOR)
    await retry_queue.enqueue(2, "fetch-failed", OPERATOR)

    assert await retry_queue.fetch_ids(100) == {1, 2}
    assert await retry_queue.fetch_ids(1) == {1}

    assert await retry_queue.remove(1) is True
    assert await retry_queue.remove(1) is False
    assert await retry_queue.fetch_ids(100) == {2}


@pytest.mark.asyncio
async def test_default_policy(uow_factory):
    queue = RetryQueue(uow_factory)

    assert queue.policy.max_attempts == 10
    assert queue.policy.backoff(1) == timedelta(minutes=5)
