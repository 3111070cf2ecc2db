"""Unit of Work and key-value state tests.

Tests cover:
- Commit on clean exit, rollback on exception
- Token write and queue removal commit or roll back together
- SystemState UPSERT and block cursor helpers
"""

import pytest
from sqlalchemy import DateTime
from sqlmodel import SQLModel

from midi_indexer import models  # noqa: F401
from midi_indexer.core.timezone import utc_now

OPERATOR = "0x1234567890123456789012345678901234567890"


@pytest.mark.asyncio
async def test_uow_commits_on_success(uow_factory):
    async with await uow_factory() as uow:
        await uow.devices.get_or_create("TR-909", "Roland")

    async with await uow_factory() as uow:
        assert await uow.devices.get_by_name("TR-909") is not None


@pytest.mark.asyncio
async def test_uow_rolls_back_on_exception(uow_factory):
    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            await uow.devices.get_or_create("TR-909", "Roland")
            raise RuntimeError("abort")

    async with await uow_factory() as uow:
        assert await uow.devices.count() == 0


@pytest.mark.asyncio
async def test_token_write_and_dequeue_are_atomic(uow_factory):
    """Test that a failed transaction keeps the queue entry.

    Scenario:
    1. Token 1 is queued
    2. One transaction writes device + token, deletes the entry, then fails
    3. Nothing was written and the entry is still queued
    """
    async with await uow_factory() as uow:
        await uow.queue.upsert(1, "fetch-failed", OPERATOR)

    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            device = await uow.devices.get_or_create("TR-909", "Roland")
            await uow.midi.create(1, {"properties": {"device": "TR-909"}}, device.id, OPERATOR)
            await uow.queue.delete(1)
            raise RuntimeError("commit interrupted")

    async with await uow_factory() as uow:
        assert await uow.midi.count() == 0
        assert await uow.devices.count() == 0
        assert await uow.queue.get_by_id(1) is not None


@pytest.mark.asyncio
async def test_system_state_upsert(uow_factory):
    async with await uow_factory() as uow:
        assert await uow.system_state.get_state("last_processed_block") is None
        await uow.system_state.set_state("last_processed_block", 10)

    async with await uow_factory() as uow:
        await uow.system_state.set_state("last_processed_block", 20)

    async with await uow_factory() as uow:
        assert await uow.system_state.get_last_processed_block() == 20


@pytest.mark.asyncio
async def test_dead_letter_sightings(uow_factory):
    async with await uow_factory() as uow:
        await uow.dead_letters.record(4, "no-mint-event")
    async with await uow_factory() as uow:
        await uow.dead_letters.record(4, "no-mint-event")

    async with await uow_factory() as uow:
        dead_letter = await uow.dead_letters.get_by_id(4)

    assert dead_letter.sightings == 2
    assert dead_letter.last_seen_at >= dead_letter.first_seen_at


def test_timestamp_columns_are_naive_datetimes():
    """Timestamps are stored as naive UTC; columns must accept naive binds."""
    for table in SQLModel.metadata.sorted_tables:
        for column in table.columns:
            if column.name.endswith("_at"):
                assert type(column.type) is DateTime, f"{table.name}.{column.name}"
                assert column.type.timezone is False


@pytest.mark.asyncio
async def test_naive_timestamps_round_trip(uow_factory):
    before = utc_now()
    async with await uow_factory() as uow:
        await uow.queue.upsert(1, "fetch-failed", OPERATOR)
        await uow.system_state.set_last_processed_block(5)
    after = utc_now()

    async with await uow_factory() as uow:
        entry = await uow.queue.get_by_id(1)

    assert entry.created_at.tzinfo is None
    assert before <= entry.created_at <= after
    assert entry.next_attempt_at == entry.created_at
