from __future__ import annotations

import pytest

from platform_sync.errors import StateStoreError
from platform_sync.resilience.checkpoints import BatchCheckpoint, CheckpointStore
from tests.helpers import make_checkpoints


@pytest.mark.asyncio
async def test_checkpoint_progress_to_completion(store, clock) -> None:
    checkpoints = make_checkpoints(store, clock)

    checkpoint = await checkpoints.create_checkpoint("job-1", "p", "remove_tracks", 100)
    assert checkpoint.progress_percentage() == 0.0
    assert not checkpoint.is_complete()

    await checkpoints.update_checkpoint(checkpoint, 50, 5, 55, "item-55", None)
    assert checkpoint.progress_percentage() == pytest.approx(55.0)
    assert not checkpoint.is_complete()

    await checkpoints.update_checkpoint(checkpoint, 90, 10, 100, "item-100", None)
    assert checkpoint.progress_percentage() == 100.0
    assert checkpoint.is_complete()


@pytest.mark.asyncio
async def test_checkpoint_is_persisted_and_reloaded(store, clock) -> None:
    checkpoints = make_checkpoints(store, clock)
    checkpoint = await checkpoints.create_checkpoint("job-2", "spotify", "unfollow_artists", 40)
    clock.advance(5)
    await checkpoints.update_checkpoint(
        checkpoint, 20, 2, 22, "artist-22", {"cursor": "abc"}
    )

    loaded = await checkpoints.get_checkpoint("job-2")

    assert loaded is not None
    assert loaded.processed_items == 20
    assert loaded.failed_items == 2
    assert loaded.current_position == 22
    assert loaded.last_successful_item_id == "artist-22"
    assert loaded.checkpoint_data == {"cursor": "abc"}
    assert loaded.updated_at > loaded.created_at


@pytest.mark.asyncio
async def test_checkpoint_expires_24h_after_creation_regardless_of_updates(store, clock) -> None:
    checkpoints = make_checkpoints(store, clock)
    checkpoint = await checkpoints.create_checkpoint("job-3", "p", "op", 10)
    assert await store.ttl("checkpoint:job-3") == pytest.approx(86_400)

    clock.advance(20 * 3600)
    await checkpoints.update_checkpoint(checkpoint, 5, 0, 5)
    assert await store.ttl("checkpoint:job-3") == pytest.approx(4 * 3600)

    clock.advance(4 * 3600)
    assert await checkpoints.get_checkpoint("job-3") is None


@pytest.mark.asyncio
async def test_update_after_expiry_is_not_persisted(store, clock) -> None:
    checkpoints = make_checkpoints(store, clock)
    checkpoint = await checkpoints.create_checkpoint("job-4", "p", "op", 10)
    clock.advance(86_401)

    await checkpoints.update_checkpoint(checkpoint, 3, 0, 3)

    assert checkpoint.processed_items == 3
    assert await checkpoints.get_checkpoint("job-4") is None


@pytest.mark.asyncio
async def test_update_rejects_counters_beyond_total(store, clock) -> None:
    checkpoints = make_checkpoints(store, clock)
    checkpoint = await checkpoints.create_checkpoint("job-5", "p", "op", 10)

    with pytest.raises(ValueError):
        await checkpoints.update_checkpoint(checkpoint, 8, 3, 10)
    assert checkpoint.processed_items == 0


@pytest.mark.asyncio
async def test_continuation_data_is_merged(store, clock) -> None:
    checkpoints = make_checkpoints(store, clock)
    checkpoint = await checkpoints.create_checkpoint("job-6", "p", "op", 10)

    await checkpoints.update_checkpoint(checkpoint, 1, 0, 1, data={"page": 1})
    await checkpoints.update_checkpoint(checkpoint, 2, 0, 2, data={"token": "t"})

    assert checkpoint.checkpoint_data == {"page": 1, "token": "t"}


@pytest.mark.asyncio
async def test_corrupt_checkpoint_raises(store, clock) -> None:
    checkpoints = make_checkpoints(store, clock)
    await store.set("checkpoint:bad", "[]", ttl_s=60)

    with pytest.raises(StateStoreError):
        await checkpoints.get_checkpoint("bad")


@pytest.mark.asyncio
async def test_delete_checkpoint(store, clock) -> None:
    checkpoints = make_checkpoints(store, clock)
    await checkpoints.create_checkpoint("job-7", "p", "op", 1)

    assert await checkpoints.delete_checkpoint("job-7")
    assert not await checkpoints.delete_checkpoint("job-7")


def test_empty_checkpoint_is_complete(clock) -> None:
    checkpoint = BatchCheckpoint(
        batch_id="empty",
        provider="p",
        operation_type="op",
        total_items=0,
        created_at=clock.now(),
        updated_at=clock.now(),
    )

    assert checkpoint.progress_percentage() == 100.0
    assert checkpoint.is_complete()


def test_checkpoint_model_rejects_invalid_counters(clock) -> None:
    with pytest.raises(ValueError):
        BatchCheckpoint(
            batch_id="x",
            provider="p",
            operation_type="op",
            total_items=5,
            processed_items=4,
            failed_items=2,
            created_at=clock.now(),
            updated_at=clock.now(),
        )


def test_store_rejects_non_positive_ttl(store) -> None:
    with pytest.raises(ValueError):
        CheckpointStore(store, ttl_s=0)
