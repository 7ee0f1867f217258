# tests/test_queue_monitor.py
import json
from unittest.mock import AsyncMock

import pytest

from hirehub.services.queue import InMemoryJobStore, RedisJobStore
from hirehub.services.queue_monitor import QueueMonitor, to_job_status


@pytest.mark.asyncio
async def test_stats_and_status_shape():
    store = InMemoryJobStore()
    monitor = QueueMonitor(store)
    await store.create("j1", {"evaluationId": "j1"})
    await store.create("j2", {"evaluationId": "j2"})
    await store.set_state("j2", "active")
    await store.record_attempt("j2")

    stats = await monitor.get_queue_stats()
    assert stats.waiting == 1 and stats.active == 1 and stats.completed == 0

    status = await monitor.get_job_status("j2")
    body = status.model_dump(by_alias=True)
    assert body["jobId"] == "j2"
    assert body["status"] == "active"
    assert body["attempts"] == 1
    assert body["max_attempts"] == 3
    assert body["payload"] == {"evaluationId": "j2"}
    assert body["queue_name"] == "resume-evaluation"
    assert await monitor.get_job_status("missing") is None


@pytest.mark.asyncio
async def test_unknown_state_is_rejected():
    store = InMemoryJobStore()
    await store.create("j1", {})
    with pytest.raises(ValueError):
        await store.set_state("j1", "exploded")


@pytest.mark.asyncio
async def test_cleanup_removes_old_completed_jobs_up_to_max_count():
    store = InMemoryJobStore()
    monitor = QueueMonitor(store)
    for i in range(3):
        await store.create(f"old{i}", {})
        await store.set_state(f"old{i}", "completed")
    await store.create("failed", {})
    await store.set_state("failed", "failed")

    assert await monitor.cleanup_completed_jobs(max_age_seconds=0, max_count=2) == 2
    assert (await monitor.get_queue_stats()).completed == 1
    assert await store.get("failed") is not None


@pytest.mark.asyncio
async def test_cleanup_keeps_recent_jobs_and_survives_remove_errors():
    store = InMemoryJobStore()
    await store.create("recent", {})
    await store.set_state("recent", "completed")
    assert await QueueMonitor(store).cleanup_completed_jobs() == 0

    broken = AsyncMock()
    broken.list_ids = AsyncMock(return_value=["a", "b"])
    broken.remove = AsyncMock(side_effect=[RuntimeError("redis down"), True])
    assert await QueueMonitor(broken).cleanup_completed_jobs() == 1


@pytest.mark.asyncio
async def test_redis_job_store_round_trips_hash_fields():
    client = AsyncMock()
    client.hgetall = AsyncMock(return_value={
        "id": "j1", "state": "delayed", "progress": "30", "attempts": "2", "max_attempts": "3",
        "payload": json.dumps({"evaluationId": "j1"}), "created_at": "2026-01-01T00:00:00+00:00",
        "failed_reason": "boom",
    })
    store = RedisJobStore(client)
    loaded = await store.get("j1")
    assert loaded.attempts == 2 and loaded.progress == 30
    assert loaded.payload == {"evaluationId": "j1"}
    status = to_job_status(loaded, store.queue_name)
    assert status.status == "delayed"

    await store.set_state("j1", "completed", finished_at=None)
    assert client.zadd.await_args.args[0] == "jobs:resume-evaluation:state:completed"
    assert "j1" in client.zadd.await_args.args[1]
