# tests/test_worker_streams.py
import json
from unittest.mock import AsyncMock

import pytest

from conftest import RESUME_TEXT
from hirehub.core.errors import NotFoundError
from hirehub.models.evaluation import EvaluationStep
from hirehub.repositories.evaluations import InMemoryEvaluationStore
from hirehub.services import queue
from hirehub.services.evaluation import EvaluationOrchestrator
from hirehub.services.extraction import TextExtractor
from hirehub.services.grading import ModelFallbackGrader
from hirehub.services.queue import InMemoryJobStore
from hirehub.services.scorers.mock_adapter import MockScorer
from hirehub.services.storage import ResumeStorage
from hirehub.services.worker_streams import EvaluationWorker

JD = "Python backend engineer"


async def _no_sleep(_delay):
    return None


def _fake_client():
    client = AsyncMock()
    client.incr = AsyncMock(return_value=1)
    client.xadd = AsyncMock(return_value="9-0")
    return client


async def _setup(test_settings, client, max_retries=3):
    storage = ResumeStorage(test_settings)
    grader = ModelFallbackGrader(MockScorer(), ["m1"], sleep=_no_sleep)
    orchestrator = EvaluationOrchestrator(InMemoryEvaluationStore(), TextExtractor(), grader, storage=storage)
    job_store = InMemoryJobStore()
    job = await orchestrator.accept("u1", RESUME_TEXT.encode(), "resume.txt", JD, "Engineer")
    await job_store.create(job.id, {"evaluationId": job.id})
    worker = EvaluationWorker(client, orchestrator, storage, job_store, consumer_name="test",
                              max_retries=max_retries)
    return worker, job, job_store


def _entry(evaluation_id, file_key):
    return {"payload": json.dumps({"evaluation_id": evaluation_id, "file_key": file_key, "ocr_text": None}),
            "evaluation_id": evaluation_id}


@pytest.mark.asyncio
async def test_entry_is_processed_and_acked(test_settings):
    client = _fake_client()
    worker, job, job_store = await _setup(test_settings, client)

    assert await worker.handle_entry("1-0", _entry(job.id, job.file_key)) is True

    evaluated = await worker.orchestrator.store.get(job.id)
    assert evaluated.step == EvaluationStep.COMPLETED
    record = await job_store.get(job.id)
    assert record.state == "completed"
    assert record.attempts == 1
    assert record.progress == 100
    client.xack.assert_awaited_with(queue.STREAM_KEY, queue.GROUP_NAME, "1-0")
    client.xdel.assert_awaited_with(queue.STREAM_KEY, "1-0")


@pytest.mark.asyncio
async def test_failure_marks_delayed_then_moves_to_dlq(test_settings):
    client = _fake_client()
    worker, job, job_store = await _setup(test_settings, client, max_retries=2)
    worker.storage.download_to_bytes = AsyncMock(side_effect=ConnectionError("storage offline"))

    assert await worker.handle_entry("1-0", _entry(job.id, job.file_key)) is False
    record = await job_store.get(job.id)
    assert record.state == "delayed"
    assert record.next_retry_at is not None
    client.xadd.assert_not_awaited()
    client.xack.assert_not_awaited()

    client.incr = AsyncMock(return_value=2)
    assert await worker.handle_entry("1-0", _entry(job.id, job.file_key)) is False

    dlq_call = client.xadd.await_args
    assert dlq_call.args[0] == queue.DLQ_KEY
    assert dlq_call.args[1]["original_id"] == "1-0"
    assert (await job_store.get(job.id)).state == "failed"
    failed = await worker.orchestrator.store.get(job.id)
    assert failed.step == EvaluationStep.FAILED
    assert "retries" in failed.error
    client.xack.assert_awaited_with(queue.STREAM_KEY, queue.GROUP_NAME, "1-0")


@pytest.mark.asyncio
async def test_pipeline_failure_is_terminal_not_retried(test_settings):
    client = _fake_client()
    worker, job, job_store = await _setup(test_settings, client)
    worker.storage.download_to_bytes = AsyncMock(return_value=b"")

    assert await worker.handle_entry("1-0", _entry(job.id, job.file_key)) is True
    assert (await job_store.get(job.id)).state == "failed"
    client.incr.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_file_key_fails_the_evaluation(test_settings):
    client = _fake_client()
    worker, job, job_store = await _setup(test_settings, client)

    assert await worker.handle_entry("1-0", _entry(job.id, None)) is True
    assert (await worker.orchestrator.store.get(job.id)).step == EvaluationStep.FAILED
    assert (await job_store.get(job.id)).failed_reason == "missing file_key"


@pytest.mark.asyncio
async def test_unreadable_payload_is_dropped(test_settings):
    client = _fake_client()
    worker, _, _ = await _setup(test_settings, client)
    assert await worker.handle_entry("2-0", {"payload": "{not json"}) is True
    assert await worker.handle_entry("3-0", {"payload": json.dumps({"file_key": "k"})}) is True
    assert client.xack.await_count == 2


@pytest.mark.asyncio
async def test_run_once_reads_from_the_group(test_settings):
    client = _fake_client()
    worker, job, _ = await _setup(test_settings, client)
    client.xreadgroup = AsyncMock(return_value=[(queue.STREAM_KEY, [("5-0", _entry(job.id, job.file_key))])])

    assert await worker.run_once() == 1
    kwargs = client.xreadgroup.await_args.kwargs
    assert kwargs["groupname"] == queue.GROUP_NAME
    assert kwargs["streams"] == {queue.STREAM_KEY: ">"}


@pytest.mark.asyncio
async def test_pending_claims_are_reprocessed_and_deleted_entries_acked(test_settings):
    client = _fake_client()
    worker, job, _ = await _setup(test_settings, client)
    client.xpending_range = AsyncMock(return_value=[{"message_id": "6-0"}, {"message_id": "7-0"}])
    client.xclaim = AsyncMock(side_effect=[
        [("6-0", _entry(job.id, job.file_key))],
        [("7-0", None)],
    ])

    await worker.handle_pending_claims()

    assert (await worker.orchestrator.store.get(job.id)).step == EvaluationStep.COMPLETED
    acked = [c.args[2] for c in client.xack.await_args_list]
    assert acked == ["6-0", "7-0"]


@pytest.mark.asyncio
async def test_download_of_missing_key_raises_not_found(test_settings):
    storage = ResumeStorage(test_settings)
    with pytest.raises(NotFoundError):
        await storage.download_to_bytes("resumes/missing.pdf")
