# tests/test_dispatch_and_relay.py
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import RESUME_TEXT, FakeSocket, principal
from hirehub.models.evaluation import EvaluationStep, StatusEvent, StepStatus
from hirehub.repositories.evaluations import InMemoryEvaluationStore
from hirehub.services import queue
from hirehub.services.dispatch import InlineDispatcher, StreamDispatcher
from hirehub.services.evaluation import EvaluationOrchestrator
from hirehub.services.extraction import TextExtractor
from hirehub.services.grading import ModelFallbackGrader
from hirehub.services.queue import InMemoryJobStore
from hirehub.services.realtime import STATUS_CHANNEL
from hirehub.services.scorers.mock_adapter import MockScorer
from hirehub.services.status_relay import STATUS_CHANNEL as RELAY_CHANNEL
from hirehub.services.status_relay import RedisStatusPublisher, StatusRelaySubscriber

JD = "Python backend engineer"


async def _no_sleep(_delay):
    return None


def _orchestrator():
    grader = ModelFallbackGrader(MockScorer(), ["m1"], sleep=_no_sleep)
    return EvaluationOrchestrator(InMemoryEvaluationStore(), TextExtractor(), grader)


@pytest.mark.asyncio
async def test_inline_dispatch_runs_in_background_and_records_job():
    orchestrator = _orchestrator()
    job_store = InMemoryJobStore()
    dispatcher = InlineDispatcher(orchestrator, job_store)
    job = await orchestrator.accept("u1", RESUME_TEXT.encode(), "resume.txt", JD, "Engineer")

    await dispatcher.dispatch(job, RESUME_TEXT.encode())
    await dispatcher.drain()

    assert (await orchestrator.store.get(job.id)).step == EvaluationStep.COMPLETED
    record = await job_store.get(job.id)
    assert record.state == "completed"
    assert record.progress == 100
    assert record.max_attempts == 1


@pytest.mark.asyncio
async def test_stream_dispatch_enqueues_file_reference():
    orchestrator = _orchestrator()
    job = await orchestrator.submit("u1", ".txt", JD, "Engineer", file_key="resumes/abc.txt")
    client = AsyncMock()
    client.xadd = AsyncMock(return_value="1-0")
    job_store = InMemoryJobStore()

    await StreamDispatcher(client, job_store, max_attempts=5).dispatch(job, b"ignored", "ocr words")

    stream, entry = client.xadd.await_args.args
    assert stream == queue.STREAM_KEY
    assert json.loads(entry["payload"]) == {
        "evaluation_id": job.id, "file_key": "resumes/abc.txt", "ocr_text": "ocr words",
    }
    record = await job_store.get(job.id)
    assert record.state == "waiting" and record.max_attempts == 5


@pytest.mark.asyncio
async def test_publisher_and_relay_deliver_status_to_local_sockets(realtime):
    sock = FakeSocket()
    await realtime.connect(principal("u1"), sock.send, STATUS_CHANNEL)
    client = MagicMock()
    client.publish = AsyncMock(return_value=1)
    event = StatusEvent(evaluation_id="ev-1", step=EvaluationStep.EXTRACTING_TEXT,
                        status=StepStatus.IN_PROGRESS, progress=10)

    await RedisStatusPublisher(client).send_resume_status("u1", event)
    channel, message = client.publish.await_args.args
    assert channel == RELAY_CHANNEL

    relay = StatusRelaySubscriber(client, realtime)
    assert relay.handle(message) == 1
    assert relay.handle("not json") == 0
    assert relay.handle(json.dumps({"userId": "u1"})) == 0
    await realtime.flush()

    status = sock.events("resume:status")
    assert len(status) == 1
    assert status[0]["step"] == "extracting_text"
    assert status[0]["evaluationId"] == "ev-1"


class _FakePubSub:
    def __init__(self, messages=(), error=None):
        self.messages = list(messages)
        self.error = error
        self.subscribe = AsyncMock()
        self.unsubscribe = AsyncMock()
        self.aclose = AsyncMock()

    async def listen(self):
        if self.error is not None:
            raise self.error
        for message in self.messages:
            yield message
        # stay subscribed until cancelled
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_relay_resubscribes_after_a_redis_error(realtime):
    sock = FakeSocket()
    await realtime.connect(principal("u1"), sock.send, STATUS_CHANNEL)
    event = StatusEvent(evaluation_id="ev-2", step=EvaluationStep.SCORING,
                        status=StepStatus.IN_PROGRESS, progress=40)
    message = json.dumps({"userId": "u1", "event": event.model_dump(mode="json")})
    broken = _FakePubSub(error=ConnectionError("connection reset"))
    healthy = _FakePubSub(messages=[
        {"type": "subscribe", "data": 1},
        {"type": "message", "data": message},
    ])
    client = MagicMock()
    client.pubsub = MagicMock(side_effect=[broken, healthy])

    relay = StatusRelaySubscriber(client, realtime, retry_delay=0)
    relay.start()
    try:
        for _ in range(100):
            await realtime.flush()
            if sock.events("resume:status"):
                break
            await asyncio.sleep(0.01)
    finally:
        await relay.stop()

    assert [e["evaluationId"] for e in sock.events("resume:status")] == ["ev-2"]
    broken.aclose.assert_awaited()
    healthy.subscribe.assert_awaited_with(RELAY_CHANNEL)
