# tests/test_realtime_service.py
import pytest

from conftest import FakeSocket, principal
from hirehub.models.evaluation import EvaluationJob, EvaluationStep, StatusEvent, StepStatus
from hirehub.models.realtime import InteractionNotification
from hirehub.repositories.chat import InMemoryChatStore
from hirehub.services.chat import ChatService
from hirehub.services.rate_limit import SlidingWindowLimiter
from hirehub.services.realtime import DEFAULT_CHANNEL, STATUS_CHANNEL, RealtimeService


async def _connect(realtime, user_id, channel=DEFAULT_CHANNEL):
    sock = FakeSocket()
    conn = await realtime.connect(principal(user_id), sock.send, channel)
    return conn, sock


@pytest.mark.asyncio
async def test_connect_emits_connected_and_tracks_presence(realtime):
    conn, sock = await _connect(realtime, "u1")
    await realtime.flush()
    hello = sock.events("connected")[0]
    assert hello["userId"] == "u1"
    assert hello["socketId"] == conn.id
    assert hello["namespace"] == "/"
    assert realtime.is_user_connected("u1")

    await realtime.disconnect(conn)
    assert not realtime.is_user_connected("u1")


@pytest.mark.asyncio
async def test_status_channel_connections_do_not_count_as_presence(realtime):
    await _connect(realtime, "u1", STATUS_CHANNEL)
    assert not realtime.is_user_connected("u1")


@pytest.mark.asyncio
async def test_start_conversation_then_hello_reaches_recipient_only(realtime):
    c1, s1 = await _connect(realtime, "u1")
    c2, s2 = await _connect(realtime, "u2")

    ack = await realtime.dispatch(c1, "chat:start_conversation", {"recipientId": "u2"})
    assert ack.success
    assert ack.data["isNew"] is True
    conv_id = ack.data["conversation"]["id"]

    ack = await realtime.dispatch(c1, "chat:send_message", {"conversationId": conv_id, "content": "hello"})
    assert ack.success
    await realtime.flush()

    assert s2.events("chat:new_conversation")[0]["conversation"]["id"] == conv_id
    received = s2.events("chat:new_message")
    assert len(received) == 1
    assert received[0]["content"] == {"type": "text", "text": "hello"}
    assert received[0]["sender_id"] == "u1"
    assert s1.events("chat:new_message") == []


@pytest.mark.asyncio
async def test_existing_conversation_with_initial_message_sends_new_message(realtime):
    c1, _ = await _connect(realtime, "u1")
    c2, s2 = await _connect(realtime, "u2")
    await realtime.dispatch(c1, "chat:start_conversation", {"recipientId": "u2"})

    ack = await realtime.dispatch(c1, "chat:start_conversation", {"recipientId": "u2", "initialMessage": "again"})
    assert ack.data["isNew"] is False
    await realtime.flush()
    assert len(s2.events("chat:new_conversation")) == 1
    assert s2.events("chat:new_message")[0]["content"]["text"] == "again"


@pytest.mark.asyncio
async def test_sender_other_devices_are_excluded_from_new_message(realtime):
    c1a, s1a = await _connect(realtime, "u1")
    c1b, s1b = await _connect(realtime, "u1")
    c2, s2 = await _connect(realtime, "u2")
    conv_id = (await realtime.dispatch(c1a, "chat:start_conversation", {"recipientId": "u2"})).data["conversation"]["id"]

    await realtime.dispatch(c1a, "chat:send_message", {"conversationId": conv_id, "content": {"text": "hi"}})
    await realtime.flush()
    assert len(s2.events("chat:new_message")) == 1
    assert s1b.events("chat:new_message") == []


@pytest.mark.asyncio
async def test_typing_requires_membership_and_skips_sender(realtime):
    c1a, s1a = await _connect(realtime, "u1")
    c1b, s1b = await _connect(realtime, "u1")
    c2, s2 = await _connect(realtime, "u2")
    conv_id = (await realtime.dispatch(c1a, "chat:start_conversation", {"recipientId": "u2"})).data["conversation"]["id"]

    ack = await realtime.dispatch(c2, "chat:typing", {"conversationId": conv_id})
    assert not ack.success
    assert ack.error.code == "forbidden"

    for conn in (c1b, c2):
        assert (await realtime.dispatch(conn, "chat:join_conversation", {"conversationId": conv_id})).success
    ack = await realtime.dispatch(c1a, "chat:typing", {"conversationId": conv_id, "isTyping": True})
    assert ack.success
    await realtime.flush()

    assert s2.events("chat:user_typing") == [{"conversationId": conv_id, "userId": "u1", "isTyping": True}]
    assert s1b.events("chat:user_typing") == []


@pytest.mark.asyncio
async def test_join_conversation_rejects_non_participant(realtime):
    c1, _ = await _connect(realtime, "u1")
    c3, _ = await _connect(realtime, "u3")
    conv_id = (await realtime.dispatch(c1, "chat:start_conversation", {"recipientId": "u2"})).data["conversation"]["id"]

    ack = await realtime.dispatch(c3, "chat:join_conversation", {"conversationId": conv_id})
    assert not ack.success
    assert ack.error.code == "not_participant"


@pytest.mark.asyncio
async def test_update_and_delete_fan_out_to_all_participants(realtime):
    c1, s1 = await _connect(realtime, "u1")
    c2, s2 = await _connect(realtime, "u2")
    conv_id = (await realtime.dispatch(c1, "chat:start_conversation", {"recipientId": "u2"})).data["conversation"]["id"]
    msg = (await realtime.dispatch(c1, "chat:send_message", {"conversationId": conv_id, "content": "v1"})).data["message"]

    denied = await realtime.dispatch(c2, "chat:update_message", {"messageId": msg["id"], "content": "v2"})
    assert denied.error.code == "forbidden"

    ack = await realtime.dispatch(c1, "chat:update_message", {"messageId": msg["id"], "content": "v2"})
    assert ack.data["message"]["state"] == "edited"
    ack = await realtime.dispatch(c1, "chat:delete_message", {"messageId": msg["id"]})
    assert ack.success
    await realtime.flush()

    for sock in (s1, s2):
        assert sock.events("chat:message_updated")[0]["content"]["text"] == "v2"
        assert sock.events("chat:message_deleted") == [{"messageId": msg["id"], "conversationId": conv_id}]


@pytest.mark.asyncio
async def test_invalid_payloads_and_unknown_events_are_acked_as_errors(realtime):
    c1, _ = await _connect(realtime, "u1")
    ack = await realtime.dispatch(c1, "chat:send_message", {"content": "no conversation"})
    assert ack.error.code == "validation_error"
    ack = await realtime.dispatch(c1, "chat:fly", {})
    assert ack.error.code == "validation_error"
    # status-channel events are not served on the default channel
    ack = await realtime.dispatch(c1, "resume:subscribe", {"evaluationId": "x"})
    assert not ack.success


@pytest.mark.asyncio
async def test_join_only_own_room(realtime):
    c1, _ = await _connect(realtime, "u1")
    assert (await realtime.dispatch(c1, "join", {"userId": "u1"})).success
    assert (await realtime.dispatch(c1, "join", {"userId": "u2"})).error.code == "forbidden"


def _job(job_id="ev-1", user_id="u1"):
    return EvaluationJob(id=job_id, user_id=user_id, file_type=".pdf", job_title="Engineer",
                         job_description="Build things")


@pytest.mark.asyncio
async def test_resume_status_reaches_owner_and_subscribers_only(realtime, evaluation_store):
    await evaluation_store.create(_job())
    owner, s_owner = await _connect(realtime, "u1", STATUS_CHANNEL)
    other, s_other = await _connect(realtime, "u2", STATUS_CHANNEL)
    chat_conn, s_chat = await _connect(realtime, "u1")

    ack = await realtime.dispatch(other, "resume:subscribe", {"evaluationId": "ev-1"})
    assert ack.error.code == "not_found"
    ack = await realtime.dispatch(owner, "resume:subscribe", {"evaluationId": "ev-1"})
    assert ack.data["step"] == "queued"

    event = StatusEvent(evaluation_id="ev-1", step=EvaluationStep.SCORING, status=StepStatus.IN_PROGRESS,
                        progress=130, details="Scoring")
    delivered = realtime.send_resume_status("u1", event)
    await realtime.flush()

    # owner is in both its user room and the evaluation room but gets one copy
    assert delivered == 1
    status = s_owner.events("resume:status")
    assert len(status) == 1
    assert status[0]["evaluationId"] == "ev-1"
    assert status[0]["progress"] == 100
    assert s_other.events("resume:status") == []
    assert s_chat.events("resume:status") == []


@pytest.mark.asyncio
async def test_interaction_notification_only_for_online_non_self(realtime):
    _, s1 = await _connect(realtime, "owner")
    note = InteractionNotification(type="like", post_id="p1", post_owner_id="owner", interactor_id="fan",
                                   message="fan liked your post")
    assert realtime.send_interaction_notification(note) is True
    assert realtime.send_interaction_notification(note.model_copy(update={"interactor_id": "owner"})) is False
    assert realtime.send_interaction_notification(note.model_copy(update={"post_owner_id": "offline"})) is False
    await realtime.flush()
    assert s1.events("interaction:notification")[0]["post_id"] == "p1"


@pytest.mark.asyncio
async def test_rate_limited_start_still_announces_conversation_on_retry():
    now = [0.0]
    limiter = SlidingWindowLimiter(limit=1, window_seconds=60, clock=lambda: now[0])
    service = RealtimeService(ChatService(InMemoryChatStore(), rate_limiter=limiter))
    await service.initialize()
    try:
        c1, _ = await _connect(service, "u1")
        c2, s2 = await _connect(service, "u2")
        await service.dispatch(c1, "chat:start_conversation", {"recipientId": "u3", "initialMessage": "first"})

        ack = await service.dispatch(c1, "chat:start_conversation", {"recipientId": "u2", "initialMessage": "hi"})
        assert ack.success is False
        assert ack.error.code == "rate_limited"
        assert await service.chat.get_user_conversations("u2") == []

        now[0] = 61.0
        ack = await service.dispatch(c1, "chat:start_conversation", {"recipientId": "u2", "initialMessage": "hi"})
        assert ack.data["isNew"] is True
        await service.flush()
        assert len(s2.events("chat:new_conversation")) == 1
    finally:
        await service.shutdown()
