# tests/test_rooms.py
import asyncio

import pytest

from conftest import FakeSocket
from hirehub.services.rooms import Connection, RoomRouter, conversation_room, user_room


@pytest.mark.asyncio
async def test_frames_keep_queue_order_and_typing_is_dropped_under_backlog():
    sock = FakeSocket()
    conn = Connection("u1", sock.send, queue_limit=2)
    # writer not started yet, so frames pile up
    assert conn.deliver("a", {"n": 1})
    assert conn.deliver("b", {"n": 2})
    assert conn.deliver("chat:user_typing", {"isTyping": True}, droppable=True) is False
    assert conn.deliver("c", {"n": 3})
    assert conn.backlog == 3

    conn.start()
    await conn.flush()
    assert [f["event"] for f in sock.frames] == ["a", "b", "c"]
    await conn.close()


@pytest.mark.asyncio
async def test_frame_id_is_carried_on_the_frame():
    sock = FakeSocket()
    conn = Connection("u1", sock.send)
    conn.start()
    conn.deliver("ack", {"success": True}, frame_id="req-1")
    await conn.flush()
    assert sock.frames == [{"event": "ack", "data": {"success": True}, "id": "req-1"}]
    await conn.close()


@pytest.mark.asyncio
async def test_send_failure_closes_connection():
    async def broken(frame):
        raise ConnectionError("socket gone")

    conn = Connection("u1", broken)
    conn.start()
    conn.deliver("a", {})
    await conn.flush()
    await asyncio.sleep(0)
    assert conn.closed
    assert conn.deliver("b", {}) is False
    await conn.close()


@pytest.mark.asyncio
async def test_broadcast_many_delivers_once_per_connection():
    router = RoomRouter()
    s1, s2 = FakeSocket(), FakeSocket()
    c1 = Connection("u1", s1.send)
    c2 = Connection("u2", s2.send)
    router.add_connection(c1)
    router.add_connection(c2)
    router.join(c1.id, conversation_room("conv-1"))

    sent = router.broadcast_many([user_room("u1"), conversation_room("conv-1")], "chat:new_message", {"id": "m1"})
    await router.flush()

    assert sent == 1
    assert len(s1.events("chat:new_message")) == 1
    assert s2.frames == []
    await router.close_all()


@pytest.mark.asyncio
async def test_broadcast_to_empty_room_is_noop_and_exclusions_apply():
    router = RoomRouter()
    s1a, s1b, s2 = FakeSocket(), FakeSocket(), FakeSocket()
    c1a, c1b, c2 = Connection("u1", s1a.send), Connection("u1", s1b.send), Connection("u2", s2.send)
    for c in (c1a, c1b, c2):
        router.add_connection(c)
        router.join(c.id, "conversation:x")

    assert router.broadcast("conversation:nobody", "evt", {}) == 0
    assert router.broadcast("conversation:x", "evt", {}, exclude_user="u1") == 1
    assert router.broadcast("conversation:x", "evt2", {}, exclude_connection=c1a.id) == 2
    await router.flush()

    assert s1a.events("evt") == [] and s1b.events("evt") == []
    assert len(s2.events("evt")) == 1
    assert s1a.events("evt2") == []
    assert len(s1b.events("evt2")) == 1
    await router.close_all()


@pytest.mark.asyncio
async def test_remove_connection_leaves_all_rooms():
    router = RoomRouter()
    c1 = Connection("u1", FakeSocket().send)
    router.add_connection(c1)
    router.join(c1.id, "conversation:x")
    assert router.rooms_of(c1.id) == {user_room("u1"), "conversation:x"}

    removed = await router.remove_connection(c1.id)
    assert removed is c1
    assert router.members("conversation:x") == set()
    assert router.members(user_room("u1")) == set()
    assert c1.closed
