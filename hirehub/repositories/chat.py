# hirehub/repositories/chat.py
"""
Conversation / participant / message persistence.

Two implementations share the `ChatStore` protocol: an in-process store used in
development and tests, and a Mongo store (motor). Both key direct conversations
by `direct_key` and refuse a second direct conversation for the same pair.
"""

import asyncio
import itertools
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from hirehub.db.mongo import (
    CONVERSATIONS_COLLECTION,
    COUNTERS_COLLECTION,
    MESSAGES_COLLECTION,
    PARTICIPANTS_COLLECTION,
)
from hirehub.models.chat import Conversation, Message, MessageState, Participant, direct_key

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class ChatStore(Protocol):
    async def get_or_create_direct(self, initiator_id: str, recipient_id: str) -> Tuple[Conversation, bool]: ...

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    async def get_participants(self, conversation_id: str) -> List[Participant]: ...

    async def is_participant(self, conversation_id: str, user_id: str) -> bool: ...

    async def list_user_conversations(self, user_id: str) -> List[Conversation]: ...

    async def delete_conversation(self, conversation_id: str) -> bool: ...

    async def add_message(self, conversation_id: str, sender_id: str, content: Dict[str, Any],
                          is_forwarded: bool = False) -> Message: ...

    async def get_message(self, message_id: str) -> Optional[Message]: ...

    async def save_message(self, message: Message) -> Message: ...

    async def list_messages(self, conversation_id: str, limit: int = 50, offset: int = 0) -> List[Message]: ...

    async def count_messages(self, conversation_id: str) -> int: ...


class InMemoryChatStore:
    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._participants: Dict[str, List[Participant]] = {}
        self._messages: Dict[str, Message] = {}
        self._by_direct_key: Dict[str, str] = {}
        self._seq = itertools.count(1)
        self._lock = asyncio.Lock()

    async def get_or_create_direct(self, initiator_id: str, recipient_id: str) -> Tuple[Conversation, bool]:
        key = direct_key(initiator_id, recipient_id)
        async with self._lock:
            existing = self._by_direct_key.get(key)
            if existing is not None:
                return self._conversations[existing], False
            conv = Conversation(id=_new_id(), is_group=False, created_by=initiator_id, direct_key=key)
            self._conversations[conv.id] = conv
            self._by_direct_key[key] = conv.id
            self._participants[conv.id] = [
                Participant(conversation_id=conv.id, user_id=uid) for uid in (initiator_id, recipient_id)
            ]
            return conv, True

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    async def get_participants(self, conversation_id: str) -> List[Participant]:
        return list(self._participants.get(conversation_id, []))

    async def is_participant(self, conversation_id: str, user_id: str) -> bool:
        return any(p.user_id == user_id for p in self._participants.get(conversation_id, []))

    async def list_user_conversations(self, user_id: str) -> List[Conversation]:
        out = [
            self._conversations[cid]
            for cid, parts in self._participants.items()
            if any(p.user_id == user_id for p in parts)
        ]
        return sorted(out, key=lambda c: c.created_at, reverse=True)

    async def delete_conversation(self, conversation_id: str) -> bool:
        async with self._lock:
            conv = self._conversations.pop(conversation_id, None)
            if conv is None:
                return False
            if conv.direct_key:
                self._by_direct_key.pop(conv.direct_key, None)
            self._participants.pop(conversation_id, None)
            for mid in [m.id for m in self._messages.values() if m.conversation_id == conversation_id]:
                del self._messages[mid]
            return True

    async def add_message(self, conversation_id: str, sender_id: str, content: Dict[str, Any],
                          is_forwarded: bool = False) -> Message:
        msg = Message(
            id=_new_id(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            is_forwarded=is_forwarded,
            seq=next(self._seq),
        )
        self._messages[msg.id] = msg
        return msg

    async def get_message(self, message_id: str) -> Optional[Message]:
        return self._messages.get(message_id)

    async def save_message(self, message: Message) -> Message:
        self._messages[message.id] = message
        return message

    def _visible(self, conversation_id: str) -> List[Message]:
        return [
            m for m in self._messages.values()
            if m.conversation_id == conversation_id and m.state != MessageState.DELETED
        ]

    async def list_messages(self, conversation_id: str, limit: int = 50, offset: int = 0) -> List[Message]:
        ordered = sorted(self._visible(conversation_id), key=lambda m: m.seq, reverse=True)
        return ordered[offset:offset + limit]

    async def count_messages(self, conversation_id: str) -> int:
        return len(self._visible(conversation_id))


def _to_model_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


class MongoChatStore:
    """Motor-backed store. `ensure_indexes()` must have created the unique direct_key index."""

    def __init__(self, db):
        self._db = db

    @property
    def _conversations(self):
        return self._db[CONVERSATIONS_COLLECTION]

    @property
    def _participants(self):
        return self._db[PARTICIPANTS_COLLECTION]

    @property
    def _messages(self):
        return self._db[MESSAGES_COLLECTION]

    async def _find_direct(self, key: str) -> Optional[Conversation]:
        doc = await self._conversations.find_one({"direct_key": key})
        return Conversation.model_validate(_to_model_doc(doc)) if doc else None

    async def _ensure_participants(self, conversation_id: str, user_ids: Tuple[str, str]) -> None:
        # upserts, so a conversation whose participant writes were interrupted is repaired on next use
        for uid in user_ids:
            await self._participants.update_one(
                {"conversation_id": conversation_id, "user_id": uid},
                {"$setOnInsert": {"joined_at": _now()}},
                upsert=True,
            )

    async def get_or_create_direct(self, initiator_id: str, recipient_id: str) -> Tuple[Conversation, bool]:
        key = direct_key(initiator_id, recipient_id)
        pair = (initiator_id, recipient_id)
        existing = await self._find_direct(key)
        if existing is not None:
            await self._ensure_participants(existing.id, pair)
            return existing, False
        conv = Conversation(id=_new_id(), is_group=False, created_by=initiator_id, direct_key=key)
        doc = conv.model_dump(exclude={"id"})
        doc["_id"] = conv.id
        try:
            await self._conversations.insert_one(doc)
        except DuplicateKeyError:
            # another process created the pair first; hand back its conversation
            winner = await self._find_direct(key)
            if winner is None:
                raise
            logger.info("Direct conversation race for %s resolved to %s", key, winner.id)
            await self._ensure_participants(winner.id, pair)
            return winner, False
        await self._ensure_participants(conv.id, pair)
        return conv, True

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        doc = await self._conversations.find_one({"_id": conversation_id})
        return Conversation.model_validate(_to_model_doc(doc)) if doc else None

    async def get_participants(self, conversation_id: str) -> List[Participant]:
        out = []
        async for d in self._participants.find({"conversation_id": conversation_id}):
            d.pop("_id", None)
            out.append(Participant.model_validate(d))
        return out

    async def is_participant(self, conversation_id: str, user_id: str) -> bool:
        doc = await self._participants.find_one({"conversation_id": conversation_id, "user_id": user_id})
        return doc is not None

    async def list_user_conversations(self, user_id: str) -> List[Conversation]:
        ids = [d["conversation_id"] async for d in self._participants.find({"user_id": user_id})]
        if not ids:
            return []
        cur = self._conversations.find({"_id": {"$in": ids}}).sort("created_at", DESCENDING)
        return [Conversation.model_validate(_to_model_doc(d)) async for d in cur]

    async def delete_conversation(self, conversation_id: str) -> bool:
        res = await self._conversations.delete_one({"_id": conversation_id})
        if res.deleted_count == 0:
            return False
        await self._participants.delete_many({"conversation_id": conversation_id})
        await self._messages.delete_many({"conversation_id": conversation_id})
        await self._db[COUNTERS_COLLECTION].delete_one({"_id": f"messages:{conversation_id}"})
        return True

    async def _next_seq(self, conversation_id: str) -> int:
        doc = await self._db[COUNTERS_COLLECTION].find_one_and_update(
            {"_id": f"messages:{conversation_id}"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    async def add_message(self, conversation_id: str, sender_id: str, content: Dict[str, Any],
                          is_forwarded: bool = False) -> Message:
        msg = Message(
            id=_new_id(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            is_forwarded=is_forwarded,
            seq=await self._next_seq(conversation_id),
        )
        doc = msg.model_dump(mode="python", exclude={"id"})
        doc["_id"] = msg.id
        doc["state"] = msg.state.value
        await self._messages.insert_one(doc)
        return msg

    async def get_message(self, message_id: str) -> Optional[Message]:
        doc = await self._messages.find_one({"_id": message_id})
        return Message.model_validate(_to_model_doc(doc)) if doc else None

    async def save_message(self, message: Message) -> Message:
        await self._messages.update_one(
            {"_id": message.id},
            {"$set": {
                "content": message.content.model_dump(),
                "state": message.state.value,
                "updated_at": message.updated_at,
                "deleted_at": message.deleted_at,
            }},
        )
        return message

    async def list_messages(self, conversation_id: str, limit: int = 50, offset: int = 0) -> List[Message]:
        query = {"conversation_id": conversation_id, "state": {"$ne": MessageState.DELETED.value}}
        cur = self._messages.find(query).sort("seq", DESCENDING).skip(offset).limit(limit)
        return [Message.model_validate(_to_model_doc(d)) async for d in cur]

    async def count_messages(self, conversation_id: str) -> int:
        return await self._messages.count_documents(
            {"conversation_id": conversation_id, "state": {"$ne": MessageState.DELETED.value}}
        )
