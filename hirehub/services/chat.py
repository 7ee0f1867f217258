# hirehub/services/chat.py
"""
Conversation and message lifecycle.

The service persists and authorizes; fan-out to rooms is done by the caller
(`RealtimeService`) using the participant ids returned here.

Message states: active -> edited (repeatable) and active/edited -> deleted.
Deleted is terminal and hidden from every read path.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from hirehub.core.errors import AuthorizationError, NotFoundError, NotParticipantError, ValidationError
from hirehub.models.chat import (
    ConversationDetails,
    DeleteMessageResult,
    Message,
    MessageContent,
    MessageState,
    StartConversationResult,
    direct_key,
    message_content_adapter,
)
from hirehub.repositories.chat import ChatStore
from hirehub.services.rate_limit import SlidingWindowLimiter

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def parse_content(raw: Any) -> MessageContent:
    """Validate an inbound content payload into one of the known variants.

    A bare string, or an object with `text` and no `type`, is read as text.
    Unknown variants are rejected.
    """
    if isinstance(raw, str):
        raw = {"type": "text", "text": raw}
    elif isinstance(raw, dict) and "type" not in raw and "text" in raw:
        raw = {**raw, "type": "text"}
    try:
        return message_content_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid message content: {exc.errors()[0].get('msg', 'bad value')}") from exc


class ChatService:
    def __init__(self, store: ChatStore, rate_limiter: Optional[SlidingWindowLimiter] = None):
        self.store = store
        self.rate_limiter = rate_limiter
        self._pair_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _pair_lock(self, key: str) -> asyncio.Lock:
        lock = self._pair_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._pair_locks[key] = lock
        return lock

    async def _require_participant(self, conversation_id: str, user_id: str) -> None:
        conv = await self.store.get_conversation(conversation_id)
        if conv is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if not await self.store.is_participant(conversation_id, user_id):
            raise NotParticipantError("You are not a participant in this conversation")

    async def _live_message(self, message_id: str) -> Message:
        msg = await self.store.get_message(message_id)
        if msg is None or msg.state == MessageState.DELETED:
            raise NotFoundError(f"Message {message_id} not found")
        return msg

    async def start_conversation(self, initiator_id: str, recipient_id: str,
                                 initial_message: Optional[Any] = None) -> StartConversationResult:
        if not recipient_id:
            raise ValidationError("recipientId is required")
        if initiator_id == recipient_id:
            raise ValidationError("Cannot start a conversation with yourself")
        content = parse_content(initial_message) if initial_message is not None else None
        if content is not None:
            # a rejected first message must not leave a conversation behind
            self._hit_rate_limit(initiator_id)

        async with self._pair_lock(direct_key(initiator_id, recipient_id)):
            conversation, created = await self.store.get_or_create_direct(initiator_id, recipient_id)
        if not created:
            await self._require_participant(conversation.id, initiator_id)

        message = None
        if content is not None:
            message = await self._append(conversation.id, initiator_id, content, False)
        if created:
            logger.info("Conversation %s created between %s and %s", conversation.id, initiator_id, recipient_id)
        return StartConversationResult(conversation=conversation, message=message, is_new=created)

    def _hit_rate_limit(self, sender_id: str) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.hit(sender_id, "chat:send_message")

    async def _append(self, conversation_id: str, sender_id: str, content: MessageContent,
                      is_forwarded: bool) -> Message:
        return await self.store.add_message(conversation_id, sender_id, content.model_dump(), is_forwarded)

    async def send_message(self, conversation_id: str, sender_id: str, content: Any,
                           is_forwarded: bool = False) -> Message:
        await self._require_participant(conversation_id, sender_id)
        parsed = parse_content(content)
        self._hit_rate_limit(sender_id)
        return await self._append(conversation_id, sender_id, parsed, is_forwarded)

    async def update_message(self, message_id: str, sender_id: str, new_content: Any) -> Message:
        msg = await self._live_message(message_id)
        if msg.sender_id != sender_id:
            raise AuthorizationError("You can only edit your own messages")
        content = parse_content(new_content)
        updated = msg.model_copy(update={
            "content": content,
            "state": MessageState.EDITED,
            "updated_at": datetime.now(timezone.utc),
        })
        return await self.store.save_message(updated)

    async def delete_message(self, message_id: str, sender_id: str) -> DeleteMessageResult:
        msg = await self._live_message(message_id)
        if msg.sender_id != sender_id:
            raise AuthorizationError("You can only delete your own messages")
        now = datetime.now(timezone.utc)
        await self.store.save_message(msg.model_copy(update={
            "state": MessageState.DELETED,
            "updated_at": now,
            "deleted_at": now,
        }))
        return DeleteMessageResult(deleted=True, message_id=msg.id, conversation_id=msg.conversation_id)

    async def participant_ids(self, conversation_id: str) -> List[str]:
        return [p.user_id for p in await self.store.get_participants(conversation_id)]

    async def ensure_participant(self, conversation_id: str, user_id: str) -> None:
        await self._require_participant(conversation_id, user_id)

    async def get_other_participant(self, conversation_id: str, user_id: str) -> Optional[str]:
        for uid in await self.participant_ids(conversation_id):
            if uid != user_id:
                return uid
        return None

    async def _details(self, conversation_id: str) -> ConversationDetails:
        conv = await self.store.get_conversation(conversation_id)
        if conv is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        latest = await self.store.list_messages(conversation_id, limit=1)
        return ConversationDetails(
            **conv.model_dump(),
            participants=await self.store.get_participants(conversation_id),
            last_message=latest[0] if latest else None,
            message_count=await self.store.count_messages(conversation_id),
        )

    async def get_conversation_details(self, conversation_id: str, user_id: str) -> ConversationDetails:
        await self._require_participant(conversation_id, user_id)
        return await self._details(conversation_id)

    async def get_user_conversations(self, user_id: str) -> List[ConversationDetails]:
        out = [await self._details(c.id) for c in await self.store.list_user_conversations(user_id)]

        # most recently active first
        def _activity(d: ConversationDetails) -> datetime:
            return d.last_message.created_at if d.last_message else d.created_at

        return sorted(out, key=_activity, reverse=True)

    async def get_messages(self, conversation_id: str, user_id: str, limit: int = 50,
                           offset: int = 0) -> List[Message]:
        """Visible messages, newest first (descending creation sequence)."""
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be >= 1 and offset >= 0")
        await self._require_participant(conversation_id, user_id)
        return await self.store.list_messages(conversation_id, limit=min(limit, MAX_PAGE_SIZE), offset=offset)

    async def delete_conversation(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        await self._require_participant(conversation_id, user_id)
        participants = await self.participant_ids(conversation_id)
        await self.store.delete_conversation(conversation_id)
        logger.info("Conversation %s deleted by %s", conversation_id, user_id)
        return {"deleted": True, "conversation_id": conversation_id, "participants": participants}
