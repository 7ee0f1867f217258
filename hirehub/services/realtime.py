# hirehub/services/realtime.py
"""
Realtime delivery service: presence, rooms, inbound socket operations and the
outbound helpers used by the rest of the app.

One instance is built by the composition root and shared through `app.state`;
tests build their own. Two channels exist:

  default        chat + notifications   (/ws)
  resume_status  evaluation status      (/ws/resume-status)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from hirehub.core.errors import AuthorizationError, HireHubError, NotFoundError
from hirehub.core.security import Principal
from hirehub.models.evaluation import StatusEvent
from hirehub.models.realtime import (
    Ack,
    ConversationRefPayload,
    DeleteMessagePayload,
    InteractionNotification,
    JoinPayload,
    ResumeSubscribePayload,
    SendMessagePayload,
    StartConversationPayload,
    TypingPayload,
    UpdateMessagePayload,
)
from hirehub.services.chat import ChatService
from hirehub.services.presence import PresenceRegistry
from hirehub.services.rooms import (
    DEFAULT_QUEUE_LIMIT,
    Connection,
    RoomRouter,
    SendFn,
    conversation_room,
    evaluation_room,
    user_room,
)

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "default"
STATUS_CHANNEL = "resume_status"

NAMESPACES = {
    DEFAULT_CHANNEL: "/",
    STATUS_CHANNEL: "/api/resumes/status",
}

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[Ack]]


def _dump(model: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    return model.model_dump(mode="json") if model is not None else None


class RealtimeService:
    def __init__(self, chat: ChatService, evaluations=None, presence: Optional[PresenceRegistry] = None,
                 queue_limit: int = DEFAULT_QUEUE_LIMIT):
        self.chat = chat
        self.evaluations = evaluations
        self.presence = presence or PresenceRegistry()
        self.queue_limit = queue_limit
        self.channels: Dict[str, RoomRouter] = {
            DEFAULT_CHANNEL: RoomRouter(DEFAULT_CHANNEL),
            STATUS_CHANNEL: RoomRouter(STATUS_CHANNEL),
        }
        self._handlers: Dict[Tuple[str, str], Handler] = {
            (DEFAULT_CHANNEL, "join"): self._on_join,
            (DEFAULT_CHANNEL, "chat:start_conversation"): self._on_start_conversation,
            (DEFAULT_CHANNEL, "chat:send_message"): self._on_send_message,
            (DEFAULT_CHANNEL, "chat:join_conversation"): self._on_join_conversation,
            (DEFAULT_CHANNEL, "chat:leave_conversation"): self._on_leave_conversation,
            (DEFAULT_CHANNEL, "chat:update_message"): self._on_update_message,
            (DEFAULT_CHANNEL, "chat:delete_message"): self._on_delete_message,
            (DEFAULT_CHANNEL, "chat:typing"): self._on_typing,
            (STATUS_CHANNEL, "join"): self._on_join,
            (STATUS_CHANNEL, "resume:subscribe"): self._on_resume_subscribe,
            (STATUS_CHANNEL, "resume:unsubscribe"): self._on_resume_unsubscribe,
        }
        self.running = False

    # ---- lifecycle -------------------------------------------------------

    async def initialize(self) -> None:
        self.running = True
        logger.info("Realtime service initialized (channels: %s)", ", ".join(self.channels))

    async def shutdown(self) -> None:
        self.running = False
        for router in self.channels.values():
            await router.close_all()
        self.presence.clear()
        logger.info("Realtime service shut down")

    def router(self, channel: str = DEFAULT_CHANNEL) -> RoomRouter:
        try:
            return self.channels[channel]
        except KeyError:
            raise NotFoundError(f"Unknown channel: {channel}") from None

    # ---- connections -----------------------------------------------------

    async def connect(self, principal: Principal, send: SendFn, channel: str = DEFAULT_CHANNEL) -> Connection:
        router = self.router(channel)
        conn = Connection(
            user_id=principal.user_id,
            send=send,
            channel=channel,
            email=principal.email,
            queue_limit=self.queue_limit,
        )
        router.add_connection(conn)
        # presence tracks chat-capable connections only
        if channel == DEFAULT_CHANNEL:
            self.presence.register(principal.user_id, conn.id)
        logger.info("User %s connected on %s (connection %s)", principal.user_id, channel, conn.id)
        conn.deliver("connected", {
            "message": "Successfully connected",
            "namespace": NAMESPACES[channel],
            "userId": principal.user_id,
            "socketId": conn.id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        return conn

    async def disconnect(self, connection: Connection) -> None:
        await self.router(connection.channel).remove_connection(connection.id)
        if connection.channel == DEFAULT_CHANNEL:
            self.presence.unregister(connection.user_id, connection.id)
        logger.info("User %s disconnected from %s (connection %s)",
                    connection.user_id, connection.channel, connection.id)

    # ---- inbound ---------------------------------------------------------

    async def dispatch(self, connection: Connection, event: str, data: Optional[Dict[str, Any]] = None) -> Ack:
        handler = self._handlers.get((connection.channel, event))
        if handler is None:
            return Ack.fail("validation_error", f"Unknown event: {event}")
        try:
            return await handler(connection, data or {})
        except HireHubError as exc:
            logger.info("%s rejected for user %s: %s", event, connection.user_id, exc.code)
            return Ack.from_error(exc)
        except PydanticValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            field = ".".join(str(p) for p in first.get("loc", ()))
            return Ack.fail("validation_error", f"Invalid {field or 'payload'}: {first.get('msg', 'bad value')}")
        except Exception:
            logger.exception("Unhandled error in %s handler (connection %s)", event, connection.id)
            return Ack.fail("internal_error", "Internal server error")

    async def _on_join(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = JoinPayload.model_validate(data)
        if payload.user_id != conn.user_id:
            raise AuthorizationError("Cannot join another user's room")
        room = user_room(conn.user_id)
        self.router(conn.channel).join(conn.id, room)
        return Ack.ok(room=room)

    async def _on_start_conversation(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = StartConversationPayload.model_validate(data)
        result = await self.chat.start_conversation(conn.user_id, payload.recipient_id, payload.initial_message)
        router = self.router(DEFAULT_CHANNEL)
        router.join(conn.id, conversation_room(result.conversation.id))
        conversation = _dump(result.conversation)
        message = _dump(result.message)
        if result.is_new:
            router.broadcast(user_room(payload.recipient_id), "chat:new_conversation",
                             {"conversation": conversation, "message": message})
        elif message is not None:
            router.broadcast(user_room(payload.recipient_id), "chat:new_message", message)
        return Ack.ok(conversation=conversation, message=message, isNew=result.is_new)

    async def _on_send_message(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = SendMessagePayload.model_validate(data)
        message = await self.chat.send_message(payload.conversation_id, conn.user_id, payload.content,
                                               payload.is_forwarded)
        others = [uid for uid in await self.chat.participant_ids(payload.conversation_id) if uid != conn.user_id]
        body = _dump(message)
        self.router(DEFAULT_CHANNEL).broadcast_many(
            [user_room(uid) for uid in others], "chat:new_message", body, exclude_user=conn.user_id
        )
        return Ack.ok(message=body)

    async def _on_join_conversation(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = ConversationRefPayload.model_validate(data)
        await self.chat.ensure_participant(payload.conversation_id, conn.user_id)
        self.router(DEFAULT_CHANNEL).join(conn.id, conversation_room(payload.conversation_id))
        return Ack.ok(conversationId=payload.conversation_id)

    async def _on_leave_conversation(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = ConversationRefPayload.model_validate(data)
        self.router(DEFAULT_CHANNEL).leave(conn.id, conversation_room(payload.conversation_id))
        return Ack.ok(conversationId=payload.conversation_id)

    async def _fan_out_to_participants(self, conversation_id: str, event: str, body: Dict[str, Any]) -> int:
        participants = await self.chat.participant_ids(conversation_id)
        return self.router(DEFAULT_CHANNEL).broadcast_many([user_room(uid) for uid in participants], event, body)

    async def _on_update_message(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = UpdateMessagePayload.model_validate(data)
        message = await self.chat.update_message(payload.message_id, conn.user_id, payload.content)
        body = _dump(message)
        # sender included: keeps the sender's other devices in sync
        await self._fan_out_to_participants(message.conversation_id, "chat:message_updated", body)
        return Ack.ok(message=body)

    async def _on_delete_message(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = DeleteMessagePayload.model_validate(data)
        result = await self.chat.delete_message(payload.message_id, conn.user_id)
        body = {"messageId": result.message_id, "conversationId": result.conversation_id}
        await self._fan_out_to_participants(result.conversation_id, "chat:message_deleted", body)
        return Ack.ok(**body)

    async def _on_typing(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = TypingPayload.model_validate(data)
        room = conversation_room(payload.conversation_id)
        router = self.router(DEFAULT_CHANNEL)
        if room not in router.rooms_of(conn.id):
            raise AuthorizationError("Join the conversation before sending typing events")
        router.broadcast(
            room,
            "chat:user_typing",
            {"conversationId": payload.conversation_id, "userId": conn.user_id, "isTyping": payload.is_typing},
            exclude_user=conn.user_id,
            droppable=True,
        )
        return Ack.ok()

    async def _on_resume_subscribe(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = ResumeSubscribePayload.model_validate(data)
        job = await self.evaluations.get(payload.evaluation_id) if self.evaluations is not None else None
        if job is None or job.user_id != conn.user_id:
            raise NotFoundError(f"Evaluation {payload.evaluation_id} not found")
        self.router(STATUS_CHANNEL).join(conn.id, evaluation_room(job.id))
        return Ack.ok(evaluationId=job.id, step=job.step.value, progress=job.progress)

    async def _on_resume_unsubscribe(self, conn: Connection, data: Dict[str, Any]) -> Ack:
        payload = ResumeSubscribePayload.model_validate(data)
        self.router(STATUS_CHANNEL).leave(conn.id, evaluation_room(payload.evaluation_id))
        return Ack.ok(evaluationId=payload.evaluation_id)

    # ---- outbound --------------------------------------------------------

    def send_to_user(self, user_id: str, event: str, payload: Any, channel: str = DEFAULT_CHANNEL) -> int:
        return self.router(channel).broadcast(user_room(user_id), event, payload)

    def broadcast_to_all(self, event: str, payload: Any) -> int:
        return self.router(DEFAULT_CHANNEL).broadcast_all(event, payload)

    def send_resume_status(self, user_id: str, event: StatusEvent) -> int:
        """Push one `resume:status` event to the owner and any evaluation subscribers."""
        delivered = self.router(STATUS_CHANNEL).broadcast_many(
            [user_room(user_id), evaluation_room(event.evaluation_id)],
            "resume:status",
            event.to_payload(),
        )
        logger.debug("resume:status %s/%s for %s -> %d connection(s)",
                     event.step.value, event.status.value, event.evaluation_id, delivered)
        return delivered

    def send_interaction_notification(self, notification: InteractionNotification) -> bool:
        if notification.post_owner_id == notification.interactor_id:
            return False
        if not self.is_user_connected(notification.post_owner_id):
            logger.debug("Post owner %s offline; interaction notification skipped", notification.post_owner_id)
            return False
        body = notification.model_dump(mode="json", exclude_none=True)
        body["timestamp"] = datetime.now(timezone.utc).isoformat()
        return self.send_to_user(notification.post_owner_id, "interaction:notification", body) > 0

    def is_user_connected(self, user_id: str) -> bool:
        return self.presence.is_online(user_id)

    def connected_users(self) -> Set[str]:
        return self.presence.all_online_users()

    def user_socket_count(self, user_id: str) -> int:
        return self.presence.connection_count(user_id)

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "onlineUsers": len(self.connected_users()),
            "connections": {name: len(r.connections()) for name, r in self.channels.items()},
        }

    async def flush(self) -> None:
        for router in self.channels.values():
            await router.flush()
