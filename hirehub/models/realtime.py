# hirehub/models/realtime.py
"""
Wire shapes for the WebSocket transport.

Inbound frames:  {"event": "chat:send_message", "data": {...}, "id": "req-1"}
Acknowledgment:  {"event": "ack", "id": "req-1", "data": Ack}
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from hirehub.core.errors import HireHubError


class Inbound(BaseModel):
    event: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class AckError(BaseModel):
    code: str
    message: str


class Ack(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[AckError] = None

    @classmethod
    def ok(cls, **data: Any) -> "Ack":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, message: str) -> "Ack":
        return cls(success=False, error=AckError(code=code, message=message))

    @classmethod
    def from_error(cls, exc: HireHubError) -> "Ack":
        return cls.fail(exc.code, exc.message)


# Inbound operation payloads. Camel-case keys match the browser client.

class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class JoinPayload(_Payload):
    user_id: str = Field(alias="userId")


class StartConversationPayload(_Payload):
    recipient_id: str = Field(alias="recipientId", min_length=1)
    initial_message: Optional[Any] = Field(default=None, alias="initialMessage")


class SendMessagePayload(_Payload):
    conversation_id: str = Field(alias="conversationId", min_length=1)
    content: Any
    is_forwarded: bool = Field(default=False, alias="isForwarded")


class ConversationRefPayload(_Payload):
    conversation_id: str = Field(alias="conversationId", min_length=1)


class UpdateMessagePayload(_Payload):
    message_id: str = Field(alias="messageId", min_length=1)
    content: Any


class DeleteMessagePayload(_Payload):
    message_id: str = Field(alias="messageId", min_length=1)


class TypingPayload(_Payload):
    conversation_id: str = Field(alias="conversationId", min_length=1)
    is_typing: bool = Field(default=True, alias="isTyping")


class ResumeSubscribePayload(_Payload):
    evaluation_id: str = Field(alias="evaluationId", min_length=1)


class InteractionNotification(BaseModel):
    type: str  # like | comment | reply | share | save | report
    post_id: str
    post_owner_id: str
    interactor_id: str
    message: str
    metadata: Optional[Dict[str, Any]] = None
    interactor_profile: Optional[Dict[str, Any]] = None
