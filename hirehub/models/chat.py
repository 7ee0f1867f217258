# hirehub/models/chat.py
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str = Field(min_length=1, max_length=10_000)


class AttachmentContent(BaseModel):
    type: Literal["attachment"] = "attachment"
    url: str = Field(min_length=1)
    name: str = Field(min_length=1)
    mime_type: str = "application/octet-stream"
    size: Optional[int] = Field(default=None, ge=0)
    caption: Optional[str] = None


class SystemContent(BaseModel):
    type: Literal["system"] = "system"
    event: str = Field(min_length=1)
    detail: Optional[str] = None


MessageContent = Annotated[
    Union[TextContent, AttachmentContent, SystemContent],
    Field(discriminator="type"),
]

message_content_adapter = TypeAdapter(MessageContent)


class MessageState(str, Enum):
    ACTIVE = "active"
    EDITED = "edited"
    DELETED = "deleted"


class Participant(BaseModel):
    conversation_id: str
    user_id: str
    joined_at: datetime = Field(default_factory=_now)


class Conversation(BaseModel):
    id: str
    is_group: bool = False
    title: Optional[str] = None
    created_by: str
    created_at: datetime = Field(default_factory=_now)
    # JSON-encoded sorted user pair for direct conversations, unique across the store
    direct_key: Optional[str] = None


class Message(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: MessageContent
    is_forwarded: bool = False
    state: MessageState = MessageState.ACTIVE
    seq: int = 0
    created_at: datetime = Field(default_factory=_now)
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class ConversationDetails(Conversation):
    participants: List[Participant] = Field(default_factory=list)
    last_message: Optional[Message] = None
    message_count: int = 0


class StartConversationResult(BaseModel):
    conversation: Conversation
    message: Optional[Message] = None
    is_new: bool


class DeleteMessageResult(BaseModel):
    deleted: bool
    message_id: str
    conversation_id: str


def direct_key(user_a: str, user_b: str) -> str:
    """Order-independent key identifying the direct conversation between two users."""
    # JSON-encoded so ids containing separators cannot collide
    return json.dumps(sorted((str(user_a), str(user_b))), separators=(",", ":"))
