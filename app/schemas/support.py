from datetime import datetime

from pydantic import Field

from app.schemas.common import CamelModel, NonEmptyStr


class ContactMessageCreate(CamelModel):
    subject: NonEmptyStr = Field(max_length=255)
    message: NonEmptyStr


class ChatStart(CamelModel):
    subject: str | None = Field(default=None, max_length=255)


class ChatMessageCreate(CamelModel):
    message: NonEmptyStr


class ChatCreated(CamelModel):
    chat_id: int


class ContactMessageResponse(CamelModel):
    message: str = "Message sent"
    chat_id: int
    message_id: int
    delivered: bool


class SupportMessageOut(CamelModel):
    id: int
    chat_id: int
    sender_user_id: int | None = None
    body: str
    created_at: datetime | None = None
