"""Message schemas."""

from datetime import datetime

from chatgenius.schemas.common import BaseSchema


class Message(BaseSchema):
    """Message in the active channel, with the sender's display name."""

    id: str
    channel_id: str
    user_id: str
    user_name: str = ""
    content: str
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class AuthoredMessage(BaseSchema):
    """Content and timestamp of one message, grouped under its author."""

    content: str
    created_at: datetime


class MessageAuthor(BaseSchema):
    """Author of messages in the active channel (assistant target picker)."""

    id: str
    name: str
    messages: list[AuthoredMessage] = []
