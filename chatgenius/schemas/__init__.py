"""Pydantic schemas for application objects."""

from chatgenius.schemas.change import ChangeEvent, ChangeEventType
from chatgenius.schemas.channel import Channel
from chatgenius.schemas.common import BaseSchema
from chatgenius.schemas.message import AuthoredMessage, Message, MessageAuthor
from chatgenius.schemas.user import ChannelUser, SessionUser

__all__ = [
    "BaseSchema",
    "ChangeEvent",
    "ChangeEventType",
    "Channel",
    "ChannelUser",
    "SessionUser",
    "Message",
    "MessageAuthor",
    "AuthoredMessage",
]
