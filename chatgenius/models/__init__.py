"""SQLAlchemy models."""

from chatgenius.models.channel import (
    GENERAL_CHANNEL_ID,
    GENERAL_CHANNEL_NAME,
    Channel,
    ChannelMember,
    ChannelType,
)
from chatgenius.models.message import Message
from chatgenius.models.user import User, UserStatus

__all__ = [
    "User",
    "UserStatus",
    "Channel",
    "ChannelMember",
    "ChannelType",
    "Message",
    "GENERAL_CHANNEL_ID",
    "GENERAL_CHANNEL_NAME",
]
