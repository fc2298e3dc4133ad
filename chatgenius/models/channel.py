"""Channel and membership models."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatgenius.core.database import Base
from chatgenius.models.base import BaseModel

if TYPE_CHECKING:
    from chatgenius.models.message import Message
    from chatgenius.models.user import User

# Seeded by the initial migration and created on demand at first login
GENERAL_CHANNEL_ID = "00000000-0000-0000-0000-000000000001"
GENERAL_CHANNEL_NAME = "general"


class ChannelType(str, enum.Enum):
    """Channel visibility."""

    PUBLIC = "public"
    PRIVATE = "private"


class Channel(BaseModel):
    """Named room grouping messages."""

    __tablename__ = "channels"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    type: Mapped[str] = mapped_column(
        String(16),
        default=ChannelType.PUBLIC.value,
        nullable=False,
    )

    members: Mapped[list["ChannelMember"]] = relationship(
        "ChannelMember",
        back_populates="channel",
        cascade="all, delete-orphan",
    )
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="channel",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )

    def __repr__(self) -> str:
        return f"<Channel #{self.name}>"


class ChannelMember(Base):
    """Membership of a user in a channel."""

    __tablename__ = "channel_members"

    channel_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("channels.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    channel: Mapped["Channel"] = relationship(
        "Channel",
        back_populates="members",
    )
    user: Mapped["User"] = relationship(
        "User",
        back_populates="memberships",
    )

    def __repr__(self) -> str:
        return f"<ChannelMember {self.user_id} in {self.channel_id}>"
