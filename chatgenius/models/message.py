"""Chat message model."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatgenius.models.base import BaseModel

if TYPE_CHECKING:
    from chatgenius.models.channel import Channel


class Message(BaseModel):
    """Message posted to a channel. Deletion is soft (deleted_at)."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_channel_created", "channel_id", "created_at"),
    )

    channel_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    channel: Mapped["Channel"] = relationship(
        "Channel",
        back_populates="messages",
    )

    def __repr__(self) -> str:
        return f"<Message {self.id} in {self.channel_id}>"
