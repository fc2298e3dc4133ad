"""User model."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatgenius.core.database import Base
from chatgenius.models.base import UUIDMixin

if TYPE_CHECKING:
    from chatgenius.models.channel import ChannelMember


class UserStatus(str, enum.Enum):
    """Presence status of a user."""

    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class User(Base, UUIDMixin):
    """Guest user, identified by display name only."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    is_guest: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    # Plain string to avoid Postgres enum drift; values come from UserStatus
    status: Mapped[str] = mapped_column(
        String(16),
        default=UserStatus.ONLINE.value,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    memberships: Mapped[list["ChannelMember"]] = relationship(
        "ChannelMember",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User {self.name}>"
