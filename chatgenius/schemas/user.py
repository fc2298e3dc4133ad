"""User schemas."""

from datetime import datetime

from chatgenius.models.user import UserStatus
from chatgenius.schemas.common import BaseSchema


class SessionUser(BaseSchema):
    """Identity of the current user, as persisted in the identity file."""

    id: str | None = None
    name: str
    is_guest: bool = True
    status: UserStatus = UserStatus.ONLINE


class ChannelUser(BaseSchema):
    """Member of a channel, as shown in the roster."""

    id: str
    name: str
    is_guest: bool = True
    status: UserStatus = UserStatus.OFFLINE
    last_seen: datetime | None = None
