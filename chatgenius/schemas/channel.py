"""Channel schemas."""

from datetime import datetime

from chatgenius.models.channel import ChannelType
from chatgenius.schemas.common import BaseSchema


class Channel(BaseSchema):
    """Channel the current user belongs to."""

    id: str
    name: str
    description: str | None = None
    type: ChannelType = ChannelType.PUBLIC
    # Derived; unread tracking is not persisted
    unread_count: int = 0
    created_at: datetime
    updated_at: datetime
