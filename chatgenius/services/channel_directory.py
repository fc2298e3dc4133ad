"""Channel directory: the current user's channels and the active channel."""

import logging

from chatgenius.core.exceptions import ChannelError, StorageError
from chatgenius.models.channel import ChannelType
from chatgenius.schemas.channel import Channel
from chatgenius.services.field_mapper import from_storage_fields, to_storage_fields
from chatgenius.services.session_store import SessionStore
from chatgenius.services.store_gateway import StoreGateway
from chatgenius.services.subscription import Subscription
from chatgenius.services.synced_collection import SyncedCollection

logger = logging.getLogger(__name__)


class ChannelDirectory(SyncedCollection[Channel]):
    """Channels the current user belongs to, sorted by name.

    Scoped by user id. Reloads on any ``channels`` change and on membership
    changes of the current user.
    """

    load_error_message = "Failed to load channels"

    def __init__(self, session: SessionStore, gateway: StoreGateway):
        super().__init__(gateway)
        self._session = session
        self._active_channel: Channel | None = None
        session.add_listener(self.sync)

    @property
    def channels(self) -> list[Channel]:
        return list(self._items)

    @property
    def active_channel(self) -> Channel | None:
        return self._active_channel

    def list_channels(self) -> list[Channel]:
        """The user's channels, alphabetically; empty when logged out."""
        return self.channels

    def _dependency_key(self) -> str | None:
        return self._session.user_id

    def _on_key_changed(self, key: str | None) -> None:
        self._active_channel = None

    def _subscriptions_for(self, key: str) -> list[Subscription]:
        return [
            self._gateway.subscribe("channels", self._handle_change, key=key),
            self._gateway.subscribe(
                "channel_members", self._handle_change, filter=("user_id", key), key=key
            ),
        ]

    async def _fetch(self, user_id: str) -> list[Channel]:
        members = await self._gateway.select("channel_members", {"user_id": user_id})
        channel_ids = [member["channel_id"] for member in members]
        rows = await self._gateway.select(
            "channels", in_filters={"id": channel_ids}, order_by="name"
        )
        return [Channel.model_validate(from_storage_fields(row)) for row in rows]

    # =========================================================================
    # Active channel
    # =========================================================================

    async def set_active_channel(self, channel: Channel | None) -> None:
        """Select the channel dependents scope themselves to. No store call."""
        self._active_channel = channel
        logger.debug(f"Active channel set to {channel.name if channel else None}")
        await self._notify()

    # =========================================================================
    # Membership mutations
    # =========================================================================

    def _require_user(self, action: str) -> str:
        user_id = self._session.user_id
        if user_id is None:
            logger.error(f"Cannot {action}: no user logged in")
            raise ChannelError(f"Cannot {action}: no user logged in")
        return user_id

    async def create_channel(self, name: str, description: str | None = None) -> Channel:
        """Create a public channel and join it.

        Two sequential writes: if the membership insert fails the channel row
        is left in place and ChannelError is raised.
        """
        user_id = self._require_user("create channel")

        try:
            row = await self._gateway.insert(
                "channels",
                {"name": name, "description": description, "type": ChannelType.PUBLIC.value},
            )
            await self._gateway.insert(
                "channel_members",
                to_storage_fields({"channelId": row["id"], "userId": user_id}),
            )
        except StorageError as e:
            logger.error(f"Failed to create channel {name}: {e.message}")
            raise ChannelError(f"Failed to create channel {name}") from e

        channel = Channel.model_validate(from_storage_fields(row))
        logger.info(f"Channel created: #{channel.name} ({channel.id})")
        return channel

    async def join_channel(self, channel_id: str) -> None:
        user_id = self._require_user("join channel")
        try:
            await self._gateway.insert(
                "channel_members",
                to_storage_fields({"channelId": channel_id, "userId": user_id}),
            )
        except StorageError as e:
            logger.error(f"Failed to join channel {channel_id}: {e.message}")
            raise ChannelError(f"Failed to join channel {channel_id}") from e
        logger.info(f"Joined channel {channel_id}")

    async def leave_channel(self, channel_id: str) -> None:
        """Leave a channel; leaving the active channel clears the selection."""
        user_id = self._require_user("leave channel")
        try:
            await self._gateway.delete(
                "channel_members",
                to_storage_fields({"channelId": channel_id, "userId": user_id}),
            )
        except StorageError as e:
            logger.error(f"Failed to leave channel {channel_id}: {e.message}")
            raise ChannelError(f"Failed to leave channel {channel_id}") from e

        logger.info(f"Left channel {channel_id}")
        if self._active_channel is not None and self._active_channel.id == channel_id:
            await self.set_active_channel(None)

    async def mark_channel_as_read(self, channel_id: str) -> None:
        """Unread counts are not persisted; this is intentionally a no-op."""
        logger.debug(f"mark_channel_as_read({channel_id}) has no persisted effect")
