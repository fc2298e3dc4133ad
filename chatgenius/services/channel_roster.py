"""Members of the active channel."""

import logging

from chatgenius.schemas.user import ChannelUser
from chatgenius.services.channel_directory import ChannelDirectory
from chatgenius.services.field_mapper import from_storage_fields
from chatgenius.services.session_store import SessionStore
from chatgenius.services.store_gateway import StoreGateway
from chatgenius.services.subscription import Subscription
from chatgenius.services.synced_collection import SyncedCollection

logger = logging.getLogger(__name__)

RosterScope = tuple[str, str]


class ChannelRoster(SyncedCollection[ChannelUser]):
    """Users who are members of the active channel, sorted by name.

    Reloads on any ``users`` change (presence updates) and on membership
    changes of the active channel. No pagination: channels are expected to
    have tens of members.
    """

    load_error_message = "Failed to load channel users"

    def __init__(
        self,
        session: SessionStore,
        directory: ChannelDirectory,
        gateway: StoreGateway,
    ):
        super().__init__(gateway)
        self._session = session
        self._directory = directory
        session.add_listener(self.sync)
        directory.add_listener(self.sync)

    @property
    def users(self) -> list[ChannelUser]:
        return list(self._items)

    def list_channel_users(self) -> list[ChannelUser]:
        return self.users

    def _dependency_key(self) -> RosterScope | None:
        user_id = self._session.user_id
        channel = self._directory.active_channel
        if user_id is None or channel is None:
            return None
        return (user_id, channel.id)

    def _subscriptions_for(self, key: RosterScope) -> list[Subscription]:
        _, channel_id = key
        return [
            self._gateway.subscribe("users", self._handle_change, key=key),
            self._gateway.subscribe(
                "channel_members", self._handle_change, filter=("channel_id", channel_id), key=key
            ),
        ]

    async def _fetch(self, key: RosterScope) -> list[ChannelUser]:
        _, channel_id = key
        members = await self._gateway.select("channel_members", {"channel_id": channel_id})
        rows = await self._gateway.select(
            "users",
            in_filters={"id": [member["user_id"] for member in members]},
            order_by="name",
        )
        return [ChannelUser.model_validate(from_storage_fields(row)) for row in rows]
