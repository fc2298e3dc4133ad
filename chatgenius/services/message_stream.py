"""Message stream for the active channel."""

import logging
from datetime import UTC, datetime

from chatgenius.core.exceptions import MessageError, StorageError
from chatgenius.schemas.message import AuthoredMessage, Message, MessageAuthor
from chatgenius.services.channel_directory import ChannelDirectory
from chatgenius.services.field_mapper import from_storage_fields, to_storage_fields
from chatgenius.services.session_store import SessionStore
from chatgenius.services.store_gateway import Row, StoreGateway
from chatgenius.services.subscription import Subscription
from chatgenius.services.synced_collection import SyncedCollection

logger = logging.getLogger(__name__)

MessageScope = tuple[str, str]


class MessageStream(SyncedCollection[Message]):
    """Messages of the active channel in ascending ``created_at`` order.

    Soft-deleted messages stay in ``messages`` with ``deleted_at`` set so a
    renderer can show a placeholder; ``visible_messages`` leaves them out.
    """

    load_error_message = "Failed to load messages"

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
    def messages(self) -> list[Message]:
        return list(self._items)

    @property
    def visible_messages(self) -> list[Message]:
        return [message for message in self._items if not message.is_deleted]

    def list_messages(self) -> list[Message]:
        return self.messages

    def _dependency_key(self) -> MessageScope | None:
        user_id = self._session.user_id
        channel = self._directory.active_channel
        if user_id is None or channel is None:
            return None
        return (user_id, channel.id)

    def _subscriptions_for(self, key: MessageScope) -> list[Subscription]:
        _, channel_id = key
        return [
            self._gateway.subscribe(
                "messages", self._handle_change, filter=("channel_id", channel_id), key=key
            ),
        ]

    async def _fetch(self, key: MessageScope) -> list[Message]:
        _, channel_id = key
        rows = await self._gateway.select(
            "messages", {"channel_id": channel_id}, order_by="created_at"
        )
        author_ids = sorted({row["user_id"] for row in rows})
        users = await self._gateway.select("users", in_filters={"id": author_ids})
        names = {user["id"]: user["name"] for user in users}
        return [self._to_message(row, names.get(row["user_id"], "")) for row in rows]

    @staticmethod
    def _to_message(row: Row, user_name: str) -> Message:
        return Message.model_validate({**from_storage_fields(row), "userName": user_name})

    def _require_user(self, action: str) -> str:
        user_id = self._session.user_id
        if user_id is None:
            logger.error(f"Cannot {action}: no active user")
            raise MessageError(f"Cannot {action}: no active user")
        return user_id

    # =========================================================================
    # Mutations
    # =========================================================================

    async def send_message(self, content: str) -> Message:
        """Post to the active channel and append the stored row locally.

        Raises:
            MessageError: With no user or no active channel, or if the insert
                fails.
        """
        user = self._session.user
        channel = self._directory.active_channel
        if user is None or user.id is None or channel is None:
            logger.error("Cannot send message: no active user or channel")
            raise MessageError("Cannot send message: no active user or channel")

        try:
            row = await self._gateway.insert(
                "messages",
                to_storage_fields({"channelId": channel.id, "userId": user.id, "content": content}),
            )
        except StorageError as e:
            logger.error(f"Failed to send message to {channel.id}: {e.message}")
            raise MessageError("Failed to send message") from e

        message = self._to_message(row, user.name)
        # A change-triggered reload may already have delivered it
        if self.key == (user.id, channel.id) and all(m.id != message.id for m in self._items):
            self._items = [*self._items, message]
            await self._notify()

        logger.info(f"Message {message.id} sent to {channel.id}")
        return message

    async def edit_message(self, message_id: str, content: str) -> None:
        """Change the content of one of the current user's messages.

        Messages of other users are left untouched without raising.
        """
        user_id = self._require_user("edit message")
        try:
            rows = await self._gateway.update(
                "messages",
                to_storage_fields({"content": content, "updatedAt": datetime.now(UTC)}),
                {"id": message_id, "user_id": user_id},
            )
        except StorageError as e:
            logger.error(f"Failed to edit message {message_id}: {e.message}")
            raise MessageError("Failed to edit message") from e

        if not rows:
            logger.warning(f"Edit of {message_id} matched no message owned by {user_id}")
            return
        self._patch_local(rows)
        await self._notify()

    async def delete_message(self, message_id: str) -> None:
        """Soft-delete one of the current user's messages."""
        user_id = self._require_user("delete message")
        try:
            rows = await self._gateway.update(
                "messages",
                to_storage_fields({"deletedAt": datetime.now(UTC)}),
                {"id": message_id, "user_id": user_id},
            )
        except StorageError as e:
            logger.error(f"Failed to delete message {message_id}: {e.message}")
            raise MessageError("Failed to delete message") from e

        if not rows:
            logger.warning(f"Delete of {message_id} matched no message owned by {user_id}")
            return
        self._patch_local(rows)
        await self._notify()

    def _patch_local(self, rows: list[Row]) -> None:
        updated = {row["id"]: row for row in rows}
        self._items = [
            self._to_message(updated[m.id], m.user_name) if m.id in updated else m
            for m in self._items
        ]

    # =========================================================================
    # Derived views
    # =========================================================================

    def authors(self) -> list[MessageAuthor]:
        """Group the loaded messages by author, sorted by author name."""
        by_author: dict[str, MessageAuthor] = {}
        for message in self._items:
            author = by_author.setdefault(
                message.user_id, MessageAuthor(id=message.user_id, name=message.user_name)
            )
            author.messages.append(
                AuthoredMessage(content=message.content, created_at=message.created_at)
            )
        return sorted(by_author.values(), key=lambda author: author.name.lower())
