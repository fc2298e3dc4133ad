"""User session store.

Owns the identity of the current user: restores it from the identity file,
logs guests in by name, persists changes with a debounce, and tracks
presence (online/away) from window focus events.

State machine::

    UNINITIALIZED -> LOADING -> AUTHENTICATED | ANONYMOUS
"""

import asyncio
import enum
import logging
import random
from datetime import UTC, datetime

from pydantic import ValidationError

from chatgenius.core.exceptions import AuthError, StorageError
from chatgenius.models.channel import GENERAL_CHANNEL_ID, GENERAL_CHANNEL_NAME, ChannelType
from chatgenius.models.user import UserStatus
from chatgenius.schemas.user import SessionUser
from chatgenius.services.field_mapper import from_storage_fields, to_storage_fields
from chatgenius.services.identity_storage import IdentityStorage
from chatgenius.services.store_gateway import Row, StoreGateway
from chatgenius.services.synced_collection import Notifier

logger = logging.getLogger(__name__)

ANONYMOUS_ANIMALS = (
    "Aardvark", "Badger", "Chinchilla", "Dolphin", "Elephant", "Flamingo",
    "Giraffe", "Hedgehog", "Iguana", "Jaguar", "Koala", "Lemur", "Meerkat",
    "Narwhal", "Octopus", "Penguin", "Quokka", "Raccoon", "Sloth", "Tiger",
    "Urchin", "Vulture", "Walrus", "Xerus", "Yak", "Zebra",
)

UNIQUE_VIOLATION = "23505"


def generate_anonymous_name(rng: random.Random | None = None) -> str:
    """Pick a guest display name such as 'Anonymous Koala'."""
    return f"Anonymous {(rng or random).choice(ANONYMOUS_ANIMALS)}"


class SessionState(str, enum.Enum):
    """Lifecycle of the session store."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class SessionStore(Notifier):
    """Identity, persistence and presence of the current user."""

    def __init__(
        self,
        gateway: StoreGateway,
        storage: IdentityStorage,
        online_delay: float = 2.0,
        away_delay: float = 5.0,
        persist_debounce: float = 1.0,
    ):
        super().__init__()
        self._gateway = gateway
        self._storage = storage
        self.online_delay = online_delay
        self.away_delay = away_delay
        self.persist_debounce = persist_debounce

        self.state = SessionState.UNINITIALIZED
        self._user: SessionUser | None = None
        self._last_persisted: str | None = None
        self._persist_task: asyncio.Task | None = None

        self._focused = False
        self._online_task: asyncio.Task | None = None
        self._away_task: asyncio.Task | None = None

    @property
    def user(self) -> SessionUser | None:
        return self._user

    @property
    def user_id(self) -> str | None:
        return self._user.id if self._user else None

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED and self._user is not None

    @property
    def is_loading(self) -> bool:
        return self.state in (SessionState.UNINITIALIZED, SessionState.LOADING)

    # =========================================================================
    # Initialization
    # =========================================================================

    async def initialize(self) -> None:
        """Restore a persisted identity, if any."""
        self.state = SessionState.LOADING
        payload = self._storage.load()

        user = None
        if payload is not None:
            try:
                user = SessionUser.model_validate_json(payload)
                if not user.id:
                    raise ValueError("persisted user has no id")
            except (ValidationError, ValueError) as e:
                logger.error(f"Discarding malformed persisted identity: {e}")
                self._storage.clear()
                user = None

        if user is None:
            self.state = SessionState.ANONYMOUS
            logger.info("No persisted user, session is anonymous")
        else:
            self._user = user
            self._last_persisted = self._serialize(user)
            self.state = SessionState.AUTHENTICATED
            logger.info(f"Loaded persisted user {user.name} ({user.id})")

        await self._notify()

    # =========================================================================
    # Login / logout
    # =========================================================================

    async def login(self, name: str | None = None) -> SessionUser:
        """Find or create the guest user and authenticate as it.

        Raises:
            AuthError: If the store could not be reached; the session stays
                anonymous.
        """
        user_name = (name or "").strip() or generate_anonymous_name()

        try:
            row = await self._find_or_create_user(user_name)
        except StorageError as e:
            logger.error(f"Login failed for {user_name}: {e.message}")
            raise AuthError(f"Could not log in as {user_name}") from e

        self._user = SessionUser.model_validate(from_storage_fields(row))
        self.state = SessionState.AUTHENTICATED
        logger.info(f"User logged in: {self._user.name} ({self._user.id})")

        self._schedule_persist()
        await self._notify()
        return self._user

    async def logout(self) -> None:
        """Mark the user offline (best-effort) and forget the identity."""
        self._cancel_presence_timers()

        if self._user is not None and self._user.id:
            try:
                await self._write_status(self._user.id, UserStatus.OFFLINE)
            except StorageError as e:
                logger.warning(f"Could not mark {self._user.id} offline on logout: {e.message}")

        if self._persist_task is not None:
            self._persist_task.cancel()
            self._persist_task = None

        try:
            self._storage.clear()
        except OSError as e:
            raise AuthError("Could not clear the stored identity") from e

        self._user = None
        self._last_persisted = None
        self.state = SessionState.ANONYMOUS
        logger.info("User logged out")
        await self._notify()

    async def _find_or_create_user(self, name: str) -> Row:
        try:
            row = await self._gateway.select_one("users", {"name": name})
        except StorageError as e:
            if not e.is_not_found:
                raise
            row = await self._gateway.insert(
                "users",
                to_storage_fields({
                    "name": name,
                    "isGuest": True,
                    "status": UserStatus.ONLINE.value,
                }),
            )
            logger.info(f"Created guest user {name} ({row['id']})")
            await self._join_general_channel(row["id"])
            return row

        # Repairs a membership lost to a failed first login
        await self._join_general_channel(row["id"])
        if row["status"] != UserStatus.ONLINE.value:
            rows = await self._write_status(row["id"], UserStatus.ONLINE)
            if rows:
                row = rows[0]
        return row

    async def _join_general_channel(self, user_id: str) -> None:
        """Create the general channel if needed and add the user to it.

        Idempotent: an existing membership is left as is.
        """
        membership = to_storage_fields({"channelId": GENERAL_CHANNEL_ID, "userId": user_id})
        if await self._gateway.select("channel_members", membership):
            return

        try:
            await self._gateway.select_one("channels", {"id": GENERAL_CHANNEL_ID})
        except StorageError as e:
            if not e.is_not_found:
                raise
            try:
                await self._gateway.insert(
                    "channels",
                    {
                        "id": GENERAL_CHANNEL_ID,
                        "name": GENERAL_CHANNEL_NAME,
                        "description": "General discussion",
                        "type": ChannelType.PUBLIC.value,
                    },
                )
                logger.info("Created the general channel")
            except StorageError as insert_error:
                # Another client created it first
                if insert_error.code != UNIQUE_VIOLATION:
                    raise

        try:
            await self._gateway.insert("channel_members", membership)
        except StorageError as e:
            # Joined concurrently by another client of the same user
            if e.code != UNIQUE_VIOLATION:
                raise
        logger.info(f"User {user_id} joined the general channel")

    # =========================================================================
    # Presence
    # =========================================================================

    async def set_status(self, status: UserStatus) -> None:
        """Write a presence status for the current user if it changed."""
        if self._user is None or not self._user.id:
            return
        if self._user.status == status:
            return

        await self._write_status(self._user.id, status)
        self._user = self._user.model_copy(update={"status": status})
        logger.info(f"User {self._user.id} is now {status.value}")
        self._schedule_persist()
        await self._notify()

    async def _write_status(self, user_id: str, status: UserStatus) -> list[Row]:
        return await self._gateway.update(
            "users",
            to_storage_fields({"status": status.value, "lastSeen": datetime.now(UTC)}),
            {"id": user_id},
        )

    def on_focus(self) -> None:
        """Window gained focus: go online after a delay unless blurred again."""
        self._focused = True
        self._cancel(self._away_task)
        self._cancel(self._online_task)
        self._online_task = asyncio.create_task(
            self._delayed_status(self.online_delay, UserStatus.ONLINE, focused=True)
        )

    def on_blur(self) -> None:
        """Window lost focus: go away after a delay unless focused again."""
        self._focused = False
        self._cancel(self._online_task)
        self._cancel(self._away_task)
        self._away_task = asyncio.create_task(
            self._delayed_status(self.away_delay, UserStatus.AWAY, focused=False)
        )

    async def _delayed_status(self, delay: float, status: UserStatus, focused: bool) -> None:
        await asyncio.sleep(delay)
        if self._focused != focused:
            return
        try:
            await self.set_status(status)
        except StorageError as e:
            logger.error(f"Could not set status {status.value}: {e.message}")

    @staticmethod
    def _cancel(task: asyncio.Task | None) -> None:
        if task is not None and not task.done():
            task.cancel()

    def _cancel_presence_timers(self) -> None:
        self._cancel(self._online_task)
        self._cancel(self._away_task)
        self._online_task = None
        self._away_task = None

    # =========================================================================
    # Persistence
    # =========================================================================

    @staticmethod
    def _serialize(user: SessionUser | None) -> str | None:
        return user.model_dump_json(by_alias=True) if user is not None else None

    def _schedule_persist(self) -> None:
        self._cancel(self._persist_task)
        self._persist_task = asyncio.create_task(self._persist_later())

    async def _persist_later(self) -> None:
        await asyncio.sleep(self.persist_debounce)
        self._persist_task = None
        try:
            self.persist_now()
        except OSError as e:
            logger.error(f"Could not persist user to storage: {e}")

    def persist_now(self) -> bool:
        """Write the identity if it changed since the last write.

        Returns:
            True if the identity file was written or cleared.
        """
        payload = self._serialize(self._user)
        if payload == self._last_persisted:
            return False

        if payload is None:
            self._storage.clear()
            logger.info("Removed user from storage")
        else:
            self._storage.save(payload)
            logger.info("Persisted user to storage")
        self._last_persisted = payload
        return True

    async def close(self) -> None:
        """Cancel timers and flush a pending persist."""
        self._cancel_presence_timers()
        if self._persist_task is not None:
            self._cancel(self._persist_task)
            self._persist_task = None
            try:
                self.persist_now()
            except OSError as e:
                logger.error(f"Could not persist user to storage: {e}")
