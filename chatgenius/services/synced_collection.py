"""Locally cached collections kept in sync with the store.

A ``SyncedCollection`` owns a list loaded from the gateway for a dependency
key (user id, active channel id). When the key changes it stops its previous
subscriptions, starts new ones and reloads. Any change notification
triggers a full reload; there is no incremental patching.

Each reload takes a monotonic request sequence number. A response that is
not the latest one, or that arrives after the key changed or the collection
was closed, is discarded instead of overwriting fresher state.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

from redis.exceptions import RedisError

from chatgenius.core.exceptions import StorageError
from chatgenius.schemas.change import ChangeEvent
from chatgenius.services.store_gateway import StoreGateway
from chatgenius.services.subscription import Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[], Awaitable[None]]

_UNSET = object()


class Notifier:
    """Async listener registry for dependents of a store."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                await listener()
            except Exception as e:
                logger.error(f"Listener {listener!r} of {type(self).__name__} failed: {e}")


class SyncedCollection(Notifier, Generic[T]):
    """Base class for the channel, message and roster stores."""

    #: Shown to callers when a reload fails
    load_error_message = "Failed to load"

    def __init__(self, gateway: StoreGateway):
        super().__init__()
        self._gateway = gateway
        self._items: list[T] = []
        self._key: object = _UNSET
        self._subscriptions: list[Subscription] = []
        self._request_seq = 0
        self.is_loading = False
        self.error: str | None = None
        self._sync_lock = asyncio.Lock()
        self._closed = False

    # =========================================================================
    # Hooks
    # =========================================================================

    def _dependency_key(self) -> Hashable | None:
        """Current dependency key, or None when there is nothing to load."""
        raise NotImplementedError

    async def _fetch(self, key: Hashable) -> list[T]:
        raise NotImplementedError

    def _subscriptions_for(self, key: Hashable) -> list[Subscription]:
        raise NotImplementedError

    def _on_key_changed(self, key: Hashable | None) -> None:
        """Called after the key changed and before anything is reloaded."""

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def key(self) -> Hashable | None:
        return None if self._key is _UNSET else self._key

    @property
    def request_seq(self) -> int:
        return self._request_seq

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    async def sync(self) -> None:
        """Re-evaluate the dependency key and rescope if it changed.

        Serialized: overlapping calls run one after the other, and each one
        reads the key only once it holds the lock.
        """
        async with self._sync_lock:
            await self._rescope(self._dependency_key())

    async def _rescope(self, key: Hashable | None) -> None:
        if self._closed or key == self._key:
            return

        await self._stop_subscriptions()
        self._key = key
        self._on_key_changed(key)

        if key is None:
            # Invalidate anything still in flight
            self._request_seq += 1
            self._items = []
            self.error = None
            self.is_loading = False
            logger.debug(f"{type(self).__name__} cleared (no scope)")
            await self._notify()
            return

        self._subscriptions = self._subscriptions_for(key)
        for subscription in self._subscriptions:
            try:
                await subscription.start()
            except RedisError as e:
                logger.error(f"Could not start {subscription!r}, live updates disabled: {e}")

        await self.reload()

    async def reload(self) -> None:
        """Refetch the whole collection for the current key."""
        key = self.key
        if key is None:
            return

        self._request_seq += 1
        seq = self._request_seq
        self.is_loading = True

        try:
            items = await self._fetch(key)
        except StorageError as e:
            logger.error(f"{type(self).__name__} reload failed for {key}: {e.message}")
            if seq == self._request_seq:
                self.is_loading = False
                self.error = self.load_error_message
                await self._notify()
            return

        if seq != self._request_seq or key != self._key:
            logger.debug(
                f"Discarding stale {type(self).__name__} response "
                f"(seq {seq}, latest {self._request_seq})"
            )
            return

        self._items = items
        self.is_loading = False
        self.error = None
        logger.debug(f"{type(self).__name__} loaded {len(items)} item(s) for {key}")
        await self._notify()

    async def close(self) -> None:
        """Stop subscriptions and drop any in-flight response.

        Waits for a running ``sync()``; later calls to ``sync()`` are ignored.
        """
        async with self._sync_lock:
            self._closed = True
            await self._stop_subscriptions()
            self._request_seq += 1
            self._key = _UNSET

    async def _stop_subscriptions(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.stop()

    async def _handle_change(self, event: ChangeEvent) -> None:
        logger.debug(f"{type(self).__name__} received {event.event_type} on {event.table}")
        await self.reload()
