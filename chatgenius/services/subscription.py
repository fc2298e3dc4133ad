"""Change feed subscriptions.

A ``Subscription`` delivers the change events of one table, optionally
narrowed by an equality filter, to an async callback between ``start()`` and
``stop()``. Owners recreate their subscriptions whenever their dependency key
(user id, active channel id) changes, always stopping the previous ones
first.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Hashable
from typing import Any, Protocol

from pydantic import ValidationError

from chatgenius.schemas.change import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]
ChangeFilter = tuple[str, Any]


class ChangeFeed(Protocol):
    """Source of raw change payloads for one table."""

    async def open(self) -> None: ...

    def events(self) -> AsyncIterator[dict]: ...

    async def close(self) -> None: ...


class Subscription:
    """Explicit start/stop handle on a table's change feed."""

    def __init__(
        self,
        feed_factory: Callable[[str], ChangeFeed],
        table: str,
        callback: ChangeCallback,
        filter: ChangeFilter | None = None,
        key: Hashable = None,
    ):
        self.table = table
        self.filter = filter
        self.key = key
        self._feed_factory = feed_factory
        self._callback = callback
        self._feed: ChangeFeed | None = None
        self._task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"<Subscription {self.table} filter={self.filter} key={self.key}>"

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def matches(self, event: ChangeEvent) -> bool:
        """Check the event against the table and equality filter."""
        if event.table != self.table:
            return False
        if self.filter is None:
            return True
        column, value = self.filter
        # Feed payloads are JSON, so compare the string forms
        return str(event.record.get(column)) == str(value)

    async def start(self) -> None:
        """Open the feed and begin delivering events.

        Returns once the feed acknowledged the subscription, so mutations made
        after ``start()`` returns are observed.
        """
        if self.is_active:
            logger.warning(f"{self!r} already started")
            return

        feed = self._feed_factory(self.table)
        self._feed = feed
        await feed.open()
        self._task = asyncio.create_task(self._pump(feed))
        logger.debug(f"Started {self!r}")

    async def stop(self) -> None:
        """Stop delivering events and release the feed. Idempotent."""
        task, self._task = self._task, None
        feed, self._feed = self._feed, None

        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if feed is not None:
            await feed.close()
            logger.debug(f"Stopped {self!r}")

    async def _pump(self, feed: ChangeFeed) -> None:
        async for payload in feed.events():
            try:
                event = ChangeEvent.model_validate(payload)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed change event on {self.table}: {e}")
                continue

            if not self.matches(event):
                continue

            try:
                await self._callback(event)
            except Exception as e:
                logger.error(f"Error handling {event.event_type} on {self.table}: {e}")

        logger.warning(f"Change feed for {self.table} ended")
