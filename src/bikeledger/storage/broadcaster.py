from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Callable, Generic, Optional, TypeVar
import weakref

from bikeledger.storage.errors import StoreError


logger = logging.getLogger(__name__)

S = TypeVar("S")
T = TypeVar("T")


class Subscription(Generic[T]):
    """
    One registered observer of a `SnapshotBroadcaster`.

    Iterate with `async for`; each item is a full snapshot, never a delta. The iterator
    never ends on its own. Leave it with `aclose()`, by exiting `async with`, or by
    cancelling the task awaiting it. A subscription that is simply dropped (a `break`
    out of `async for`, a consumer cancelled mid-snapshot) is deregistered once it is
    garbage collected: the broadcaster only holds a weak reference to it.
    """

    def __init__(self, owner: "SnapshotBroadcaster", queue: "asyncio.Queue[T]") -> None:
        self._owner = owner
        self._queue = queue
        self._closed = False

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._queue.get()
        except asyncio.CancelledError:
            self.close()
            raise

    async def wait(self, timeout: Optional[float] = None) -> Optional[T]:
        """Next snapshot, or None if nothing arrives within `timeout` seconds."""

        if self._closed:
            raise RuntimeError("Subscription is closed")
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        except asyncio.CancelledError:
            self.close()
            raise

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner._unregister(self._queue)

    async def aclose(self) -> None:
        self.close()

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class SnapshotBroadcaster(Generic[S]):
    """
    Fan out the current full record set to every registered subscriber.

    `fetch` runs the canonical query. Each subscriber keeps one queue slot holding the
    newest undelivered snapshot; a newer snapshot replaces an unconsumed one.
    """

    def __init__(self, fetch: Callable[[], S], *, name: str) -> None:
        self._fetch = fetch
        self._name = name
        # (weak ref to the Subscription, its queue, its transform)
        self._subscribers: list[tuple[weakref.ref, asyncio.Queue, Callable[[S], object]]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, transform: Optional[Callable[[S], T]] = None) -> Subscription[T]:
        fn: Callable[[S], object] = transform or (lambda snapshot: snapshot)
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        # Eager first snapshot so a new observer never renders an empty flash.
        try:
            queue.put_nowait(fn(self._fetch()))
        except (sqlite3.Error, StoreError) as e:
            logger.warning("%s: initial snapshot skipped: %s", self._name, e)
        subscription: Subscription[T] = Subscription(self, queue)
        ref = weakref.ref(subscription, lambda _ref: self._unregister(queue))
        self._subscribers.append((ref, queue, fn))
        logger.debug("%s: subscriber added (%s active)", self._name, len(self._subscribers))
        return subscription

    def _unregister(self, queue: asyncio.Queue) -> None:
        before = len(self._subscribers)
        self._subscribers = [entry for entry in self._subscribers if entry[1] is not queue]
        if len(self._subscribers) != before:
            logger.debug("%s: subscriber removed (%s active)", self._name, len(self._subscribers))

    def refresh(self) -> None:
        """Re-run the canonical fetch and push the result to every subscriber."""

        if not self._subscribers:
            return
        try:
            snapshot = self._fetch()
        except (sqlite3.Error, StoreError) as e:
            # Best effort: subscribers keep the previous snapshot.
            logger.warning("%s: refresh skipped: %s", self._name, e)
            return
        self.publish(snapshot)

    def publish(self, snapshot: S) -> None:
        for ref, queue, fn in list(self._subscribers):
            if ref() is None:
                continue
            item = fn(snapshot)
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(item)

    def close(self) -> None:
        self._subscribers.clear()
