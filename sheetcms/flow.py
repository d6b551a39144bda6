"""Observable state containers shared between stores, repositories and views."""

from __future__ import annotations

import asyncio
import threading
from typing import AsyncIterator, Callable, Generic, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class StateFlow(Generic[T]):
    """Current value plus change notification for any number of readers.

    Subscribers always start with the current value and then see every
    later value in order; a slow subscriber may skip intermediate values
    but never observes an older value after a newer one. Setting a value
    equal to the current one is not a change. Writers must run on the
    event loop thread.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._version = 0
        self._changed: Optional[asyncio.Event] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"StateFlow({self._value!r})"

    @property
    def value(self) -> T:
        return self._value

    @property
    def version(self) -> int:
        return self._version

    def set(self, value: T) -> None:
        with self._lock:
            self._publish(value)

    def compare_and_set(self, expected: T, value: T) -> bool:
        with self._lock:
            if self._value != expected:
                return False
            self._publish(value)
            return True

    def update(self, transform: Callable[[T], T]) -> T:
        """Apply ``transform`` atomically, retrying if another writer won."""
        while True:
            current = self._value
            updated = transform(current)
            if self.compare_and_set(current, updated):
                return updated

    def _publish(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        self._version += 1
        changed, self._changed = self._changed, None
        if changed is not None:
            changed.set()

    def _change_event(self) -> asyncio.Event:
        """Return the event the next change will set, creating it if needed."""
        if self._changed is None:
            self._changed = asyncio.Event()
        return self._changed

    async def changed(self) -> None:
        """Suspend until the next change."""
        await self._change_event().wait()

    async def subscribe(self) -> AsyncIterator[T]:
        version = self._version
        yield self._value
        while True:
            while self._version == version:
                await self.changed()
            version = self._version
            yield self._value

    def __aiter__(self) -> AsyncIterator[T]:
        return self.subscribe()

    async def wait_for(self, predicate: Callable[[T], bool]) -> T:
        """Return the first current-or-future value matching ``predicate``."""
        async for value in self.subscribe():
            if predicate(value):
                return value
        raise AssertionError("unreachable")  # pragma: no cover


async def watch(
    source: StateFlow[T], transform: Callable[[T], R]
) -> AsyncIterator[R]:
    """Yield ``transform(value)`` for every emission of ``source``."""
    async for value in source.subscribe():
        yield transform(value)


async def _wait_any(flows: Sequence[StateFlow], seen: Sequence[int]) -> None:
    if any(flow.version != version for flow, version in zip(flows, seen)):
        return
    # Events must exist before suspending so a change made before the
    # waiter tasks first run is not lost.
    events = [flow._change_event() for flow in flows]
    waiters = [asyncio.ensure_future(event.wait()) for event in events]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()


async def combine(
    sources: Sequence[StateFlow], transform: Callable[..., R]
) -> AsyncIterator[R]:
    """Yield ``transform(*values)`` whenever any source changes."""
    flows = list(sources)
    while True:
        seen = [flow.version for flow in flows]
        yield transform(*(flow.value for flow in flows))
        await _wait_any(flows, seen)
