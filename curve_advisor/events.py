"""
Publish/subscribe channels.

Each channel keeps a registry of subscriber callbacks keyed by a handle
returned from subscribe(). Publishing happens on the scheduler thread; a
subscriber that raises is logged and skipped so one bad consumer cannot stop
the tick loop.
"""

import itertools
import logging
from typing import Callable, Dict, Generic, TypeVar

logger = logging.getLogger('curveAdvisor.events')

T = TypeVar('T')


class Channel(Generic[T]):
    """A named publish/subscribe channel for immutable values."""

    def __init__(self, name: str):
        self.name = name
        self._subscribers: Dict[int, Callable[[T], None]] = {}
        self._handles = itertools.count(1)

    def subscribe(self, callback: Callable[[T], None]) -> int:
        """Register a callback. Returns a handle for unsubscribe()."""
        handle = next(self._handles)
        self._subscribers[handle] = callback
        return handle

    def unsubscribe(self, handle: int) -> bool:
        """Remove a subscriber. Returns False if the handle was unknown."""
        return self._subscribers.pop(handle, None) is not None

    def publish(self, value: T) -> None:
        # Copy so callbacks may unsubscribe themselves while being notified
        for handle, callback in list(self._subscribers.items()):
            try:
                callback(value)
            except Exception as e:
                logger.error(
                    "Subscriber %d on %s failed: %s", handle, self.name, e,
                    exc_info=True,
                )

    def __len__(self) -> int:
        return len(self._subscribers)
